"""
Unit tests for review summaries. The generative model is always replaced with a
stand-in, so no request leaves the machine.
"""
from rehabhub import gemini as gemini_module


class DummyModel:
    model_name = "dummy-model"

    def __init__(self, text="Patients praise the buddy's patience."):
        self.text = text
        self.prompts = []

    def generate_content(self, prompt):
        self.prompts.append(prompt)

        class _Response:
            def __init__(self, text):
                self.text = text

        return _Response(self.text)


class ErrorModel:
    def generate_content(self, prompt):
        raise RuntimeError("quota exceeded")


def test_summarize_reviews_success(monkeypatch):
    model = DummyModel()
    monkeypatch.setattr(gemini_module, "model", model, raising=False)

    result = gemini_module.summarize_reviews(["Very patient.", "  ", "Always on time."], max_length=120)

    assert result == {"success": True, "summary": "Patients praise the buddy's patience.", "model": "dummy-model"}
    assert "Very patient." in model.prompts[0]
    assert "under 120 characters" in model.prompts[0]


def test_summarize_reviews_without_comments(monkeypatch):
    monkeypatch.setattr(gemini_module, "model", ErrorModel(), raising=False)

    result = gemini_module.summarize_reviews(["", None])

    assert result["success"] is True
    assert result["summary"] == "No detailed comments found in reviews."


def test_summarize_reviews_falls_back_on_errors(monkeypatch):
    """Verifies that a model error still yields a usable extractive summary."""
    monkeypatch.setattr(gemini_module, "model", ErrorModel(), raising=False)

    result = gemini_module.summarize_reviews(["Great listener. Helped with exercises."], max_length=20)

    assert result["success"] is False
    assert result["error"] == "quota exceeded"
    assert result["summary"] == "Great listener."


def test_summarize_reviews_empty_response(monkeypatch):
    monkeypatch.setattr(gemini_module, "model", DummyModel(text="   "), raising=False)

    result = gemini_module.summarize_reviews(["Kind."])

    assert result["success"] is False
    assert result["summary"] == "Kind."


def test_summarize_reviews_without_api_key(monkeypatch):
    monkeypatch.setattr(gemini_module, "model", None, raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)

    result = gemini_module.summarize_reviews(["Kind and calm."])

    assert result["success"] is False
    assert "GEMINI_API_KEY" in result["error"]
    assert result["summary"] == "Kind and calm."


def test_fallback_summary_truncates_long_sentence():
    summary = gemini_module.fallback_summary("x" * 50, 20)
    assert summary == "x" * 17 + "..."
