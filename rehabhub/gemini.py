"""
This module summarizes patient reviews for medical buddies with Google Gemini.

It is responsible for:
- Configuring the Gemini API from the `GEMINI_API_KEY` setting, on first use.
- Building a prompt that asks for a short, factual summary of patient reviews
  followed by one or two improvement tips.
- Falling back to an extractive summary when the model is unavailable, so callers
  always have something to show.
"""
# rehabhub/gemini.py

import logging

import google.generativeai as genai

from rehabhub.config import load_settings

logger = logging.getLogger(__name__)

# Set on first use; tests replace it with a stub.
model = None


def _get_model():
    """Configures the API and returns the generative model, or None without a key."""
    global model
    if model is None:
        settings = load_settings()
        if not settings.gemini_api_key:
            return None
        genai.configure(api_key=settings.gemini_api_key)
        model = genai.GenerativeModel(settings.gemini_model)
    return model


def fallback_summary(text: str, max_length: int) -> str:
    """Takes whole sentences from the start of `text` until `max_length` is reached."""
    text = " ".join(text.split())
    if len(text) <= max_length:
        return text
    summary = ""
    for sentence in text.replace("!", ".").replace("?", ".").split("."):
        sentence = sentence.strip()
        if not sentence:
            continue
        candidate = f"{summary} {sentence}.".strip()
        if len(candidate) > max_length:
            break
        summary = candidate
    return summary or text[:max_length - 3].rstrip() + "..."


def summarize_reviews(comments: list, max_length: int = 300) -> dict:
    """Summarizes a buddy's patient reviews and suggests improvements.

    Args:
        comments: Review and feedback texts, oldest first.
        max_length: Target length of the summary in characters.

    Returns:
        A dictionary with `success` and `summary`. On failure `success` is False,
        `error` says why and `summary` holds the extractive fallback.
    """
    combined = "\n\n".join(c.strip() for c in comments if c and c.strip())
    if not combined:
        return {"success": True, "summary": "No detailed comments found in reviews.", "model": None}

    generator = _get_model()
    if generator is None:
        return {
            "success": False,
            "error": "Gemini API key not configured. Set GEMINI_API_KEY.",
            "summary": fallback_summary(combined, max_length),
        }

    prompt = f"""
    You are an expert in summarizing patient feedback for a rehabilitation center.
    Produce a clear, concise summary of the patient reviews below that captures the overall
    sentiment, the main points and any key concerns or praise. Write in a professional and
    empathetic tone. Do not add or invent details. Keep the summary under {max_length} characters.
    If the reviews are too short to summarize, return them as they are.
    After the summary, give 1-2 tips on how the medical buddy can improve.

    Reviews:
    {combined}
    """

    try:
        response = generator.generate_content(prompt)
        summary = (response.text or "").strip()
    except Exception as e:
        logger.exception("Error generating review summary from Gemini API")
        return {"success": False, "error": str(e), "summary": fallback_summary(combined, max_length)}
    if not summary:
        return {
            "success": False,
            "error": "No summary generated from Gemini API",
            "summary": fallback_summary(combined, max_length),
        }
    return {"success": True, "summary": summary, "model": getattr(generator, "model_name", None)}
