"""
Derived statistics computed from the store's snapshot.

Every function here is pure: it takes the raw user, patient and session lists and
returns fresh dictionaries. Nothing is cached; the store recomputes on every read.
"""
# rehabhub/stats.py

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from rehabhub.models import (
    ACTIVE, BRONZE, BUDDY, CANCELLED, COMPLETED, DOCTOR, GOLD, IN_PROGRESS, NURSE,
    PATIENT, PENDING_APPROVAL, SCHEDULED, SILVER, TIERS, normalize_role,
)
from rehabhub.exceptions import ValidationError
from rehabhub.validation import parse_date

HIGH_LOAD_THRESHOLD = 5
ASSIGNMENT_WEIGHT = 1.0
ACTIVE_SESSION_WEIGHT = 1.5
ACTIVE_SESSION_STATUSES = (SCHEDULED, IN_PROGRESS)
TREND_WINDOW = 10
SATISFIED_RATING = 4

TIME_FILTERS = {
    '7days': 7,
    '30days': 30,
    '90days': 90,
    'all': None,
}


def buddies_of(users):
    """Returns the users whose role is buddy, whatever spelling the document uses."""
    return [u for u in users if normalize_role(u.get('role')) == BUDDY]


def _mean(values):
    return sum(values) / len(values) if values else 0


def round_half_up(value, places=1):
    """Rounds ties away from zero, so 4.25 shows as 4.3 rather than 4.2."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def buddy_workload(buddy_id, patients, sessions) -> dict:
    """Weighted count of a buddy's current commitments.

    Args:
        buddy_id (str): The buddy's user id.
        patients (list): Patient documents.
        sessions (list): Session documents.

    Returns:
        dict: `assigned_patients`, `active_sessions`, `total_workload`, `status`
        ('High Load' at or above `HIGH_LOAD_THRESHOLD`, else 'Available') and
        `available_slots` before the threshold is reached.
    """
    assigned = sum(1 for p in patients if p.get('assigned_buddy') == buddy_id)
    active = sum(
        1 for s in sessions
        if s.get('buddy_id') == buddy_id and s.get('status') in ACTIVE_SESSION_STATUSES
    )
    total = assigned * ASSIGNMENT_WEIGHT + active * ACTIVE_SESSION_WEIGHT
    return {
        'assigned_patients': assigned,
        'active_sessions': active,
        'total_workload': total,
        'status': workload_status(total),
        'available_slots': max(0, HIGH_LOAD_THRESHOLD - total),
    }


def workload_status(total_workload) -> str:
    return 'High Load' if total_workload >= HIGH_LOAD_THRESHOLD else 'Available'


def tier_distribution(users) -> dict:
    """Counts buddies per tier along with each tier's share of all buddies.

    Buddies without a tier are counted as Bronze.

    Returns:
        dict: `total`, plus one `{count, percentage}` entry per tier name.
    """
    buddies = buddies_of(users)
    total = len(buddies)
    distribution = {'total': total}
    for tier in TIERS:
        count = sum(1 for b in buddies if (b.get('tier') or BRONZE) == tier)
        percentage = round_half_up(count / total * 100) if total else 0
        distribution[tier] = {'count': count, 'percentage': percentage}
    return distribution


def classify_tier(average_rating, satisfaction_rate) -> str:
    """Tier promotion rule; Gold is checked before Silver."""
    if average_rating >= 4.5 and satisfaction_rate >= 90:
        return GOLD
    if average_rating >= 4.0 and satisfaction_rate >= 80:
        return SILVER
    return BRONZE


def classify_trend(recent_average, average) -> str:
    if recent_average > average:
        return 'up'
    if recent_average < average:
        return 'down'
    return 'stable'


def cutoff_for(time_filter, now=None):
    """Returns the earliest session date included by `time_filter`, or None for 'all'."""
    if time_filter not in TIME_FILTERS:
        raise ValueError(f"Unknown time filter: {time_filter}")
    days = TIME_FILTERS[time_filter]
    if days is None:
        return None
    return (now or datetime.now()) - timedelta(days=days)


def _session_date(session):
    try:
        return parse_date(session.get('date'))
    except ValidationError:
        return None


def rated_sessions(buddy_id, sessions, time_filter='all', now=None):
    """Completed, rated sessions of a buddy inside the window, oldest first.

    Sessions whose date cannot be parsed are dropped from windowed queries.
    """
    cutoff = cutoff_for(time_filter, now)
    found = []
    for session in sessions:
        if session.get('buddy_id') != buddy_id or session.get('status') != COMPLETED:
            continue
        if not session.get('patient_rating'):
            continue
        when = _session_date(session)
        if cutoff is not None and (when is None or when < cutoff):
            continue
        found.append((when or datetime.min, session))
    found.sort(key=lambda item: item[0])
    return [session for _, session in found]


def rating_summary(ratings) -> dict:
    """Aggregates a chronological list of 1-5 ratings.

    Returns:
        dict: `average_rating` and `satisfaction_rate` rounded to one decimal,
        `rating_breakdown` histogram, `trend` and `tier` (both computed on the
        unrounded values).
    """
    average = _mean(ratings)
    recent_average = _mean(ratings[-TREND_WINDOW:])
    satisfied = sum(1 for r in ratings if r >= SATISFIED_RATING)
    satisfaction = satisfied / len(ratings) * 100 if ratings else 0
    return {
        'average_rating': round_half_up(average),
        'rating_breakdown': {star: sum(1 for r in ratings if r == star) for star in (5, 4, 3, 2, 1)},
        'satisfaction_rate': round_half_up(satisfaction),
        'trend': classify_trend(recent_average, average),
        'tier': classify_tier(average, satisfaction),
    }


def buddy_rating_stats(buddy, sessions, patients, time_filter='30days', now=None):
    """Rating statistics for one buddy, or None when nothing was rated in the window."""
    buddy_id = buddy.get('id')
    window = rated_sessions(buddy_id, sessions, time_filter, now)
    if not window:
        return None
    own_sessions = [s for s in sessions if s.get('buddy_id') == buddy_id]
    stats = rating_summary([s['patient_rating'] for s in window])
    stats.update({
        'buddy': buddy,
        'total_sessions': len(own_sessions),
        'completed_sessions': sum(1 for s in own_sessions if s.get('status') == COMPLETED),
        'rated_sessions': len(window),
        'assigned_patients': sum(1 for p in patients if p.get('assigned_buddy') == buddy_id),
        'recent_sessions': window[-5:],
    })
    return stats


def buddy_leaderboard(users, sessions, patients, time_filter='30days', buddy_id=None, now=None):
    """Rating statistics for every buddy with rated sessions, best average first.

    Buddies without rated sessions in the window are left out. The sort is stable,
    so ties keep roster order.
    """
    board = []
    for buddy in buddies_of(users):
        if buddy_id is not None and buddy.get('id') != buddy_id:
            continue
        stats = buddy_rating_stats(buddy, sessions, patients, time_filter, now)
        if stats is not None:
            board.append(stats)
    board.sort(key=lambda item: item['average_rating'], reverse=True)
    return board


def average_rating(sessions):
    ratings = [s['patient_rating'] for s in sessions if s.get('patient_rating')]
    return round_half_up(_mean(ratings))


def admin_overview(users, patients, sessions, care_plans=()):
    buddies = buddies_of(users)
    active_buddies = [b for b in buddies if b.get('status', ACTIVE) == ACTIVE]
    return {
        'total_users': len(users),
        'total_patients': len(patients),
        'total_sessions': len(sessions),
        'total_care_plans': len(care_plans),
        'active_buddies': len(active_buddies),
        'unassigned_patients': sum(
            1 for p in patients if not p.get('assigned_buddy') and p.get('status', ACTIVE) == ACTIVE
        ),
        'total_workload': sum(
            buddy_workload(b.get('id'), patients, sessions)['total_workload'] for b in active_buddies
        ),
    }


def doctor_overview(doctor_id, patients, sessions):
    own = [p for p in patients if p.get('assigned_doctor') == doctor_id]
    own_ids = {p.get('id') for p in own}
    own_sessions = [s for s in sessions if s.get('patient_id') in own_ids]
    return {
        'total_patients': len(own),
        'active_patients': sum(1 for p in own if p.get('status', ACTIVE) == ACTIVE),
        'completed_sessions': sum(1 for s in own_sessions if s.get('status') == COMPLETED),
        'average_rating': average_rating(own_sessions),
        'pending_approvals': sum(
            1 for p in own for r in p.get('approval_requests', []) if r.get('status') == PENDING_APPROVAL
        ),
    }


def nurse_overview(patients, sessions, today=None):
    today = (today or datetime.now()).date()
    sessions_today = 0
    for session in sessions:
        when = _session_date(session)
        if when is not None and when.date() == today and session.get('status') != CANCELLED:
            sessions_today += 1
    return {
        'total_patients': len(patients),
        'active_patients': sum(1 for p in patients if p.get('status', ACTIVE) == ACTIVE),
        'sessions_today': sessions_today,
        'pending_reviews': sum(
            1 for s in sessions if s.get('status') == COMPLETED and not s.get('nurse_verified')
        ),
    }


def buddy_overview(buddy_id, patients, sessions):
    own = [s for s in sessions if s.get('buddy_id') == buddy_id]
    rated = [s['patient_rating'] for s in own if s.get('status') == COMPLETED and s.get('patient_rating')]
    satisfaction = sum(1 for r in rated if r >= SATISFIED_RATING) / len(rated) * 100 if rated else 0
    return {
        'total_patients': sum(1 for p in patients if p.get('assigned_buddy') == buddy_id),
        'total_sessions': len(own),
        'completed_sessions': sum(1 for s in own if s.get('status') == COMPLETED),
        'average_rating': round_half_up(_mean(rated)),
        'patient_satisfaction': round_half_up(satisfaction),
    }


def patient_overview(patient, sessions):
    own = [s for s in sessions if s.get('patient_id') == patient.get('id') and s.get('status') != CANCELLED]
    completed = sum(1 for s in own if s.get('status') == COMPLETED)
    return {
        'total_sessions': len(own),
        'completed_sessions': completed,
        'average_rating': average_rating(own),
        'session_completion': int(round_half_up(completed / len(own) * 100, 0)) if own else 0,
        'progress': patient.get('overall_progress', {}).get('overall_percentage', 0),
    }


def role_overview(profile, users, patients, sessions, care_plans=()):
    """Dashboard statistics for the signed-in user's role.

    Args:
        profile (dict or None): The current user's profile document.

    Returns:
        dict: The admin overview always, plus the role-specific block when a
        profile is given.
    """
    overview = {'admin': admin_overview(users, patients, sessions, care_plans)}
    if not profile:
        return overview
    role = normalize_role(profile.get('role'))
    uid = profile.get('id') or profile.get('uid')
    if role == DOCTOR:
        overview['doctor'] = doctor_overview(uid, patients, sessions)
    elif role == NURSE:
        overview['nurse'] = nurse_overview(patients, sessions)
    elif role == BUDDY:
        overview['buddy'] = buddy_overview(uid, patients, sessions)
    elif role == PATIENT:
        patient = next((p for p in patients if p.get('id') == uid), profile)
        overview['patient'] = patient_overview(patient, sessions)
    return overview
