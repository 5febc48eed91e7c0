"""
This module defines the data models shared by the RehabHub store, statistics and gateway.

Records travel through the gateway as plain dictionaries; the classes below build
those dictionaries with consistent field names and defaults. The module also holds
the canonical role, tier and status vocabularies and the `Result` object every
store action returns.
"""
# rehabhub/models.py

from datetime import datetime
import uuid

# Canonical roles.
ADMIN = 'admin'
DOCTOR = 'doctor'
NURSE = 'nurse'
BUDDY = 'buddy'
PATIENT = 'patient'
RECEPTIONIST = 'receptionist'

ROLES = (ADMIN, DOCTOR, NURSE, BUDDY, PATIENT, RECEPTIONIST)

# Spellings found in older documents, mapped to the canonical role.
_ROLE_ALIASES = {
    'medical buddy': BUDDY,
    'medicalbuddy': BUDDY,
    'medical_buddy': BUDDY,
    'medical-buddy': BUDDY,
}

BRONZE = 'Bronze'
SILVER = 'Silver'
GOLD = 'Gold'

TIERS = (BRONZE, SILVER, GOLD)
TIER_RANK = {BRONZE: 0, SILVER: 1, GOLD: 2}

ACTIVE = 'active'
INACTIVE = 'inactive'
USER_STATUSES = (ACTIVE, INACTIVE)

SCHEDULED = 'scheduled'
IN_PROGRESS = 'in-progress'
COMPLETED = 'completed'
CANCELLED = 'cancelled'
SESSION_STATUSES = (SCHEDULED, IN_PROGRESS, COMPLETED, CANCELLED)

PENDING = 'pending'
APPROVED = 'approved'
REJECTED = 'rejected'
PENDING_APPROVAL = 'pending_approval'

PROGRESS_AREAS = ('physical_progress', 'mental_progress', 'emotional_progress', 'social_progress')


def normalize_role(role):
    """Maps a role spelling onto the canonical role vocabulary.

    Args:
        role (str): The role as stored or submitted, e.g. 'Medical Buddy'.

    Returns:
        str or None: The canonical role, or None if the spelling is unknown.
    """
    if not role:
        return None
    key = str(role).strip().lower()
    if key in ROLES:
        return key
    return _ROLE_ALIASES.get(key)


def now_iso():
    return datetime.now().isoformat()


class Result:
    """Outcome of a store action.

    Attributes:
        success (bool): True if the action completed.
        error (str): A description of the failure, if any.
        id (str): The id of a created record, if any.
        data: Any payload the action returns (loaded records, assignments...).
    """
    def __init__(self, success, error=None, id=None, data=None):
        self.success = success
        self.error = error
        self.id = id
        self.data = data

    @classmethod
    def ok(cls, id=None, data=None):
        return cls(True, id=id, data=data)

    @classmethod
    def fail(cls, error):
        return cls(False, error=error)

    def __bool__(self):
        return self.success

    def __repr__(self):
        if self.success:
            return f"Result(success=True, id={self.id!r})"
        return f"Result(success=False, error={self.error!r})"


class User:
    """A staff member or patient account.

    Attributes:
        email (str): Login email.
        display_name (str): Name shown across dashboards.
        role (str): One of `ROLES`.
        status (str): 'active' or 'inactive'; users are never hard-deleted.
        tier (str): Buddy experience tier; only set for buddies.
        feedback (list): Supervisor feedback entries, oldest first.
    """
    def __init__(self, email, display_name, role, status=ACTIVE, tier=None, feedback=None, **extra):
        self.email = email
        self.display_name = display_name
        self.role = role
        self.status = status
        if role == BUDDY:
            self.tier = tier or BRONZE
            self.feedback = list(feedback or [])
            self.join_date = extra.pop('join_date', datetime.now().date().isoformat())
        elif tier:
            self.tier = tier
        self.__dict__.update(extra)


class FeedbackEntry:
    """A supervisor's note about a buddy.

    `positive` is inferred from the wording, as supervisors write free text.
    """
    def __init__(self, from_id, comment, date=None):
        self.__dict__['from'] = from_id
        lowered = comment.lower()
        self.positive = 'good' in lowered or 'excellent' in lowered
        self.comment = comment
        self.date = date or now_iso()


def as_list(value):
    """Intake forms send either a list or a single free-text entry; both become a list."""
    if value is None or value == '':
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def empty_progress():
    """Returns the progress block every new patient starts with."""
    progress = {area: 0 for area in PROGRESS_AREAS}
    progress.update({
        'overall_percentage': 0,
        'last_updated': now_iso(),
        'last_updated_by': None,
        'last_approved_by': None,
        'last_approval_date': None,
        'approval_status': PENDING,
        'approval_notes': '',
    })
    return progress


class Patient:
    """The full profile document written for a newly registered patient.

    Attributes:
        uid (str): The auth account id; also the document id.
        first_name (str), last_name (str): Patient name.
        assigned_doctor (str), assigned_nurse (str), assigned_buddy (str):
            Weak references to staff user ids ('' when unassigned).
        care_plan (dict): Goals, exercises, medications and timeline.
        overall_progress (dict): Four progress dimensions and approval state.
        approval_requests (list): Progress updates awaiting a doctor.
    """
    # Intake fields copied verbatim when supplied.
    PROFILE_FIELDS = (
        'phone', 'date_of_birth', 'gender', 'address',
        'medical_history', 'current_condition', 'allergies', 'medications',
        'emergency_contact', 'emergency_phone', 'relationship',
        'insurance_provider', 'insurance_number', 'notes',
    )

    def __init__(self, uid, details, created_by=RECEPTIONIST):
        timestamp = now_iso()
        self.uid = uid
        self.email = details['email']
        self.first_name = details['first_name']
        self.last_name = details['last_name']
        self.display_name = f"{self.first_name} {self.last_name}"
        self.role = PATIENT
        self.status = ACTIVE
        self.created_at = timestamp
        self.created_by = created_by
        for field in self.PROFILE_FIELDS:
            if field in details:
                setattr(self, field, details[field])
        self.assigned_doctor = details.get('assigned_doctor', '')
        self.assigned_nurse = details.get('assigned_nurse', '')
        self.assigned_buddy = details.get('assigned_buddy', '')
        self.care_plan = {
            'diagnosis': details.get('diagnosis', ''),
            'goals': as_list(details.get('treatment_goals')),
            'exercises': as_list(details.get('exercises')),
            'medications': as_list(details.get('medications')),
            'timeline': details.get('estimated_duration', '3 months'),
            'current_phase': 'initial',
            'start_date': timestamp,
            'notes': details.get('treatment_notes', ''),
        }
        self.overall_progress = empty_progress()
        self.approval_requests = []
        self.last_updated = timestamp


class Session:
    """A scheduled therapy or companionship session.

    Attributes:
        patient_id (str): The patient the session is for.
        buddy_id (str): The buddy running the session, if any.
        date (str): ISO date of the session.
        time (str): Start time as H:MM or HH:MM.
        type (str): Free-text session type, e.g. 'physiotherapy'.
        status (str): One of `SESSION_STATUSES`.
    """
    def __init__(self, patient_id, type, date, time, buddy_id=None, nurse_id=None, duration=None,
                 activities=None, status=SCHEDULED, created_by=RECEPTIONIST, **extra):
        timestamp = now_iso()
        self.patient_id = patient_id
        self.buddy_id = buddy_id
        self.nurse_id = nurse_id
        self.type = type
        self.date = date
        self.time = time
        self.duration = duration
        self.activities = list(activities or [])
        self.status = status
        self.created_at = timestamp
        self.created_by = created_by
        self.last_updated = timestamp
        self.__dict__.update(extra)


class ApprovalRequest:
    """A progress update waiting for a doctor's decision."""
    def __init__(self, data, requested_by, requested_by_uid, notes='', request_id=None, timestamp=None):
        self.id = request_id or str(uuid.uuid4())
        self.timestamp = timestamp or now_iso()
        self.data = data
        self.status = PENDING_APPROVAL
        self.requested_by = requested_by
        self.requested_by_uid = requested_by_uid
        self.notes = notes


# Notification vocabularies.
REMINDER = 'reminder'
SESSION_UPDATE = 'session_update'
CARE_PLAN_UPDATE = 'care_plan_update'
BUDDY_ASSIGNMENT = 'buddy_assignment'
PROGRESS_UPDATE = 'progress_update'
SYSTEM_ALERT = 'system_alert'
NOTIFICATION_TYPES = (REMINDER, SESSION_UPDATE, CARE_PLAN_UPDATE, BUDDY_ASSIGNMENT, PROGRESS_UPDATE, SYSTEM_ALERT)

PRIORITY_LEVELS = ('low', 'medium', 'high', 'urgent', 'critical')
FLAG_SEVERITIES = ('low', 'medium', 'high')

NOTIFICATION_PENDING = 'pending'
NOTIFICATION_READ = 'read'
NOTIFICATION_ACKNOWLEDGED = 'acknowledged'


class Notification:
    """A message for one user, e.g. a new buddy assignment or a session reminder.

    Attributes:
        recipient_id (str): The user the notification is for.
        type (str): One of `NOTIFICATION_TYPES`.
        priority (str): One of `PRIORITY_LEVELS`.
        related_entity (dict): `{type, id}` of the record it concerns, if any.
        read_by (list), acknowledged_by (list): User ids, in the order they acted.
    """
    def __init__(self, recipient_id, title, message, type=SYSTEM_ALERT, priority='medium',
                 sender_id=None, related_entity=None, scheduled_for=None, requires_acknowledgment=False):
        timestamp = now_iso()
        self.recipient_id = recipient_id
        self.sender_id = sender_id
        self.type = type
        self.priority = priority
        self.title = title
        self.message = message
        self.related_entity = related_entity
        self.status = NOTIFICATION_PENDING
        self.created_at = timestamp
        self.scheduled_for = scheduled_for or timestamp
        self.requires_acknowledgment = requires_acknowledgment
        self.read_by = []
        self.acknowledged_by = []
