"""
This module provides the client state store at the centre of RehabHub.

It defines the `RehabStore` class, which is responsible for:
- Holding the in-memory snapshot of users, patients, sessions and care plans.
- Loading each array from the gateway with retries, replacing it wholesale.
- Validating every mutation before it reaches the gateway, then re-fetching the
  affected array (no optimistic local patching).
- Registering patients: auth account first, profile document second, with a
  compensating account deletion if the second step fails.
- Progress updates, doctor approvals, ratings, buddy feedback and tier recalculation.
- Doctor reviews and nurse verification of session logs, vitals readings and
  user notifications.
- Exposing derived statistics and buddy auto-assignment over the snapshot.

Every mutating action returns a `Result` and never raises to the caller.
"""
# rehabhub/store.py

import functools
import logging

from rehabhub import gemini
from rehabhub.assignment import available_buddies, plan_assignments, unassigned_patients
from rehabhub.auth import AuthState
from rehabhub.config import load_settings
from rehabhub.encryption import get_encryptor
from rehabhub.exceptions import RehabHubError, ValidationError
from rehabhub.gateway import GatewayResult, LocalGateway
from rehabhub.models import (
    APPROVED, BRONZE, BUDDY, BUDDY_ASSIGNMENT, CANCELLED, COMPLETED, FLAG_SEVERITIES, INACTIVE,
    NOTIFICATION_ACKNOWLEDGED, NOTIFICATION_READ, NOTIFICATION_TYPES, PATIENT, PENDING,
    PENDING_APPROVAL, PRIORITY_LEVELS, PROGRESS_AREAS, RECEPTIONIST, REJECTED, REMINDER,
    SYSTEM_ALERT, ApprovalRequest, FeedbackEntry, Notification, Patient, Result, Session, User,
    now_iso, normalize_role,
)
from rehabhub.retry import RetryPolicy, linear_backoff
from rehabhub import stats as buddy_stats
from rehabhub import validation

logger = logging.getLogger(__name__)

USERS = 'users'
SESSIONS = 'sessions'
CARE_PLANS = 'care_plans'
VITALS = 'vitals'
NOTIFICATIONS = 'notifications'


def store_action(func):
    """Turns exceptions raised inside a store action into a failed `Result`."""
    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except RehabHubError as e:
            return Result.fail(str(e))
        except Exception as e:
            logger.exception("Store action %s failed", func.__name__)
            return Result.fail(str(e))
    return wrapper


class AppState:
    """The snapshot every view reads from."""

    def __init__(self):
        self.users = []
        self.patients = []
        self.sessions = []
        self.care_plans = []
        self.vitals = []
        self.notifications = []
        self.is_loading = False
        self.error = None


class RehabStore:
    """Coordinates the snapshot, the gateway and the statistics engine."""

    def __init__(self, gateway, auth=None, retry_policy=None):
        """Initializes an empty store.

        Args:
            gateway (DocumentGateway): Document store and auth provider.
            auth (AuthState): Signed-in user; its "creating user" flag is raised
                while `add_patient` runs. Optional.
            retry_policy (RetryPolicy): Policy for load actions. Defaults to three
                attempts with a 1 s, 2 s linear back-off.
        """
        self._gateway = gateway
        self.auth = auth
        self.retry_policy = retry_policy or RetryPolicy()
        self.state = AppState()

    # Snapshot shortcuts

    @property
    def users(self):
        return self.state.users

    @property
    def patients(self):
        return self.state.patients

    @property
    def sessions(self):
        return self.state.sessions

    @property
    def care_plans(self):
        return self.state.care_plans

    @property
    def vitals(self):
        return self.state.vitals

    @property
    def notifications(self):
        return self.state.notifications

    @property
    def error(self):
        return self.state.error

    @property
    def is_loading(self):
        return self.state.is_loading

    def clear_error(self):
        self.state.error = None

    # Loading

    def _load(self, name, collection, filters, attribute):
        previous = self.state.is_loading
        self.state.is_loading = True
        try:
            outcome = self.retry_policy.run(
                lambda: self._gateway.query(collection, filters), description=f"load {name}"
            )
        finally:
            self.state.is_loading = previous
        if outcome.success:
            records = list(outcome.value.data or [])
            setattr(self.state, attribute, records)
            self.state.error = None
            return Result.ok(data=records)
        message = f"Failed to load {name} after {outcome.attempts} attempts: {outcome.error}"
        logger.error(message)
        self.state.error = message
        return Result.fail(message)

    def load_users(self) -> Result:
        return self._load('users', USERS, [], 'users')

    def load_patients(self) -> Result:
        return self._load('patients', USERS, [{'field': 'role', 'operator': '==', 'value': PATIENT}], 'patients')

    def load_sessions(self) -> Result:
        return self._load('sessions', SESSIONS, [], 'sessions')

    def load_care_plans(self) -> Result:
        return self._load('care plans', CARE_PLANS, [], 'care_plans')

    def load_vitals(self, patient_id=None) -> Result:
        filters = [{'field': 'patient_id', 'operator': '==', 'value': patient_id}] if patient_id else []
        return self._load('vitals', VITALS, filters, 'vitals')

    def load_notifications(self, recipient_id=None) -> Result:
        """Loads notifications, only those addressed to `recipient_id` when given."""
        filters = [{'field': 'recipient_id', 'operator': '==', 'value': recipient_id}] if recipient_id else []
        return self._load('notifications', NOTIFICATIONS, filters, 'notifications')

    def initialize(self) -> Result:
        """Loads every array; `data['failed']` lists the ones that could not be loaded."""
        self.state.is_loading = True
        try:
            results = {
                'users': self.load_users(),
                'patients': self.load_patients(),
                'sessions': self.load_sessions(),
                'care plans': self.load_care_plans(),
            }
        finally:
            self.state.is_loading = False
        failed = [name for name, result in results.items() if not result.success]
        if failed:
            logger.warning("Failed to load: %s", ', '.join(failed))
            return Result(False, error=f"Failed to load: {', '.join(failed)}", data={'failed': failed})
        return Result.ok(data={'failed': []})

    # Gateway helpers

    def _write(self, collection, doc_id, patch, reload):
        result = self._gateway.update(collection, doc_id, patch)
        if not result.success:
            return Result.fail(result.error)
        reload()
        return Result.ok(id=doc_id)

    @staticmethod
    def _find(records, record_id):
        return next((r for r in records if r.get('id') == record_id), None)

    def _require_patient(self, patient_id):
        patient = self._find(self.state.patients, patient_id)
        if patient is None:
            raise ValidationError(f"Patient not found: {patient_id}")
        return patient

    def _require_buddy(self, buddy_id):
        buddy = self._find(self.state.users, buddy_id)
        if buddy is None or normalize_role(buddy.get('role')) != BUDDY:
            raise ValidationError(f"Medical buddy not found: {buddy_id}")
        return buddy

    # Users

    @store_action
    def add_user(self, user_data: dict) -> Result:
        """Creates a user document (no auth account) and reloads users.

        Args:
            user_data (dict): Needs `email`, `display_name` and `role`; buddies may
                carry a `tier` (defaults to Bronze).

        Returns:
            Result: `id` of the new user.
        """
        validation.require_fields(user_data, ['email', 'display_name', 'role'])
        validation.check_email(user_data['email'])
        role = validation.check_role(user_data['role'])
        if user_data.get('tier'):
            validation.check_tier(user_data['tier'])
        extra = {k: v for k, v in user_data.items()
                 if k not in ('email', 'display_name', 'role', 'tier', 'feedback', 'status', 'password')}
        user = User(user_data['email'], user_data['display_name'], role,
                    tier=user_data.get('tier'), feedback=user_data.get('feedback'), **extra)
        result = self._gateway.create(USERS, vars(user))
        if not result.success:
            return Result.fail(result.error)
        self.load_users()
        return Result.ok(id=result.id)

    @store_action
    def update_user(self, user_id, updates: dict) -> Result:
        validation.require_id(user_id, 'User ID')
        updates = dict(updates)
        if 'email' in updates:
            validation.check_email(updates['email'])
        if 'role' in updates:
            updates['role'] = validation.check_role(updates['role'])
        if 'tier' in updates:
            validation.check_tier(updates['tier'])
        if 'status' in updates:
            validation.check_user_status(updates['status'])
        if not updates:
            raise ValidationError('No updates supplied')
        return self._write(USERS, user_id, updates, self.load_users)

    # Patients

    @store_action
    def add_patient(self, patient_data: dict, created_by=RECEPTIONIST) -> Result:
        """Registers a patient: auth account, then the full profile document.

        The auth flag is raised for the whole call so that the provider's sign-in and
        sign-out of the new account does not end the operator's session. If the
        profile write fails, the new account is deleted again.

        Args:
            patient_data (dict): Needs `email`, `password`, `first_name`, `last_name`;
                may carry intake, care-plan and assignment fields.
            created_by (str): Who registered the patient.

        Returns:
            Result: `id` is the new patient's uid.
        """
        if self.auth is not None:
            self.auth.set_creating_user(True)
        try:
            validation.require_fields(patient_data, ['email', 'password', 'first_name', 'last_name'])
            validation.check_email(patient_data['email'])
            validation.check_password(patient_data['password'])

            auth_result = self._gateway.create_user_account(
                patient_data['email'],
                patient_data['password'],
                {'display_name': f"{patient_data['first_name']} {patient_data['last_name']}", 'role': PATIENT},
            )
            if not auth_result.success:
                return Result.fail(auth_result.error)

            uid = auth_result.user['uid']
            details = {k: v for k, v in patient_data.items() if k not in ('password', 'confirm_password')}
            document = vars(Patient(uid, details, created_by=created_by))
            try:
                write = self._gateway.update(USERS, uid, document)
            except Exception as e:
                logger.exception("Writing the profile of patient %s failed", uid)
                write = GatewayResult.failure(str(e))
            if not write.success:
                self._compensate_account(uid)
                return Result.fail(f"Patient profile could not be saved: {write.error}")

            self.load_patients()
            return Result.ok(id=uid)
        finally:
            if self.auth is not None:
                self.auth.set_creating_user(False)

    def _compensate_account(self, uid):
        try:
            undo = self._gateway.delete_user_account(uid)
        except Exception:
            logger.exception("Could not remove orphaned account %s", uid)
            return
        if not undo.success:
            logger.error("Could not remove orphaned account %s: %s", uid, undo.error)

    @store_action
    def update_patient(self, patient_id, updates: dict) -> Result:
        validation.require_id(patient_id, 'Patient ID')
        if not updates:
            raise ValidationError('No updates supplied')
        if 'email' in updates:
            validation.check_email(updates['email'])
        if 'status' in updates:
            validation.check_user_status(updates['status'])
        return self._write(USERS, patient_id, dict(updates), self.load_patients)

    @store_action
    def update_patient_progress(self, patient_id, progress: dict, updated_by) -> Result:
        """Records new progress values and sends them back for approval.

        `overall_percentage` becomes the mean of the four dimensions and
        `approval_status` is reset to pending whatever it was before.

        Args:
            patient_id (str): The patient to update.
            progress (dict): Any of the four progress dimensions, 0-100; missing
                dimensions count as 0.
            updated_by (str): Id of the buddy or staff member making the change.

        Returns:
            Result: Failure without any write if a dimension is out of range.
        """
        if not patient_id or not updated_by:
            raise ValidationError('Patient ID and updated_by are required')
        values = validation.check_progress(progress)
        timestamp = now_iso()
        patch = {f'overall_progress.{area}': values[area] for area in PROGRESS_AREAS}
        patch.update({
            'overall_progress.overall_percentage': sum(values.values()) / len(PROGRESS_AREAS),
            'overall_progress.last_updated': timestamp,
            'overall_progress.last_updated_by': updated_by,
            'overall_progress.approval_status': PENDING,
            'last_updated': timestamp,
        })
        return self._write(USERS, patient_id, patch, self.load_patients)

    @store_action
    def approve_patient_progress(self, patient_id, approval_status, approved_by, approval_notes='') -> Result:
        if not patient_id or not approved_by:
            raise ValidationError('Patient ID and approved_by are required')
        if approval_status not in (APPROVED, REJECTED):
            raise ValidationError('Approval status must be either "approved" or "rejected"')
        timestamp = now_iso()
        patch = {
            'overall_progress.approval_status': approval_status,
            'overall_progress.last_approved_by': approved_by,
            'overall_progress.last_approval_date': timestamp,
            'overall_progress.approval_notes': approval_notes or '',
            'last_updated': timestamp,
        }
        return self._write(USERS, patient_id, patch, self.load_patients)

    @store_action
    def delete_patient(self, patient_id) -> Result:
        """Soft-deletes a patient by marking the record inactive."""
        validation.require_id(patient_id, 'Patient ID')
        timestamp = now_iso()
        patch = {'status': INACTIVE, 'deleted_at': timestamp, 'last_updated': timestamp}
        return self._write(USERS, patient_id, patch, self.load_patients)

    @store_action
    def submit_progress_request(self, patient_id, data: dict, requested_by, requested_by_uid, notes='') -> Result:
        """Queues a progress update from a patient or buddy for a doctor to decide on.

        Returns:
            Result: `id` of the new approval request.
        """
        validation.require_id(patient_id, 'Patient ID')
        validation.require_id(requested_by_uid, 'Requester ID')
        role = normalize_role(requested_by)
        if role not in (PATIENT, BUDDY):
            raise ValidationError('Progress updates can only be requested by a patient or a medical buddy')
        values = validation.check_progress(data)
        patient = self._require_patient(patient_id)

        request = ApprovalRequest(values, role, requested_by_uid, notes=notes)
        requests = list(patient.get('approval_requests') or []) + [vars(request)]
        patch = {
            'approval_requests': requests,
            'last_progress_update': request.timestamp,
            'last_updated_by': requested_by_uid,
        }
        result = self._write(USERS, patient_id, patch, self.load_patients)
        return Result.ok(id=request.id) if result.success else result

    @store_action
    def decide_progress_request(self, patient_id, request_id, decision, doctor_id, notes='') -> Result:
        """Approves or rejects a pending request; a decided request cannot change again.

        Approval also copies the requested values into `overall_progress`.
        """
        if decision not in (APPROVED, REJECTED):
            raise ValidationError('Decision must be either "approved" or "rejected"')
        validation.require_id(doctor_id, 'Doctor ID')
        patient = self._require_patient(patient_id)
        requests = [dict(r) for r in patient.get('approval_requests') or []]
        request = self._find(requests, request_id)
        if request is None:
            raise ValidationError(f"Approval request not found: {request_id}")
        if request.get('status') != PENDING_APPROVAL:
            raise ValidationError(f"Approval request {request_id} has already been {request.get('status')}")

        timestamp = now_iso()
        request.update({
            'status': decision,
            'approved_by': doctor_id,
            'approved_by_role': 'doctor',
            'approval_date': timestamp,
            'approval_notes': notes or '',
        })
        patch = {'approval_requests': requests, 'last_updated': timestamp}
        if decision == APPROVED:
            values = validation.check_progress(request.get('data') or {})
            patch.update({f'overall_progress.{area}': values[area] for area in PROGRESS_AREAS})
            patch.update({
                'overall_progress.overall_percentage': sum(values.values()) / len(PROGRESS_AREAS),
                'overall_progress.last_updated': timestamp,
                'overall_progress.last_updated_by': request.get('requested_by_uid'),
                'overall_progress.approval_status': APPROVED,
                'overall_progress.last_approved_by': doctor_id,
                'overall_progress.last_approval_date': timestamp,
                'overall_progress.approval_notes': notes or '',
            })
        return self._write(USERS, patient_id, patch, self.load_patients)

    @store_action
    def save_care_plan(self, patient_id, plan: dict, doctor_id) -> Result:
        """Stores a care plan document and mirrors it onto the patient record."""
        validation.require_id(patient_id, 'Patient ID')
        validation.require_id(doctor_id, 'Doctor ID')
        if not isinstance(plan, dict) or not plan:
            raise ValidationError('Care plan details are required')
        for field in ('goals', 'exercises', 'medications'):
            if field in plan and not isinstance(plan[field], list):
                raise ValidationError(f"{field} must be a list")

        created = self._gateway.create(CARE_PLANS, {'patient_id': patient_id, 'doctor_id': doctor_id, **plan})
        if not created.success:
            return Result.fail(created.error)
        self.load_care_plans()

        patch = {f'care_plan.{field}': value for field, value in plan.items()}
        patch.update({
            'care_plan.plan_id': created.id,
            'care_plan.last_updated_by': doctor_id,
            'last_updated': now_iso(),
        })
        result = self._write(USERS, patient_id, patch, self.load_patients)
        return Result.ok(id=created.id) if result.success else result

    @store_action
    def record_vitals(self, patient_id, vitals: dict, recorded_by=None) -> Result:
        """Adds a vitals reading for a patient to the `vitals` collection.

        Returns:
            Result: `id` of the reading.
        """
        self._require_patient(patient_id)
        values = validation.check_vitals(vitals)
        values.update({'patient_id': patient_id, 'recorded_by': recorded_by, 'recorded_at': now_iso()})
        created = self._gateway.create(VITALS, values)
        if not created.success:
            return Result.fail(created.error)
        self.load_vitals()
        return Result.ok(id=created.id)

    # Sessions

    @staticmethod
    def _check_session_fields(data):
        if 'date' in data:
            validation.check_date(data['date'])
        if 'time' in data:
            validation.check_time(data['time'])
        if data.get('duration') is not None:
            validation.check_duration(data['duration'])
        if 'status' in data:
            validation.check_session_status(data['status'])
        if data.get('patient_rating') is not None:
            validation.check_rating(data['patient_rating'])

    @store_action
    def add_session(self, session_data: dict) -> Result:
        """Schedules a session and reloads sessions.

        Args:
            session_data (dict): Needs `patient_id`, `type`, `date` (ISO) and `time`
                (H:MM); may carry `buddy_id`, `nurse_id`, `duration`, `activities`.

        Returns:
            Result: `id` of the new session.
        """
        validation.require_fields(session_data, ['patient_id', 'type', 'date', 'time'])
        self._check_session_fields(session_data)
        session = Session(**session_data)
        result = self._gateway.create(SESSIONS, vars(session))
        if not result.success:
            return Result.fail(result.error)
        self.load_sessions()
        return Result.ok(id=result.id)

    @store_action
    def update_session(self, session_id, updates: dict) -> Result:
        validation.require_id(session_id, 'Session ID')
        if not updates:
            raise ValidationError('No updates supplied')
        self._check_session_fields(updates)
        patch = dict(updates, last_updated=now_iso())
        return self._write(SESSIONS, session_id, patch, self.load_sessions)

    @store_action
    def delete_session(self, session_id) -> Result:
        """Cancels a session; the record is kept with status 'cancelled'."""
        validation.require_id(session_id, 'Session ID')
        timestamp = now_iso()
        patch = {'status': CANCELLED, 'cancelled_at': timestamp, 'last_updated': timestamp}
        return self._write(SESSIONS, session_id, patch, self.load_sessions)

    @store_action
    def complete_session(self, session_id, notes=None) -> Result:
        validation.require_id(session_id, 'Session ID')
        timestamp = now_iso()
        patch = {'status': COMPLETED, 'completed_at': timestamp, 'last_updated': timestamp}
        if notes:
            patch['session_notes'] = notes
        return self._write(SESSIONS, session_id, patch, self.load_sessions)

    @store_action
    def rate_session(self, session_id, rating, comments='') -> Result:
        """Stores a patient's rating of a completed session and refreshes the buddy's tier."""
        validation.require_id(session_id, 'Session ID')
        validation.check_rating(rating)
        session = self._find(self.state.sessions, session_id)
        if session is None:
            raise ValidationError(f"Session not found: {session_id}")
        if session.get('status') != COMPLETED:
            raise ValidationError('Only completed sessions can be rated')

        timestamp = now_iso()
        patch = {
            'patient_rating': rating,
            'patient_feedback': comments or '',
            'rating_date': timestamp,
            'last_updated': timestamp,
        }
        result = self._write(SESSIONS, session_id, patch, self.load_sessions)
        if result.success and session.get('buddy_id'):
            tier = self.recalculate_buddy_tier(session['buddy_id'])
            if not tier.success:
                logger.warning("Tier not recalculated for %s: %s", session['buddy_id'], tier.error)
        return result

    def _require_session(self, session_id):
        validation.require_id(session_id, 'Session ID')
        session = self._find(self.state.sessions, session_id)
        if session is None:
            raise ValidationError(f"Session not found: {session_id}")
        return session

    @store_action
    def review_session(self, session_id, feedback, doctor_id) -> Result:
        """Records a doctor's review of a session.

        The review is also appended to the session buddy's feedback, so it counts in
        the buddy's supervision history.
        """
        validation.require_id(doctor_id, 'Doctor ID')
        feedback = validation.check_text(feedback, 'Please provide feedback')
        session = self._require_session(session_id)

        timestamp = now_iso()
        patch = {
            'doctor_feedback': feedback,
            'doctor_feedback_date': timestamp,
            'doctor_feedback_by': doctor_id,
            'last_updated': timestamp,
        }
        result = self._write(SESSIONS, session_id, patch, self.load_sessions)
        buddy_id = session.get('buddy_id')
        if result.success and buddy_id and self._find(self.state.users, buddy_id):
            shared = self.submit_buddy_feedback(buddy_id, doctor_id, feedback)
            if not shared.success:
                logger.warning("Review of %s not added to buddy %s: %s", session_id, buddy_id, shared.error)
        return result

    @store_action
    def verify_session_log(self, session_id, nurse_id, verified=True, notes=None) -> Result:
        """Marks a session log as checked by a nurse, approved or needing attention."""
        validation.require_id(nurse_id, 'Nurse ID')
        self._require_session(session_id)
        timestamp = now_iso()
        default_notes = 'Session verified and approved' if verified else 'Session requires attention'
        patch = {
            'nurse_verified': True,
            'nurse_approved': bool(verified),
            'nurse_verification_date': timestamp,
            'verified_by': nurse_id,
            'nurse_notes': notes or default_notes,
            'last_updated': timestamp,
        }
        return self._write(SESSIONS, session_id, patch, self.load_sessions)

    @store_action
    def flag_session(self, session_id, nurse_id, reason, severity='medium') -> Result:
        """Raises a red flag on a session; it goes back into the nurse's review queue."""
        validation.require_id(nurse_id, 'Nurse ID')
        reason = validation.check_text(reason, 'Please provide a reason for the flag')
        validation.check_choice(severity, FLAG_SEVERITIES, 'Flag severity')
        self._require_session(session_id)
        timestamp = now_iso()
        patch = {
            'red_flag': True,
            'flag_reason': reason,
            'flag_severity': severity,
            'flag_raised_by': nurse_id,
            'flag_date': timestamp,
            'nurse_verified': False,
            'last_updated': timestamp,
        }
        return self._write(SESSIONS, session_id, patch, self.load_sessions)

    # Buddies

    @store_action
    def submit_buddy_feedback(self, buddy_id, from_id, comment) -> Result:
        validation.require_id(from_id, 'Reviewer ID')
        if not isinstance(comment, str) or not comment.strip():
            raise ValidationError('Please provide evaluation feedback')
        buddy = self._require_buddy(buddy_id)
        entry = vars(FeedbackEntry(from_id, comment.strip()))
        feedback = list(buddy.get('feedback') or []) + [entry]
        return self.update_user(buddy_id, {'feedback': feedback})

    @store_action
    def recalculate_buddy_tier(self, buddy_id) -> Result:
        """Re-derives a buddy's tier from all rated sessions; `data` is the tier."""
        buddy = self._require_buddy(buddy_id)
        current = buddy.get('tier') or BRONZE
        summary = buddy_stats.buddy_rating_stats(buddy, self.state.sessions, self.state.patients, 'all')
        if summary is None or summary['tier'] == current:
            return Result.ok(id=buddy_id, data=current)
        result = self.update_user(buddy_id, {'tier': summary['tier']})
        if not result.success:
            return result
        logger.info("Buddy %s moved from %s to %s", buddy_id, current, summary['tier'])
        return Result.ok(id=buddy_id, data=summary['tier'])

    def get_buddies(self):
        return buddy_stats.buddies_of(self.state.users)

    def unassigned_patients(self):
        return unassigned_patients(self.state.patients)

    def available_buddies(self):
        return available_buddies(self.state.users, self.state.patients, self.state.sessions)

    def buddy_workload(self, buddy_id):
        return buddy_stats.buddy_workload(buddy_id, self.state.patients, self.state.sessions)

    def tier_distribution(self):
        return buddy_stats.tier_distribution(self.state.users)

    def buddy_leaderboard(self, time_filter='30days', buddy_id=None, now=None):
        return buddy_stats.buddy_leaderboard(
            self.state.users, self.state.sessions, self.state.patients, time_filter, buddy_id, now
        )

    @property
    def stats(self):
        """Per-role dashboard statistics, recomputed from the snapshot on every read."""
        profile = self.auth.profile if self.auth is not None else None
        return buddy_stats.role_overview(
            profile, self.state.users, self.state.patients, self.state.sessions, self.state.care_plans
        )

    def auto_assign_buddies(self):
        """Assigns buddies to every waiting patient that can be placed.

        The whole batch is planned against the current snapshot first, then each
        assignment is written through `update_patient`.

        Returns:
            list: The assignments that were written.
        """
        plan = plan_assignments(self.state.patients, self.state.users, self.state.sessions)
        applied = []
        for assignment in plan:
            result = self.update_patient(assignment['patient_id'], {'assigned_buddy': assignment['buddy_id']})
            if result.success:
                applied.append(assignment)
                self._announce_assignment(assignment)
            else:
                logger.warning("Could not assign %s to %s: %s",
                               assignment['patient_id'], assignment['buddy_id'], result.error)
        return applied

    def _announce_assignment(self, assignment):
        patient_name = assignment['patient_name'] or 'A new patient'
        buddy_name = assignment['buddy_name'] or 'A medical buddy'
        messages = (
            (assignment['buddy_id'], 'New patient assigned', f"{patient_name} has been assigned to you.",
             {'type': 'patient', 'id': assignment['patient_id']}),
            (assignment['patient_id'], 'Your medical buddy', f"{buddy_name} is now your medical buddy.",
             {'type': 'user', 'id': assignment['buddy_id']}),
        )
        for recipient_id, title, message, related in messages:
            sent = self.notify(recipient_id, title, message, type=BUDDY_ASSIGNMENT, priority='high',
                               related_entity=related)
            if not sent.success:
                logger.warning("Assignment notice for %s not sent: %s", recipient_id, sent.error)

    # Notifications

    def _reload_notifications(self):
        recipient = self.auth.uid if self.auth is not None else None
        return self.load_notifications(recipient)

    @store_action
    def notify(self, recipient_id, title, message, type=SYSTEM_ALERT, priority='medium', sender_id=None,
               related_entity=None, scheduled_for=None, requires_acknowledgment=False) -> Result:
        """Stores a notification for one user.

        Args:
            recipient_id (str): Who the notification is for.
            title (str), message (str): Text shown to the recipient.
            type (str): One of `NOTIFICATION_TYPES`.
            priority (str): One of `PRIORITY_LEVELS`.
            related_entity (dict): `{type, id}` of the record it concerns.
            scheduled_for (str): ISO date-time it becomes due; defaults to now.

        Returns:
            Result: `id` of the new notification.
        """
        validation.require_id(recipient_id, 'Recipient ID')
        title = validation.check_text(title, 'Notification title is required')
        message = validation.check_text(message, 'Notification message is required')
        validation.check_choice(type, NOTIFICATION_TYPES, 'Notification type')
        validation.check_choice(priority, PRIORITY_LEVELS, 'Priority')
        if scheduled_for is not None:
            validation.check_date(scheduled_for)
        notification = Notification(
            recipient_id, title, message, type=type, priority=priority, sender_id=sender_id,
            related_entity=related_entity, scheduled_for=scheduled_for,
            requires_acknowledgment=requires_acknowledgment,
        )
        result = self._gateway.create(NOTIFICATIONS, vars(notification))
        if not result.success:
            return Result.fail(result.error)
        self._reload_notifications()
        return Result.ok(id=result.id)

    def create_reminder(self, recipient_id, message, scheduled_for, sender_id=None, related_entity=None) -> Result:
        if not scheduled_for:
            return Result.fail('Reminder time is required')
        return self.notify(recipient_id, 'Reminder', message, type=REMINDER, sender_id=sender_id,
                           related_entity=related_entity, scheduled_for=scheduled_for)

    def _add_reader(self, notification_id, user_id, field, status):
        validation.require_id(notification_id, 'Notification ID')
        validation.require_id(user_id, 'User ID')
        found = self._gateway.read(NOTIFICATIONS, notification_id)
        if not found.success:
            return Result.fail(found.error)
        readers = list(found.data.get(field) or [])
        if user_id in readers:
            return Result.ok(id=notification_id)
        readers.append(user_id)
        return self._write(NOTIFICATIONS, notification_id, {field: readers, 'status': status},
                           self._reload_notifications)

    @store_action
    def mark_notification_read(self, notification_id, user_id) -> Result:
        return self._add_reader(notification_id, user_id, 'read_by', NOTIFICATION_READ)

    @store_action
    def acknowledge_notification(self, notification_id, user_id) -> Result:
        return self._add_reader(notification_id, user_id, 'acknowledged_by', NOTIFICATION_ACKNOWLEDGED)

    @store_action
    def summarize_buddy_reviews(self, buddy_id, max_length=300) -> Result:
        """Summarizes patient comments and supervisor feedback for a buddy.

        Returns:
            Result: `data` is the summary dictionary from `rehabhub.gemini`; on a
            model failure `success` is False but `data['summary']` holds a fallback.
        """
        buddy = self._require_buddy(buddy_id)
        comments = [
            s['patient_feedback'] for s in buddy_stats.rated_sessions(buddy_id, self.state.sessions)
            if s.get('patient_feedback')
        ]
        comments += [f.get('comment', '') for f in buddy.get('feedback') or []]
        summary = gemini.summarize_reviews(comments, max_length)
        return Result(summary['success'], error=summary.get('error'), data=summary)


def create_store(settings=None):
    """Builds a store over the local encrypted gateway using `settings` (or the environment)."""
    settings = settings or load_settings()
    gateway = LocalGateway(settings.data_file, encryptor=get_encryptor(settings.key_file))
    policy = RetryPolicy(settings.load_attempts, delay=linear_backoff(settings.retry_delay))
    return RehabStore(gateway, auth=AuthState(gateway), retry_policy=policy)
