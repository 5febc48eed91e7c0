"""
Greedy buddy auto-assignment.

`plan_assignments` matches patients without a buddy to active buddies below the
High Load threshold. Patients are taken in roster order; each one goes to the
candidate with the lowest workload, then the best tier, then the fewest sessions
overall. The planner works on a private copy of the workloads and bumps the chosen
buddy's figure after every pick, so later picks in the same batch see it. The result
is a heuristic balance, not an optimal matching.
"""
# rehabhub/assignment.py

from rehabhub.models import ACTIVE, BRONZE, INACTIVE, PATIENT, TIER_RANK, normalize_role
from rehabhub.stats import ASSIGNMENT_WEIGHT, HIGH_LOAD_THRESHOLD, buddies_of, buddy_workload


def unassigned_patients(patients):
    """Patients still waiting for a buddy; soft-deleted patients are skipped."""
    return [
        p for p in patients
        if not p.get('assigned_buddy')
        and p.get('status') != INACTIVE
        and normalize_role(p.get('role', PATIENT)) == PATIENT
    ]


def available_buddies(users, patients, sessions):
    """Active buddies whose workload is below the High Load threshold."""
    return [
        b for b in buddies_of(users)
        if b.get('status', ACTIVE) == ACTIVE
        and buddy_workload(b.get('id'), patients, sessions)['total_workload'] < HIGH_LOAD_THRESHOLD
    ]


def plan_assignments(patients, users, sessions):
    """Plans one batch of buddy assignments.

    Args:
        patients (list): Patient documents, in arrival order.
        users (list): User documents; buddies are picked from these.
        sessions (list): Session documents, used for workload and history.

    Returns:
        list: `{patient_id, patient_name, buddy_id, buddy_name}` dictionaries, one per
        patient that found a buddy. Empty when nobody is waiting or nobody is free.
    """
    waiting = unassigned_patients(patients)
    candidates = available_buddies(users, patients, sessions)
    if not waiting or not candidates:
        return []

    workloads = {b['id']: buddy_workload(b['id'], patients, sessions)['total_workload'] for b in candidates}
    history = {
        b['id']: sum(1 for s in sessions if s.get('buddy_id') == b['id'])
        for b in candidates
    }

    def rank(buddy):
        tier = buddy.get('tier') or BRONZE
        return (workloads[buddy['id']], -TIER_RANK.get(tier, 0), history[buddy['id']])

    assignments = []
    for patient in waiting:
        open_buddies = [b for b in candidates if workloads[b['id']] < HIGH_LOAD_THRESHOLD]
        if not open_buddies:
            break
        chosen = min(open_buddies, key=rank)
        workloads[chosen['id']] += ASSIGNMENT_WEIGHT
        assignments.append({
            'patient_id': patient['id'],
            'patient_name': patient.get('display_name')
                or f"{patient.get('first_name', '')} {patient.get('last_name', '')}".strip(),
            'buddy_id': chosen['id'],
            'buddy_name': chosen.get('display_name') or chosen.get('name', ''),
        })
    return assignments
