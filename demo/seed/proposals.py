# Seed data: DAO proposals

from store import Topic

from .config import new_id, now_ns, days_from

PROPOSALS = [
    # Open for 7 days, already past quorum
    {"title": "Increase Fund Allocation for Rural Areas",
     "description": "Proposal to increase fund allocation for rural development schemes",
     "category": "Governance",
     "proposer": "citizen-002",
     "voting_days": 7,
     "status": "Active",
     "yes_votes": 45, "no_votes": 12, "abstain_votes": 3, "total_votes": 60,
     "quorum_required": 50},
]


def import_proposals(store) -> int:
    for entry in PROPOSALS:
        ts = now_ns()
        doc = {k: v for k, v in entry.items() if k != "voting_days"}
        doc.update({
            "id": new_id(),
            "created_at": ts,
            "voting_start": ts,
            "voting_end": days_from(ts, entry["voting_days"]),
            "execution_data": None,
        })
        store.insert(Topic.PROPOSALS, doc)
    return len(PROPOSALS)
