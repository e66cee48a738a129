# Seed data: Citizen complaints

from store import Topic

from .config import new_id, now_ns

COMPLAINTS = [
    # Under review, linked to the housing scheme
    {"title": "Delayed Construction Work",
     "description": "PM Awas Yojana construction has been delayed by 3 months",
     "category": "Infrastructure",
     "priority": "High",
     "status": "UnderReview",
     "policy_key": "pmay",
     "district": "Mumbai",
     "location": "Andheri West",
     "media_links": ["photo1.jpg", "photo2.jpg"],
     "citizen_id": "citizen-001",
     "ai_analysis": {
         "sentiment": "negative",
         "category_prediction": "construction_delay",
         "priority_score": 0.8,
         "suggested_action": "Investigate contractor performance",
         "confidence": 0.85,
         "keywords": ["delay", "construction", "timeline"],
     },
     "audit_score": 0.7},
]


def import_complaints(store, policy_ids: dict) -> int:
    for entry in COMPLAINTS:
        ts = now_ns()
        doc = {k: v for k, v in entry.items() if k != "policy_key"}
        doc.update({
            "id": new_id(),
            "policy_id": policy_ids.get(entry.get("policy_key")),
            "created_at": ts,
            "updated_at": ts,
            "resolution_time": None,
        })
        store.insert(Topic.COMPLAINTS, doc)
    return len(COMPLAINTS)
