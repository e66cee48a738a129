# Seed data: Smart policies (2 active schemes with partial releases)

from store import Topic, contract_stub

from .config import new_id, now_ns

# ---------------------------------------------------------------------------
# Policy records. "key" is only used to link complaints and transactions.
# ---------------------------------------------------------------------------
POLICIES = [
    {"key": "pmay",
     "title": "PM Awas Yojana - Phase 3",
     "description": "Housing for All scheme providing affordable housing to urban poor",
     "category": "Housing",
     "fund_allocation": 5_000_000_000,
     "fund_released": 2_500_000_000,
     "beneficiaries": 1250,
     "status": "Active",
     "district": "Mumbai",
     "contractor": "ABC Construction Ltd",
     "eligibility_criteria": ["Below Poverty Line", "Urban residence", "No existing house"],
     "execution_conditions": ["House completion within 18 months", "Quality standards compliance"]},

    {"key": "digital_india",
     "title": "Digital India Infrastructure",
     "description": "Building digital infrastructure across rural areas",
     "category": "Technology",
     "fund_allocation": 3_000_000_000,
     "fund_released": 1_500_000_000,
     "beneficiaries": 500,
     "status": "Active",
     "district": "Bangalore",
     "contractor": "Tech Solutions Inc",
     "eligibility_criteria": ["Rural areas", "No internet connectivity"],
     "execution_conditions": ["Fiber optic installation", "WiFi hotspot setup"]},
]


def import_policies(store) -> dict:
    """Insert POLICIES and return a key -> policy id map."""
    ids = {}
    for entry in POLICIES:
        ts = now_ns()
        doc = {k: v for k, v in entry.items() if k != "key"}
        doc.update({
            "id": new_id(),
            "created_at": ts,
            "updated_at": ts,
            "smart_contract_code": contract_stub(entry["title"]),
        })
        store.insert(Topic.POLICIES, doc)
        ids[entry["key"]] = doc["id"]
    return ids
