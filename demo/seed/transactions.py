# Seed data: Fund transactions (initial allocation + first release for PMAY)

from store import Topic

from .config import new_id, now_ns, new_transaction_hash

TRANSACTIONS = [
    {"policy_key": "pmay",
     "transaction_type": "Allocation",
     "amount": 5_000_000_000,
     "from_address": "government_treasury",
     "to_address": "policy_contract",
     "metadata": [["purpose", "initial_allocation"], ["scheme", "pmay"]]},

    {"policy_key": "pmay",
     "transaction_type": "Release",
     "amount": 2_500_000_000,
     "from_address": "policy_contract",
     "to_address": "contractor_wallet",
     "metadata": [["purpose", "construction_payment"], ["phase", "foundation"]]},
]


def import_transactions(store, policy_ids: dict) -> int:
    for entry in TRANSACTIONS:
        doc = {k: v for k, v in entry.items() if k != "policy_key"}
        doc.update({
            "id": new_id(),
            "policy_id": policy_ids[entry["policy_key"]],
            "timestamp": now_ns(),
            "status": "Completed",
            "transaction_hash": new_transaction_hash(),
        })
        store.insert(Topic.TRANSACTIONS, doc)
    return len(TRANSACTIONS)
