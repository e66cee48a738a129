# CivicLedger Seed Data Importer
# Loads the demo dataset into a LedgerStore. The app calls import_all() at
# startup; running this file prints the seeded dataset as JSON so frontend
# fixtures can be regenerated.
#
# Usage:  python demo/importer.py      (from repo root)
#     or: python importer.py           (from demo/)

import json
import sys
from pathlib import Path

# Ensure the demo package is importable when running from repo root
_demo_dir = Path(__file__).resolve().parent
if str(_demo_dir) not in sys.path:
    sys.path.insert(0, str(_demo_dir))

from store import LedgerStore, Topic
from seed.policies import import_policies
from seed.complaints import import_complaints
from seed.proposals import import_proposals
from seed.transactions import import_transactions


def import_all(store: LedgerStore) -> dict:
    """Seed every collection. Returns per-topic record counts."""
    policy_ids = import_policies(store)
    import_complaints(store, policy_ids)
    import_proposals(store)
    import_transactions(store, policy_ids)
    return store.counts()


def main():
    store = LedgerStore()
    counts = import_all(store)
    dataset = {topic.value: store.snapshot(topic) for topic in Topic}
    json.dump(dataset, sys.stdout, indent=2)
    print()
    print(", ".join(f"{name}: {n}" for name, n in counts.items()), file=sys.stderr)


if __name__ == "__main__":
    main()
