# Shared helpers and constants for all seed modules

from store import new_id, new_transaction_hash, now_ns, NS_PER_HOUR

# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------
NS_PER_DAY = 24 * NS_PER_HOUR


def days_from(start_ns: int, days: int) -> int:
    return start_ns + days * NS_PER_DAY


__all__ = ["new_id", "new_transaction_hash", "now_ns", "NS_PER_HOUR", "NS_PER_DAY", "days_from"]
