# In-memory governance ledger: policies, complaints, proposals, transactions
#
# Monetary values are plain ints in minor units and timestamps are int
# nanoseconds. Both only become strings in the serialize_* helpers below.

import copy
import logging
import secrets
import threading
import time
import uuid
from decimal import Decimal, ROUND_HALF_UP, localcontext
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from analysis import ComplaintAnalyzer, KeywordComplaintAnalyzer

logger = logging.getLogger(__name__)

MINOR_UNITS_PER_MAJOR = 10 ** 8
NS_PER_HOUR = 3600 * 1_000_000_000
VOTING_START_OFFSET_NS = NS_PER_HOUR
DEFAULT_TRANSACTION_LIMIT = 10
TREASURY_ADDRESS = "government_treasury"

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class PolicyStatus(str, Enum):
    DRAFT = "Draft"
    ACTIVE = "Active"
    COMPLETED = "Completed"

class Priority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

class ComplaintStatus(str, Enum):
    SUBMITTED = "Submitted"
    UNDER_REVIEW = "UnderReview"
    RESOLVED = "Resolved"

class ProposalStatus(str, Enum):
    DRAFT = "Draft"
    ACTIVE = "Active"

class VoteType(str, Enum):
    YES = "Yes"
    NO = "No"
    ABSTAIN = "Abstain"

class TransactionType(str, Enum):
    ALLOCATION = "Allocation"
    RELEASE = "Release"

class TransactionStatus(str, Enum):
    COMPLETED = "Completed"

class Topic(str, Enum):
    POLICIES = "policies"
    COMPLAINTS = "complaints"
    PROPOSALS = "proposals"
    TRANSACTIONS = "transactions"

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class LedgerError(Exception):
    """Base class for domain errors raised by the store."""

class NotFoundError(LedgerError):
    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} not found")
        self.kind = kind
        self.entity_id = entity_id

class InvalidAmountError(LedgerError):
    pass

class InsufficientFundsError(LedgerError):
    def __init__(self, policy_id: str, requested: int, available: int):
        super().__init__("Insufficient funds")
        self.policy_id = policy_id
        self.requested = requested
        self.available = available

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def new_id() -> str:
    return str(uuid.uuid4())

def now_ns() -> int:
    return time.time_ns()

def new_transaction_hash() -> str:
    return "0x" + secrets.token_hex(8)

def contract_stub(title: str) -> str:
    """Cosmetic contract text shown next to a policy. Never executed."""
    name = "".join(title.split())
    return f"// Smart Contract for {title}\ncontract {name}Contract {{\n    // Auto-generated contract\n}}"

def format_minor_units(value: int) -> str:
    """Render minor units as major units with exactly two decimals."""
    with localcontext() as ctx:
        ctx.prec = max(28, len(str(abs(value))) + 4)
        major = Decimal(value) / Decimal(MINOR_UNITS_PER_MAJOR)
        return str(major.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))

def utilization_rate(released: int, allocated: int) -> str:
    if allocated <= 0:
        return "0.00"
    with localcontext() as ctx:
        ctx.prec = max(28, len(str(released)) + len(str(allocated)) + 4)
        rate = Decimal(released) * 100 / Decimal(allocated)
        return str(rate.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))

# ---------------------------------------------------------------------------
# Wire serialization (ints -> decimal strings)
# ---------------------------------------------------------------------------
def serialize_policy(p: dict) -> dict:
    out = dict(p)
    for key in ("fund_allocation", "fund_released", "created_at", "updated_at"):
        out[key] = str(p[key])
    return out

def serialize_complaint(c: dict) -> dict:
    out = dict(c)
    out["created_at"] = str(c["created_at"])
    out["updated_at"] = str(c["updated_at"])
    out["resolution_time"] = str(c["resolution_time"]) if c.get("resolution_time") is not None else None
    return out

def serialize_proposal(p: dict) -> dict:
    out = dict(p)
    for key in ("created_at", "voting_start", "voting_end"):
        out[key] = str(p[key])
    return out

def serialize_transaction(t: dict) -> dict:
    out = dict(t)
    out["amount"] = str(t["amount"])
    out["timestamp"] = str(t["timestamp"])
    out["metadata"] = [list(pair) for pair in t["metadata"]]
    return out

SERIALIZERS = {
    Topic.POLICIES: serialize_policy,
    Topic.COMPLAINTS: serialize_complaint,
    Topic.PROPOSALS: serialize_proposal,
    Topic.TRANSACTIONS: serialize_transaction,
}

# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------
class LedgerStore:
    """Owns the four collections. Every public method holds the store lock,
    and records handed out are deep copies."""

    def __init__(self, analyzer: Optional[ComplaintAnalyzer] = None):
        self.analyzer = analyzer or KeywordComplaintAnalyzer()
        self._lock = threading.Lock()
        self._collections: Dict[Topic, Dict[str, dict]] = {topic: {} for topic in Topic}

    @property
    def policies(self) -> Dict[str, dict]:
        return self._collections[Topic.POLICIES]

    @property
    def complaints(self) -> Dict[str, dict]:
        return self._collections[Topic.COMPLAINTS]

    @property
    def proposals(self) -> Dict[str, dict]:
        return self._collections[Topic.PROPOSALS]

    @property
    def transactions(self) -> Dict[str, dict]:
        return self._collections[Topic.TRANSACTIONS]

    def _get(self, topic: Topic, kind: str, entity_id: str) -> dict:
        record = self._collections[topic].get(entity_id)
        if record is None:
            raise NotFoundError(kind, entity_id)
        return record

    def insert(self, topic: Topic, record: dict) -> dict:
        """Store a fully-formed record as is. Used by the seed importers."""
        with self._lock:
            self._collections[topic][record["id"]] = copy.deepcopy(record)
            return copy.deepcopy(record)

    def counts(self) -> Dict[str, int]:
        with self._lock:
            return {topic.value: len(items) for topic, items in self._collections.items()}

    def snapshot(self, topic: Topic) -> List[dict]:
        """Full serialized collection for a real-time topic."""
        topic = Topic(topic)
        serialize = SERIALIZERS[topic]
        with self._lock:
            return [serialize(copy.deepcopy(r)) for r in self._collections[topic].values()]

    # -- policies -----------------------------------------------------------
    def list_policies(self) -> List[dict]:
        with self._lock:
            return copy.deepcopy(list(self.policies.values()))

    def get_policy(self, policy_id: str) -> dict:
        with self._lock:
            return copy.deepcopy(self._get(Topic.POLICIES, "Policy", policy_id))

    def create_policy(self, fields: Dict[str, Any]) -> dict:
        ts = now_ns()
        policy = {
            "id": new_id(),
            "title": fields["title"],
            "description": fields["description"],
            "category": fields["category"],
            "fund_allocation": int(fields["fund_allocation"]),
            "fund_released": 0,
            "beneficiaries": 0,
            "status": PolicyStatus.DRAFT.value,
            "created_at": ts,
            "updated_at": ts,
            "district": fields["district"],
            "contractor": None,
            "eligibility_criteria": list(fields.get("eligibility_criteria") or []),
            "execution_conditions": list(fields.get("execution_conditions") or []),
            "smart_contract_code": contract_stub(fields["title"]),
        }
        with self._lock:
            self.policies[policy["id"]] = policy
            logger.info("Created policy %s (%s)", policy["id"], policy["title"])
            return copy.deepcopy(policy)

    def activate_policy(self, policy_id: str) -> dict:
        with self._lock:
            policy = self._get(Topic.POLICIES, "Policy", policy_id)
            policy["status"] = PolicyStatus.ACTIVE.value
            policy["updated_at"] = now_ns()
            logger.info("Activated policy %s", policy_id)
            return copy.deepcopy(policy)

    def release_funds(self, policy_id: str, amount: int, to_address: str) -> Tuple[dict, str]:
        amount = int(amount)
        if amount <= 0:
            raise InvalidAmountError("Release amount must be positive")
        with self._lock:
            policy = self._get(Topic.POLICIES, "Policy", policy_id)
            available = policy["fund_allocation"] - policy["fund_released"]
            if amount > available:
                logger.warning("Rejected release of %d on policy %s (available %d)",
                               amount, policy_id, available)
                raise InsufficientFundsError(policy_id, amount, available)
            ts = now_ns()
            policy["fund_released"] += amount
            policy["updated_at"] = ts
            transaction = {
                "id": new_id(),
                "policy_id": policy_id,
                "transaction_type": TransactionType.RELEASE.value,
                "amount": amount,
                "from_address": TREASURY_ADDRESS,
                "to_address": to_address,
                "timestamp": ts,
                "status": TransactionStatus.COMPLETED.value,
                "transaction_hash": new_transaction_hash(),
                "metadata": [["purpose", "fund_release"], ["recipient", to_address]],
            }
            self.transactions[transaction["id"]] = transaction
            logger.info("Released %d on policy %s (transaction %s)", amount, policy_id, transaction["id"])
            return copy.deepcopy(policy), transaction["id"]

    # -- complaints ---------------------------------------------------------
    def list_complaints(self) -> List[dict]:
        with self._lock:
            return copy.deepcopy(list(self.complaints.values()))

    def get_complaint(self, complaint_id: str) -> dict:
        with self._lock:
            return copy.deepcopy(self._get(Topic.COMPLAINTS, "Complaint", complaint_id))

    def create_complaint(self, fields: Dict[str, Any]) -> dict:
        priority = Priority(fields["priority"])
        analysis = self.analyzer.analyze(
            fields["description"], category=fields["category"], priority=priority)
        ts = now_ns()
        complaint = {
            "id": new_id(),
            "title": fields["title"],
            "description": fields["description"],
            "category": fields["category"],
            "priority": priority.value,
            "status": ComplaintStatus.SUBMITTED.value,
            "policy_id": fields.get("policy_id"),
            "district": fields["district"],
            "location": fields.get("location"),
            "media_links": list(fields.get("media_links") or []),
            "citizen_id": fields["citizen_id"],
            "created_at": ts,
            "updated_at": ts,
            "ai_analysis": analysis,
            "audit_score": 0.5,
            "resolution_time": None,
        }
        with self._lock:
            self.complaints[complaint["id"]] = complaint
            logger.info("Created complaint %s (%s, %s)", complaint["id"], priority.value, analysis["sentiment"])
            return copy.deepcopy(complaint)

    # -- proposals ----------------------------------------------------------
    def list_proposals(self) -> List[dict]:
        with self._lock:
            return copy.deepcopy(list(self.proposals.values()))

    def get_proposal(self, proposal_id: str) -> dict:
        with self._lock:
            return copy.deepcopy(self._get(Topic.PROPOSALS, "Proposal", proposal_id))

    def create_proposal(self, fields: Dict[str, Any]) -> dict:
        created = now_ns()
        voting_start = created + VOTING_START_OFFSET_NS
        voting_end = voting_start + int(fields["voting_duration_hours"]) * NS_PER_HOUR
        proposal = {
            "id": new_id(),
            "title": fields["title"],
            "description": fields["description"],
            "category": fields["category"],
            "proposer": fields["proposer"],
            "created_at": created,
            "voting_start": voting_start,
            "voting_end": voting_end,
            "status": ProposalStatus.DRAFT.value,
            "yes_votes": 0,
            "no_votes": 0,
            "abstain_votes": 0,
            "total_votes": 0,
            "quorum_required": int(fields["quorum_required"]),
            "execution_data": None,
        }
        with self._lock:
            self.proposals[proposal["id"]] = proposal
            logger.info("Created proposal %s (%s)", proposal["id"], proposal["title"])
            return copy.deepcopy(proposal)

    def vote(self, proposal_id: str, vote_type: VoteType, voting_power: int) -> dict:
        vote_type = VoteType(vote_type)
        tally = {VoteType.YES: "yes_votes", VoteType.NO: "no_votes",
                 VoteType.ABSTAIN: "abstain_votes"}[vote_type]
        with self._lock:
            proposal = self._get(Topic.PROPOSALS, "Proposal", proposal_id)
            proposal[tally] += voting_power
            proposal["total_votes"] += voting_power
            logger.info("Vote %s x%d on proposal %s", vote_type.value, voting_power, proposal_id)
            return copy.deepcopy(proposal)

    # -- transactions -------------------------------------------------------
    def list_transactions(self, limit: int = DEFAULT_TRANSACTION_LIMIT) -> List[dict]:
        with self._lock:
            # reversed() first so equal timestamps list the latest recorded first
            newest = sorted(reversed(list(self.transactions.values())),
                            key=lambda t: t["timestamp"], reverse=True)
            return copy.deepcopy(newest[:limit])

    def list_transactions_for_policy(self, policy_id: str) -> List[dict]:
        with self._lock:
            return copy.deepcopy([t for t in self.transactions.values() if t["policy_id"] == policy_id])

    # -- analytics ----------------------------------------------------------
    def analytics_overview(self) -> Dict[str, Any]:
        with self._lock:
            policies = list(self.policies.values())
            allocated = sum((p["fund_allocation"] for p in policies), 0)
            released = sum((p["fund_released"] for p in policies), 0)
            return {
                "totalPolicies": len(policies),
                "activePolicies": sum(1 for p in policies if p["status"] == PolicyStatus.ACTIVE.value),
                "totalComplaints": len(self.complaints),
                "pendingComplaints": sum(1 for c in self.complaints.values()
                                         if c["status"] == ComplaintStatus.SUBMITTED.value),
                "totalProposals": len(self.proposals),
                "activeProposals": sum(1 for p in self.proposals.values()
                                       if p["status"] == ProposalStatus.ACTIVE.value),
                "totalTransactions": len(self.transactions),
                "totalFundsAllocated": format_minor_units(allocated),
                "totalFundsReleased": format_minor_units(released),
                "utilizationRate": utilization_rate(released, allocated),
            }
