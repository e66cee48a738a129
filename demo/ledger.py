# CivicLedger Governance Data Service
# FastAPI + in-memory ledger + WebSocket topic fan-out

import json
import os
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import List, Optional, Any, Union
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, HTTPException, Depends, Query, WebSocket, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send
from pydantic import BaseModel, Field, field_validator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from analysis import KeywordComplaintAnalyzer
from importer import import_all
from realtime import CONNECTED_MESSAGE, Subscriber, TopicHub
from store import (
    LedgerStore, Topic, NotFoundError, InsufficientFundsError, InvalidAmountError,
    Priority, VoteType, DEFAULT_TRANSACTION_LIMIT,
    serialize_policy, serialize_complaint, serialize_proposal, serialize_transaction,
)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
from dotenv import load_dotenv
# Try multiple .env locations: next to this file, one level up, then cwd
_script_dir = Path(__file__).resolve().parent
_env_candidates = [
    _script_dir / ".env",            # demo/.env
    _script_dir.parent / ".env",     # repo root .env
    Path.cwd() / ".env",             # current working directory
]
for _env_path in _env_candidates:
    if _env_path.is_file():
        load_dotenv(_env_path, override=True)
        break
else:
    load_dotenv(override=True)  # fall back to python-dotenv's own search

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

SERVICE_NAME = "CivicLedger Backend"
SERVICE_VERSION = "1.0.0"
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3001"))
CORS_ORIGIN = os.getenv("CORS_ORIGIN", "http://localhost:8080")
RATE_LIMIT = os.getenv("RATE_LIMIT", "100 per 15 minutes")
MAX_BODY_BYTES = int(os.getenv("MAX_BODY_BYTES", str(10 * 1024 * 1024)))
SEED_DATA = os.getenv("SEED_DATA", "true").lower() in ("1", "true", "yes")
MAX_TRANSACTION_LIMIT = 1000

# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------
def parse_whole_number(value: Any, field: str) -> int:
    """Accept a non-negative int or a string of decimal digits. Floats are
    refused so currency never passes through binary floating point."""
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValueError(f"{field} must be an integer or a string of digits")
    if isinstance(value, str):
        text = value.strip()
        if not text.isdigit() or not text.isascii():
            raise ValueError(f"{field} must be a string of digits")
        value = int(text)
    if value < 0:
        raise ValueError(f"{field} must not be negative")
    return value

# ---------------------------------------------------------------------------
# Pydantic Models
# ---------------------------------------------------------------------------
class PolicyCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(..., max_length=10000)
    category: str = Field(..., max_length=200)
    fund_allocation: Union[int, str]
    district: str = Field(..., max_length=200)
    eligibility_criteria: List[str] = Field(default_factory=list)
    execution_conditions: List[str] = Field(default_factory=list)

    @field_validator("fund_allocation", mode="before")
    @classmethod
    def validate_allocation(cls, v):
        return parse_whole_number(v, "fund_allocation")

class ReleaseFundsRequest(BaseModel):
    amount: Union[int, str]
    to_address: str = Field(..., min_length=1, max_length=500)

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v):
        amount = parse_whole_number(v, "amount")
        if amount == 0:
            raise ValueError("amount must be positive")
        return amount

class ComplaintCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(..., max_length=10000)
    category: str = Field(..., max_length=200)
    priority: Priority
    policy_id: Optional[str] = None
    district: str = Field(..., max_length=200)
    location: Optional[str] = Field(None, max_length=500)
    media_links: List[str] = Field(default_factory=list)
    citizen_id: str = Field(..., min_length=1, max_length=200)

class ProposalCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(..., max_length=10000)
    category: str = Field(..., max_length=200)
    proposer: str = Field(..., min_length=1, max_length=200)
    voting_duration_hours: Union[int, str]
    quorum_required: int = Field(..., ge=0)

    @field_validator("voting_duration_hours", mode="before")
    @classmethod
    def validate_duration(cls, v):
        return parse_whole_number(v, "voting_duration_hours")

class VoteRequest(BaseModel):
    voter: str = Field(..., max_length=200)
    vote_type: VoteType
    voting_power: int = Field(..., ge=1)
    reason: Optional[str] = Field(None, max_length=2000)

class PolicyResponse(BaseModel):
    id: str
    title: str
    description: str
    category: str
    fund_allocation: str
    fund_released: str
    beneficiaries: int
    status: str
    created_at: str
    updated_at: str
    district: str
    contractor: Optional[str] = None
    eligibility_criteria: List[str]
    execution_conditions: List[str]
    smart_contract_code: str

class ReleaseFundsResponse(BaseModel):
    policy: PolicyResponse
    transaction_id: str

class AIAnalysis(BaseModel):
    sentiment: str
    category_prediction: str
    priority_score: float
    suggested_action: str
    confidence: float
    keywords: List[str]

class ComplaintResponse(BaseModel):
    id: str
    title: str
    description: str
    category: str
    priority: str
    status: str
    policy_id: Optional[str] = None
    district: str
    location: Optional[str] = None
    media_links: List[str]
    citizen_id: str
    created_at: str
    updated_at: str
    ai_analysis: Optional[AIAnalysis] = None
    audit_score: float
    resolution_time: Optional[str] = None

class ProposalResponse(BaseModel):
    id: str
    title: str
    description: str
    category: str
    proposer: str
    created_at: str
    voting_start: str
    voting_end: str
    status: str
    yes_votes: int
    no_votes: int
    abstain_votes: int
    total_votes: int
    quorum_required: int
    execution_data: Optional[Any] = None

class TransactionResponse(BaseModel):
    id: str
    policy_id: str
    transaction_type: str
    amount: str
    from_address: str
    to_address: str
    timestamp: str
    status: str
    transaction_hash: str
    metadata: List[List[str]]

class AnalyticsOverview(BaseModel):
    totalPolicies: int
    activePolicies: int
    totalComplaints: int
    pendingComplaints: int
    totalProposals: int
    activeProposals: int
    totalTransactions: int
    totalFundsAllocated: str
    totalFundsReleased: str
    utilizationRate: str

# ---------------------------------------------------------------------------
# Startup / Shutdown
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    store = LedgerStore(analyzer=KeywordComplaintAnalyzer())
    if SEED_DATA:
        counts = import_all(store)
        logger.info("Seeded ledger: %s", counts)
    app.state.store = store
    app.state.hub = TopicHub()
    logger.info("%s %s | CORS origin: %s | rate limit: %s",
                SERVICE_NAME, SERVICE_VERSION, CORS_ORIGIN, RATE_LIMIT)
    yield
    logger.info("%s shutting down", SERVICE_NAME)

# ---------------------------------------------------------------------------
# App & Globals
# ---------------------------------------------------------------------------
app = FastAPI(title="CivicLedger Governance Data Service", version=SERVICE_VERSION,
              lifespan=lifespan)

def build_limiter(rate_limit: str) -> Limiter:
    """Per-client sliding-window limit applied to every route."""
    return Limiter(key_func=get_remote_address, default_limits=[rate_limit],
                   strategy="moving-window")

limiter = build_limiter(RATE_LIMIT)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "0"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cross-Origin-Resource-Policy"] = "same-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        return response

class BodySizeLimitMiddleware:
    """Caps request bodies at MAX_BODY_BYTES. A declared Content-Length is
    checked up front; chunked bodies are counted as they stream in."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        limit = MAX_BODY_BYTES
        length = Headers(scope=scope).get("content-length")
        if length is not None:
            try:
                too_large = int(length) > limit
            except ValueError:
                await JSONResponse({"error": "Invalid Content-Length"}, status_code=400)(scope, receive, send)
                return
            if too_large:
                logger.warning("Rejected %s %s: body of %s bytes", scope["method"], scope["path"], length)
                await JSONResponse({"error": "Request body too large"}, status_code=413)(scope, receive, send)
                return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > limit:
                    logger.warning("Rejected %s %s: streamed body over %d bytes",
                                   scope["method"], scope["path"], limit)
                    raise HTTPException(status_code=413, detail="Request body too large")
            return message

        await self.app(scope, limited_receive, send)

# Last added runs first: CORS, then size cap, rate limit, headers, gzip
app.add_middleware(GZipMiddleware, minimum_size=1024)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(BodySizeLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[CORS_ORIGIN],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Error handlers: every error body is {"error": "..."}
# ---------------------------------------------------------------------------
@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail
    if exc.status_code == 404 and message == "Not Found":
        message = "Route not found"
    return JSONResponse({"error": message}, status_code=exc.status_code,
                        headers=getattr(exc, "headers", None))

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        loc = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
        message = f"Invalid {loc}: {first.get('msg')}" if loc else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"
    return JSONResponse({"error": message}, status_code=400)

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)

# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
async def get_store(request: Request) -> LedgerStore:
    return request.app.state.store

async def get_hub(request: Request) -> TopicHub:
    return request.app.state.hub

def broadcast(hub: TopicHub, store: LedgerStore, *topics: Topic) -> None:
    """Push the full post-mutation collection to every subscriber of each topic."""
    for topic in topics:
        hub.publish(topic, store.snapshot(topic))

# ---------------------------------------------------------------------------
# HEALTH
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": SERVICE_VERSION, "service": SERVICE_NAME}

# ---------------------------------------------------------------------------
# POLICY ENDPOINTS
# ---------------------------------------------------------------------------
@app.get("/api/policies", response_model=List[PolicyResponse])
async def list_policies(store=Depends(get_store)):
    return [serialize_policy(p) for p in store.list_policies()]

@app.get("/api/policies/{policy_id}", response_model=PolicyResponse)
async def get_policy(policy_id: str, store=Depends(get_store)):
    try:
        return serialize_policy(store.get_policy(policy_id))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

@app.post("/api/policies", response_model=PolicyResponse, status_code=status.HTTP_201_CREATED)
async def create_policy(data: PolicyCreate, store=Depends(get_store), hub=Depends(get_hub)):
    policy = store.create_policy(data.model_dump())
    broadcast(hub, store, Topic.POLICIES)
    return serialize_policy(policy)

@app.put("/api/policies/{policy_id}/activate", response_model=PolicyResponse)
async def activate_policy(policy_id: str, store=Depends(get_store), hub=Depends(get_hub)):
    try:
        policy = store.activate_policy(policy_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    broadcast(hub, store, Topic.POLICIES)
    return serialize_policy(policy)

@app.post("/api/policies/{policy_id}/release-funds", response_model=ReleaseFundsResponse)
async def release_funds(policy_id: str, req: ReleaseFundsRequest,
                        store=Depends(get_store), hub=Depends(get_hub)):
    try:
        policy, transaction_id = store.release_funds(policy_id, req.amount, req.to_address)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (InsufficientFundsError, InvalidAmountError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    broadcast(hub, store, Topic.POLICIES, Topic.TRANSACTIONS)
    return {"policy": serialize_policy(policy), "transaction_id": transaction_id}

# ---------------------------------------------------------------------------
# COMPLAINT ENDPOINTS
# ---------------------------------------------------------------------------
@app.get("/api/complaints", response_model=List[ComplaintResponse])
async def list_complaints(store=Depends(get_store)):
    return [serialize_complaint(c) for c in store.list_complaints()]

@app.get("/api/complaints/{complaint_id}", response_model=ComplaintResponse)
async def get_complaint(complaint_id: str, store=Depends(get_store)):
    try:
        return serialize_complaint(store.get_complaint(complaint_id))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

@app.post("/api/complaints", response_model=ComplaintResponse, status_code=status.HTTP_201_CREATED)
async def create_complaint(data: ComplaintCreate, store=Depends(get_store), hub=Depends(get_hub)):
    complaint = store.create_complaint(data.model_dump())
    broadcast(hub, store, Topic.COMPLAINTS)
    return serialize_complaint(complaint)

# ---------------------------------------------------------------------------
# DAO ENDPOINTS
# ---------------------------------------------------------------------------
@app.get("/api/proposals", response_model=List[ProposalResponse])
async def list_proposals(store=Depends(get_store)):
    return [serialize_proposal(p) for p in store.list_proposals()]

@app.get("/api/proposals/{proposal_id}", response_model=ProposalResponse)
async def get_proposal(proposal_id: str, store=Depends(get_store)):
    try:
        return serialize_proposal(store.get_proposal(proposal_id))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

@app.post("/api/proposals", response_model=ProposalResponse, status_code=status.HTTP_201_CREATED)
async def create_proposal(data: ProposalCreate, store=Depends(get_store), hub=Depends(get_hub)):
    proposal = store.create_proposal(data.model_dump())
    broadcast(hub, store, Topic.PROPOSALS)
    return serialize_proposal(proposal)

@app.post("/api/proposals/{proposal_id}/vote", response_model=ProposalResponse)
async def vote(proposal_id: str, ballot: VoteRequest, store=Depends(get_store), hub=Depends(get_hub)):
    try:
        proposal = store.vote(proposal_id, ballot.vote_type, ballot.voting_power)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    broadcast(hub, store, Topic.PROPOSALS)
    return serialize_proposal(proposal)

# ---------------------------------------------------------------------------
# TRANSACTION ENDPOINTS
# ---------------------------------------------------------------------------
@app.get("/api/transactions", response_model=List[TransactionResponse])
async def list_transactions(limit: int = Query(DEFAULT_TRANSACTION_LIMIT, ge=1, le=MAX_TRANSACTION_LIMIT),
                            store=Depends(get_store)):
    return [serialize_transaction(t) for t in store.list_transactions(limit)]

@app.get("/api/transactions/policy/{policy_id}", response_model=List[TransactionResponse])
async def list_policy_transactions(policy_id: str, store=Depends(get_store)):
    return [serialize_transaction(t) for t in store.list_transactions_for_policy(policy_id)]

# ---------------------------------------------------------------------------
# ANALYTICS ENDPOINTS
# ---------------------------------------------------------------------------
@app.get("/api/analytics/overview", response_model=AnalyticsOverview)
async def analytics_overview(store=Depends(get_store)):
    return store.analytics_overview()

# ---------------------------------------------------------------------------
# REAL-TIME CHANNEL
# ---------------------------------------------------------------------------
def parse_client_event(raw: str) -> str:
    """Client frames are {"event": "subscribe_policies"} or the bare event name."""
    try:
        message = json.loads(raw)
    except ValueError:
        return raw.strip()
    if isinstance(message, dict):
        return str(message.get("event", ""))
    if isinstance(message, str):
        return message
    return ""

def handle_client_event(event: str, subscriber: Subscriber, hub: TopicHub, store: LedgerStore) -> None:
    for action in ("unsubscribe", "subscribe"):
        prefix = action + "_"
        if event.startswith(prefix):
            try:
                topic = Topic(event[len(prefix):])
            except ValueError:
                break
            if action == "subscribe":
                hub.subscribe(topic, subscriber, store.snapshot(topic))
            else:
                hub.unsubscribe(topic, subscriber)
            return
    subscriber.push("error", {"error": f"Unknown event: {event or '(empty)'}"})

@app.websocket("/ws")
async def realtime(websocket: WebSocket):
    origin = websocket.headers.get("origin")
    if origin is not None and origin != CORS_ORIGIN:
        logger.warning("Refused WebSocket from origin %s", origin)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await websocket.accept()
    hub: TopicHub = websocket.app.state.hub
    store: LedgerStore = websocket.app.state.store
    subscriber = Subscriber(websocket)
    logger.info("Client connected: %s", subscriber.id)
    subscriber.push("connected", {"message": CONNECTED_MESSAGE})
    subscriber.start()
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                subscriber.push("error", {"error": "Binary frames are not supported"})
                continue
            handle_client_event(parse_client_event(raw), subscriber, hub, store)
    finally:
        hub.drop(subscriber)
        await subscriber.stop()
        logger.info("Client disconnected: %s", subscriber.id)

if __name__ == "__main__":
    uvicorn.run(app, host=HOST, port=PORT)
