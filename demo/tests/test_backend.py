"""
REST API tests for the CivicLedger governance data service.

Uses httpx AsyncClient + ASGITransport to exercise endpoints in-process;
every test starts from the seeded demo dataset.
"""

import json

import pytest
from limits.strategies import MovingWindowRateLimiter

import ledger

pytestmark = pytest.mark.asyncio


# ═══════════════════════════════════════════════════════════════════════════════
# HEALTH & ROUTING
# ═══════════════════════════════════════════════════════════════════════════════

class TestHealthCheck:
    async def test_health_endpoint(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert data["service"] == "CivicLedger Backend"
        assert "timestamp" in data

    async def test_unknown_route(self, client):
        resp = await client.get("/api/nothing-here")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Route not found"}

    async def test_security_headers(self, client):
        resp = await client.get("/health")
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"


class TestHttpHardening:
    async def test_cors_allows_configured_origin(self, client):
        resp = await client.options("/api/policies", headers={
            "Origin": "http://localhost:8080",
            "Access-Control-Request-Method": "POST",
        })
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "http://localhost:8080"

    async def test_cors_rejects_other_origin(self, client):
        resp = await client.get("/api/policies", headers={"Origin": "http://evil.example"})
        assert resp.status_code == 200
        assert "access-control-allow-origin" not in resp.headers

    async def test_body_size_cap(self, client, policy_body, monkeypatch):
        monkeypatch.setattr(ledger, "MAX_BODY_BYTES", 64)
        resp = await client.post("/api/policies", json=policy_body)
        assert resp.status_code == 413
        assert resp.json() == {"error": "Request body too large"}

    async def test_chunked_body_cap(self, client, policy_body, monkeypatch):
        monkeypatch.setattr(ledger, "MAX_BODY_BYTES", 64)
        payload = json.dumps(policy_body).encode()

        async def chunks():
            for i in range(0, len(payload), 32):
                yield payload[i:i + 32]

        resp = await client.post("/api/policies", content=chunks(),
                                 headers={"Content-Type": "application/json"})
        assert "content-length" not in resp.request.headers
        assert resp.status_code == 413
        assert resp.json() == {"error": "Request body too large"}
        assert len((await client.get("/api/policies")).json()) == 2

    async def test_chunked_body_under_cap_accepted(self, client, policy_body):
        payload = json.dumps(policy_body).encode()

        async def chunks():
            yield payload[:20]
            yield payload[20:]

        resp = await client.post("/api/policies", content=chunks(),
                                 headers={"Content-Type": "application/json"})
        assert resp.status_code == 201

    async def test_limiter_uses_sliding_window(self):
        assert isinstance(ledger.limiter.limiter, MovingWindowRateLimiter)

    async def test_rate_limit_exceeded(self, client, monkeypatch):
        monkeypatch.setattr(ledger.app.state, "limiter", ledger.build_limiter("3 per 15 minutes"))
        for _ in range(3):
            assert (await client.get("/health")).status_code == 200
        resp = await client.get("/health")
        assert resp.status_code == 429
        assert "error" in resp.json()

    async def test_unexpected_fault_is_generic_500(self, tolerant_client, monkeypatch):
        def broken_listing():
            raise RuntimeError("ledger index corrupted at slot 7")

        monkeypatch.setattr(ledger.app.state.store, "list_policies", broken_listing)
        resp = await tolerant_client.get("/api/policies")
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error"}
        assert "corrupted" not in resp.text


# ═══════════════════════════════════════════════════════════════════════════════
# POLICIES
# ═══════════════════════════════════════════════════════════════════════════════

class TestPolicies:
    async def test_list_seeded_policies(self, client):
        resp = await client.get("/api/policies")
        assert resp.status_code == 200
        policies = resp.json()
        assert len(policies) == 2
        for p in policies:
            assert isinstance(p["fund_allocation"], str)
            assert isinstance(p["fund_released"], str)
            assert isinstance(p["created_at"], str)
            assert int(p["fund_released"]) <= int(p["fund_allocation"])

    async def test_create_policy(self, client, policy_body):
        resp = await client.post("/api/policies", json=policy_body)
        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "Draft"
        assert data["fund_allocation"] == "1000000"
        assert data["fund_released"] == "0"
        assert data["beneficiaries"] == 0
        assert data["contractor"] is None
        assert data["created_at"] == data["updated_at"]
        assert data["eligibility_criteria"] == policy_body["eligibility_criteria"]
        assert "JalJeevanMissionRolloutContract" in data["smart_contract_code"]

    async def test_create_then_list_round_trips_fields(self, client, policy_body):
        created = []
        for i in range(3):
            body = dict(policy_body, title=f"Scheme {i}", fund_allocation=str(10 ** 30 + i))
            created.append((await client.post("/api/policies", json=body)).json())
        listed = {p["id"]: p for p in (await client.get("/api/policies")).json()}
        assert len(listed) == 2 + 3
        for c in created:
            assert listed[c["id"]] == c
        assert listed[created[2]["id"]]["fund_allocation"] == str(10 ** 30 + 2)

    async def test_create_policy_accepts_integer_allocation(self, client, policy_body):
        resp = await client.post("/api/policies", json=dict(policy_body, fund_allocation=250))
        assert resp.status_code == 201
        assert resp.json()["fund_allocation"] == "250"

    @pytest.mark.parametrize("bad", ["12.5", 12.5, "-4", -4, "abc", True])
    async def test_create_policy_rejects_bad_allocation(self, client, policy_body, bad):
        resp = await client.post("/api/policies", json=dict(policy_body, fund_allocation=bad))
        assert resp.status_code == 400
        assert "fund_allocation" in resp.json()["error"]

    async def test_create_policy_missing_field(self, client, policy_body):
        body = dict(policy_body)
        del body["title"]
        resp = await client.post("/api/policies", json=body)
        assert resp.status_code == 400
        assert "title" in resp.json()["error"]

    async def test_get_policy(self, client, policy_body):
        pid = (await client.post("/api/policies", json=policy_body)).json()["id"]
        resp = await client.get(f"/api/policies/{pid}")
        assert resp.status_code == 200
        assert resp.json()["id"] == pid

    async def test_get_policy_not_found(self, client):
        resp = await client.get("/api/policies/does-not-exist")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Policy not found"}

    async def test_activate_policy(self, client, policy_body):
        created = (await client.post("/api/policies", json=policy_body)).json()
        resp = await client.put(f"/api/policies/{created['id']}/activate")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "Active"
        assert int(data["updated_at"]) >= int(created["updated_at"])

    async def test_activate_policy_not_found(self, client):
        resp = await client.put("/api/policies/missing/activate")
        assert resp.status_code == 404


# ═══════════════════════════════════════════════════════════════════════════════
# FUND RELEASE
# ═══════════════════════════════════════════════════════════════════════════════

class TestFundRelease:
    async def test_overdraw_then_partial_release(self, client, policy_body):
        pid = (await client.post("/api/policies", json=policy_body)).json()["id"]
        before = (await client.get(f"/api/transactions/policy/{pid}")).json()
        assert before == []

        resp = await client.post(f"/api/policies/{pid}/release-funds",
                                 json={"amount": "1200000", "to_address": "contractor_wallet"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Insufficient funds"}
        assert (await client.get(f"/api/policies/{pid}")).json()["fund_released"] == "0"
        assert (await client.get(f"/api/transactions/policy/{pid}")).json() == []

        resp = await client.post(f"/api/policies/{pid}/release-funds",
                                 json={"amount": "400000", "to_address": "contractor_wallet"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["policy"]["fund_released"] == "400000"

        txs = (await client.get(f"/api/transactions/policy/{pid}")).json()
        assert len(txs) == 1
        tx = txs[0]
        assert tx["id"] == data["transaction_id"]
        assert tx["transaction_type"] == "Release"
        assert tx["amount"] == "400000"
        assert tx["policy_id"] == pid
        assert tx["status"] == "Completed"
        assert tx["from_address"] == "government_treasury"
        assert tx["to_address"] == "contractor_wallet"
        assert tx["metadata"] == [["purpose", "fund_release"], ["recipient", "contractor_wallet"]]
        assert tx["transaction_hash"].startswith("0x") and len(tx["transaction_hash"]) == 18

    async def test_release_up_to_exact_allocation(self, client, policy_body):
        pid = (await client.post("/api/policies", json=policy_body)).json()["id"]
        resp = await client.post(f"/api/policies/{pid}/release-funds",
                                 json={"amount": 1000000, "to_address": "x"})
        assert resp.status_code == 200
        assert resp.json()["policy"]["fund_released"] == "1000000"
        resp = await client.post(f"/api/policies/{pid}/release-funds",
                                 json={"amount": "1", "to_address": "x"})
        assert resp.status_code == 400

    async def test_release_not_found(self, client):
        resp = await client.post("/api/policies/missing/release-funds",
                                 json={"amount": "1", "to_address": "x"})
        assert resp.status_code == 404

    @pytest.mark.parametrize("amount", ["0", 0, "-5", "1e3", 2.5])
    async def test_release_rejects_non_positive_or_fractional(self, client, policy_body, amount):
        pid = (await client.post("/api/policies", json=policy_body)).json()["id"]
        resp = await client.post(f"/api/policies/{pid}/release-funds",
                                 json={"amount": amount, "to_address": "x"})
        assert resp.status_code == 400
        assert (await client.get(f"/api/policies/{pid}")).json()["fund_released"] == "0"


# ═══════════════════════════════════════════════════════════════════════════════
# COMPLAINTS
# ═══════════════════════════════════════════════════════════════════════════════

class TestComplaints:
    def _body(self, **overrides):
        body = {
            "title": "Water supply problem",
            "description": "There is a problem with the tap supply since last week",
            "category": "Water",
            "priority": "Critical",
            "district": "Puri",
            "location": "Ward 7",
            "citizen_id": "citizen-042",
        }
        body.update(overrides)
        return body

    async def test_list_seeded_complaints(self, client):
        resp = await client.get("/api/complaints")
        assert resp.status_code == 200
        complaints = resp.json()
        assert len(complaints) == 1
        assert complaints[0]["status"] == "UnderReview"
        assert complaints[0]["resolution_time"] is None

    async def test_create_complaint_with_analysis(self, client):
        resp = await client.post("/api/complaints", json=self._body())
        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "Submitted"
        assert data["media_links"] == []
        assert data["policy_id"] is None
        assert data["audit_score"] == 0.5
        analysis = data["ai_analysis"]
        assert analysis["sentiment"] == "negative"
        assert analysis["priority_score"] == 0.9
        assert analysis["category_prediction"] == "Water"
        assert analysis["confidence"] == 0.85
        assert analysis["keywords"] == ["government", "service", "issue"]

    async def test_neutral_sentiment(self, client):
        data = (await client.post("/api/complaints", json=self._body(
            description="Streetlight near the school is off", priority="Low"))).json()
        assert data["ai_analysis"]["sentiment"] == "neutral"
        assert data["ai_analysis"]["priority_score"] == 0.3

    async def test_invalid_priority(self, client):
        resp = await client.post("/api/complaints", json=self._body(priority="Urgent"))
        assert resp.status_code == 400
        assert "priority" in resp.json()["error"]

    async def test_get_complaint(self, client):
        cid = (await client.post("/api/complaints", json=self._body())).json()["id"]
        resp = await client.get(f"/api/complaints/{cid}")
        assert resp.status_code == 200
        assert resp.json()["id"] == cid
        missing = await client.get("/api/complaints/missing")
        assert missing.status_code == 404
        assert missing.json() == {"error": "Complaint not found"}


# ═══════════════════════════════════════════════════════════════════════════════
# PROPOSALS & VOTING
# ═══════════════════════════════════════════════════════════════════════════════

class TestProposals:
    async def _create(self, client, hours="48"):
        resp = await client.post("/api/proposals", json={
            "title": "Publish contractor scorecards",
            "description": "Quarterly public scorecards for every contractor",
            "category": "Governance",
            "proposer": "citizen-007",
            "voting_duration_hours": hours,
            "quorum_required": 25,
        })
        assert resp.status_code == 201
        return resp.json()

    async def test_create_proposal_window(self, client):
        data = await self._create(client)
        hour = 3600 * 10 ** 9
        assert data["status"] == "Draft"
        assert int(data["voting_start"]) == int(data["created_at"]) + hour
        assert int(data["voting_end"]) == int(data["voting_start"]) + 48 * hour
        assert data["total_votes"] == 0
        assert data["quorum_required"] == 25
        assert data["execution_data"] is None

    async def test_vote_yes(self, client):
        pid = (await self._create(client))["id"]
        resp = await client.post(f"/api/proposals/{pid}/vote", json={
            "voter": "citizen-1", "vote_type": "Yes", "voting_power": 5, "reason": "Transparency"})
        assert resp.status_code == 200
        data = resp.json()
        assert (data["yes_votes"], data["no_votes"], data["abstain_votes"], data["total_votes"]) == (5, 0, 0, 5)

    async def test_repeat_votes_accumulate(self, client):
        pid = (await self._create(client))["id"]
        for vote_type, power in [("No", 3), ("Abstain", 2), ("No", 3)]:
            await client.post(f"/api/proposals/{pid}/vote", json={
                "voter": "same-voter", "vote_type": vote_type, "voting_power": power})
        data = (await client.get(f"/api/proposals/{pid}")).json()
        assert (data["yes_votes"], data["no_votes"], data["abstain_votes"], data["total_votes"]) == (0, 6, 2, 8)

    async def test_vote_not_found(self, client):
        resp = await client.post("/api/proposals/missing/vote", json={
            "voter": "v", "vote_type": "Yes", "voting_power": 1})
        assert resp.status_code == 404
        assert resp.json() == {"error": "Proposal not found"}

    async def test_vote_rejects_unknown_type(self, client):
        pid = (await self._create(client))["id"]
        resp = await client.post(f"/api/proposals/{pid}/vote", json={
            "voter": "v", "vote_type": "Maybe", "voting_power": 1})
        assert resp.status_code == 400
        assert (await client.get(f"/api/proposals/{pid}")).json()["total_votes"] == 0


# ═══════════════════════════════════════════════════════════════════════════════
# TRANSACTIONS & ANALYTICS
# ═══════════════════════════════════════════════════════════════════════════════

class TestTransactions:
    async def test_recent_transactions_newest_first(self, client, policy_body):
        pid = (await client.post("/api/policies", json=policy_body)).json()["id"]
        ids = []
        for amount in ("10", "20", "30"):
            resp = await client.post(f"/api/policies/{pid}/release-funds",
                                     json={"amount": amount, "to_address": "w"})
            ids.append(resp.json()["transaction_id"])
        recent = (await client.get("/api/transactions?limit=2")).json()
        assert [t["id"] for t in recent] == [ids[2], ids[1]]
        assert len((await client.get("/api/transactions")).json()) == 5
        timestamps = [int(t["timestamp"]) for t in (await client.get("/api/transactions")).json()]
        assert timestamps == sorted(timestamps, reverse=True)

    async def test_invalid_limit(self, client):
        resp = await client.get("/api/transactions?limit=abc")
        assert resp.status_code == 400
        assert "limit" in resp.json()["error"]

    async def test_unknown_policy_has_no_transactions(self, client):
        resp = await client.get("/api/transactions/policy/nope")
        assert resp.status_code == 200
        assert resp.json() == []


class TestAnalytics:
    async def test_overview_of_seed_data(self, client):
        resp = await client.get("/api/analytics/overview")
        assert resp.status_code == 200
        data = resp.json()
        assert data == {
            "totalPolicies": 2,
            "activePolicies": 2,
            "totalComplaints": 1,
            "pendingComplaints": 0,
            "totalProposals": 1,
            "activeProposals": 1,
            "totalTransactions": 2,
            "totalFundsAllocated": "80.00",
            "totalFundsReleased": "40.00",
            "utilizationRate": "50.00",
        }

    async def test_overview_tracks_mutations(self, client, policy_body):
        pid = (await client.post("/api/policies", json=dict(policy_body, fund_allocation="200000000"))).json()["id"]
        await client.post(f"/api/policies/{pid}/release-funds", json={"amount": "100000000", "to_address": "w"})
        await client.post("/api/complaints", json={
            "title": "t", "description": "d", "category": "c", "priority": "Low",
            "district": "x", "citizen_id": "c1"})
        data = (await client.get("/api/analytics/overview")).json()
        assert data["totalPolicies"] == 3
        assert data["activePolicies"] == 2
        assert data["pendingComplaints"] == 1
        assert data["totalTransactions"] == 3
        assert data["totalFundsAllocated"] == "82.00"
        assert data["totalFundsReleased"] == "41.00"
        assert data["utilizationRate"] == "50.00"
