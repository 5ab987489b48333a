from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from votesecure import config, service
from votesecure.service import app, get_ledger

from conftest import HOUR, T


def _auth(identity):
    token = jwt.encode(
        {"userId": identity.user_id, "role": identity.role.value},
        config.JWT_SECRET, algorithm=config.JWT_ALGORITHM,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(ledger):
    app.dependency_overrides[get_ledger] = lambda: ledger
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def election_payload():
    return {
        "title": "Mayor 2025",
        "description": "City hall",
        "startDate": T.isoformat(),
        "endDate": (T + HOUR).isoformat(),
        "candidates": [{"name": "Alice"}, {"name": "Bob", "description": "Challenger"}],
    }


@pytest.fixture
def election(client, admin, election_payload):
    resp = client.post("/api/elections", json=election_payload, headers=_auth(admin))
    assert resp.status_code == 201
    election_id = resp.json()["electionId"]
    detail = client.get(f"/api/elections/{election_id}", headers=_auth(admin)).json()
    return election_id, [c["id"] for c in detail["candidates"]]


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy", "service": "ledger"}


class TestAuth:

    def test_missing_token(self, client):
        resp = client.get("/api/elections")
        assert resp.status_code == 401
        assert resp.json() == {"error": "Access token required", "kind": "unauthorized"}

    def test_bad_token(self, client):
        resp = client.get("/api/elections", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "Invalid token"

    def test_voter_cannot_create(self, client, voters, election_payload):
        resp = client.post("/api/elections", json=election_payload, headers=_auth(voters[0]))
        assert resp.status_code == 403
        assert resp.json() == {"error": "Admin access required", "kind": "forbidden"}


class TestElections:

    def test_create(self, client, store, admin, election_payload):
        resp = client.post("/api/elections", json=election_payload, headers=_auth(admin))

        assert resp.status_code == 201
        body = resp.json()
        assert body["message"] == "Election created successfully"
        assert body["anchored"] is False
        assert body["blockchainHash"] == store.elections[body["electionId"]].integrity_hash

    def test_placeholder_title(self, client, admin, election_payload):
        election_payload["title"] = " - "
        resp = client.post("/api/elections", json=election_payload, headers=_auth(admin))
        assert resp.status_code == 400
        assert resp.json() == {"error": "Valid election title is required",
                               "kind": "validation_error"}

    def test_missing_fields(self, client, admin):
        resp = client.post("/api/elections", json={"title": "Mayor"}, headers=_auth(admin))
        assert resp.status_code == 400
        body = resp.json()
        assert body["kind"] == "validation_error"
        assert "startDate" in body["error"]

    def test_get_and_list(self, client, admin, voters, election):
        election_id, candidates = election

        detail = client.get(f"/api/elections/{election_id}", headers=_auth(voters[0])).json()
        assert detail["title"] == "Mayor 2025"
        assert detail["status"] == "upcoming"
        assert detail["totalVotes"] == 0
        assert [c["name"] for c in detail["candidates"]] == ["Alice", "Bob"]
        assert detail["candidates"][1]["description"] == "Challenger"

        listing = client.get("/api/elections", headers=_auth(voters[0])).json()
        assert [e["id"] for e in listing] == [election_id]

    def test_unknown_election(self, client, admin):
        resp = client.get("/api/elections/999", headers=_auth(admin))
        assert resp.status_code == 404
        assert resp.json()["kind"] == "not_found"

    def test_update_status(self, client, clock, admin, election):
        election_id, _ = election
        clock.now = T + timedelta(minutes=1)
        resp = client.post("/api/elections/update-status", headers=_auth(admin))
        assert resp.status_code == 200
        assert resp.json()["elections"] == [
            {"id": election_id, "title": "Mayor 2025", "status": "active"}
        ]

    def test_delete(self, client, store, admin, election):
        election_id, _ = election
        resp = client.delete(f"/api/elections/{election_id}", headers=_auth(admin))
        assert resp.status_code == 200
        assert store.elections == {}


class TestVoting:

    def test_vote_and_results(self, client, clock, admin, voters, election):
        election_id, (alice, bob) = election
        clock.now = T + timedelta(seconds=1)

        resp = client.post("/api/vote", json={"electionId": election_id, "candidateId": alice},
                           headers=_auth(voters[0]))
        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "Vote cast successfully"
        assert len(body["voteHash"]) == 64
        assert body["blockchainTx"] is None

        results = client.get(f"/api/elections/{election_id}/results",
                             headers=_auth(voters[1])).json()
        assert results["totalVotes"] == 1
        assert [(r["candidateId"], r["voteCount"]) for r in results["results"]] == [
            (alice, 1), (bob, 0)
        ]

    def test_duplicate_vote_is_409(self, client, clock, voters, election):
        election_id, (alice, bob) = election
        clock.now = T + timedelta(seconds=1)
        headers = _auth(voters[0])
        client.post("/api/vote", json={"electionId": election_id, "candidateId": alice},
                    headers=headers)

        resp = client.post("/api/vote", json={"electionId": election_id, "candidateId": bob},
                           headers=headers)
        assert resp.status_code == 409
        assert resp.json() == {"error": "You have already voted in this election",
                               "kind": "duplicate_vote"}

    def test_closed_election(self, client, clock, voters, election):
        election_id, (alice, _) = election
        clock.now = T + timedelta(seconds=3601)
        resp = client.post("/api/vote", json={"electionId": election_id, "candidateId": alice},
                           headers=_auth(voters[1]))
        assert resp.status_code == 400
        assert resp.json()["kind"] == "election_not_active"

    def test_invalid_candidate(self, client, clock, voters, election):
        election_id, _ = election
        clock.now = T + timedelta(seconds=1)
        resp = client.post("/api/vote", json={"electionId": election_id, "candidateId": 999},
                           headers=_auth(voters[0]))
        assert resp.status_code == 400
        assert resp.json()["kind"] == "invalid_candidate"

    def test_delete_election_with_votes(self, client, clock, admin, voters, election):
        election_id, (alice, _) = election
        clock.now = T + timedelta(seconds=1)
        client.post("/api/vote", json={"electionId": election_id, "candidateId": alice},
                    headers=_auth(voters[0]))

        resp = client.delete(f"/api/elections/{election_id}", headers=_auth(admin))
        assert resp.status_code == 400
        assert resp.json()["kind"] == "election_has_votes"

    def test_history_and_verification(self, client, clock, admin, voters, election):
        election_id, (alice, _) = election
        clock.now = T + timedelta(seconds=1)
        vote_id = client.post("/api/vote", json={"electionId": election_id, "candidateId": alice},
                              headers=_auth(voters[0])).json()["voteId"]

        history = client.get("/api/votes/history", headers=_auth(voters[0])).json()
        assert [(h["id"], h["electionTitle"]) for h in history] == [(vote_id, "Mayor 2025")]

        own = client.get(f"/api/votes/{vote_id}/verify", headers=_auth(voters[0]))
        assert own.status_code == 200
        assert own.json()["result"] == "local_only"

        other = client.get(f"/api/votes/{vote_id}/verify", headers=_auth(voters[1]))
        assert other.status_code == 403

        audit = client.get(f"/api/elections/{election_id}/verify", headers=_auth(admin)).json()
        assert audit["valid"] is True
        assert audit["summary"]["total_votes"] == 1


class TestAdmin:

    def test_dashboard(self, client, clock, admin, voters, election):
        clock.now = T + timedelta(seconds=1)
        resp = client.get("/api/dashboard/stats", headers=_auth(admin))
        assert resp.status_code == 200
        assert resp.json() == {
            "elections": {"total_elections": 1, "active_elections": 1, "completed_elections": 0},
            "voters": 5,
            "votes": 0,
        }
        assert client.get("/api/dashboard/stats", headers=_auth(voters[0])).status_code == 403

    def test_voters(self, client, store, admin, voters):
        listing = client.get("/api/voters", headers=_auth(admin)).json()
        assert len(listing) == 5
        assert all(v["votes_cast"] == 0 for v in listing)

        resp = client.delete(f"/api/voters/{voters[0].user_id}", headers=_auth(admin))
        assert resp.status_code == 200
        assert voters[0].user_id not in store.users

        resp = client.delete(f"/api/voters/{voters[0].user_id}", headers=_auth(admin))
        assert resp.status_code == 404


class TestApp:

    def test_lifespan_builds_ledger_and_closes_store(self, monkeypatch):
        calls = []

        async def fake_pool():
            calls.append("pool")

        async def fake_schema():
            calls.append("schema")

        async def fake_close(self):
            calls.append("close")

        monkeypatch.setattr(service.Database, "get_pool", fake_pool)
        monkeypatch.setattr(service, "ensure_schema", fake_schema)
        monkeypatch.setattr(service.PostgresStore, "close", fake_close)

        with TestClient(app) as client:
            assert client.get("/health").status_code == 200
            assert isinstance(app.state.ledger.store, service.PostgresStore)
            assert calls == ["pool", "schema"]
        assert calls == ["pool", "schema", "close"]

    def test_error_bodies_are_documented(self, client):
        spec = client.get("/openapi.json").json()
        responses = spec["paths"]["/api/vote"]["post"]["responses"]

        for code in ("400", "401", "403", "404", "409", "500"):
            schema = responses[code]["content"]["application/json"]["schema"]
            assert schema == {"$ref": "#/components/schemas/ErrorResponse"}
        assert set(spec["components"]["schemas"]["ErrorResponse"]["properties"]) == {"error", "kind"}
        assert "409" not in spec["paths"]["/api/voters"]["get"]["responses"]
