"""HTTP tests for sessions, branches and usage."""
from datetime import date, timedelta

import pytest

from branched.core.deps import get_response_worker
from branched.core.security import create_access_token
from branched.main import app

API = "/api/v1"


async def _create_session(client, headers, message="Hi", **extra):
    response = await client.post(
        f"{API}/sessions", json={"initial_message": message, **extra}, headers=headers
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestAuthentication:

    @pytest.mark.asyncio
    async def test_missing_credentials(self, client):
        response = await client.get(f"{API}/sessions")

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_expired_token(self, client):
        token = create_access_token({"sub": "alice"}, expires_delta=timedelta(minutes=-5))
        response = await client.get(
            f"{API}/sessions", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid authentication credentials"

    @pytest.mark.asyncio
    async def test_token_without_subject(self, client):
        token = create_access_token({"role": "admin"})
        response = await client.get(
            f"{API}/sessions", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_health_needs_no_token(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestConversationTree:
    """The main branching scenario, end to end."""

    @pytest.mark.asyncio
    async def test_branching_scenario(self, client, auth_headers, ai_service):
        headers = auth_headers("alice")

        created = await _create_session(client, headers, "Hi")
        session_id = created["id"]
        assert created["user_id"] == "alice"
        assert len(created["nodes"]) == 1
        root = created["nodes"][0]
        assert root["parent_id"] is None
        assert root["status"] == "pending"
        assert root["llm_response"] == ""

        # the background task has run by the time the client call returns
        session = (await client.get(f"{API}/sessions/{session_id}", headers=headers)).json()
        root = session["nodes"][0]
        assert root["status"] == "complete"
        assert root["llm_response"] == "Hello!"

        more = await client.post(
            f"{API}/sessions/{session_id}/branches",
            json={"parent_id": root["id"], "user_message": "Tell me more"},
            headers=headers,
        )
        assert more.status_code == 201
        assert more.json()["status"] == "pending"
        assert more.json()["parent_id"] == root["id"]

        angle = await client.post(
            f"{API}/sessions/{session_id}/branches",
            json={"parent_id": root["id"], "user_message": "Different angle"},
            headers=headers,
        )
        assert angle.status_code == 201

        session = (await client.get(f"{API}/sessions/{session_id}", headers=headers)).json()
        children = session["nodes"][0]["children"]
        assert [c["user_message"] for c in children] == ["Tell me more", "Different angle"]
        assert all(c["status"] == "complete" for c in children)

        # the sibling branch is not part of the prompt
        assert ai_service.calls[-1] == [
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello!"},
            {"role": "user", "content": "Different angle"},
        ]

        deleted = await client.delete(
            f"{API}/sessions/{session_id}/branches/{angle.json()['id']}", headers=headers
        )
        assert deleted.status_code == 204

        session = (await client.get(f"{API}/sessions/{session_id}", headers=headers)).json()
        children = session["nodes"][0]["children"]
        assert [c["id"] for c in children] == [more.json()["id"]]

    @pytest.mark.asyncio
    async def test_reply_route(self, client, auth_headers, ai_service):
        headers = auth_headers("alice")
        session = await _create_session(client, headers, "Hi")
        root_id = session["nodes"][0]["id"]

        response = await client.post(
            f"{API}/sessions/{session['id']}/branches/{root_id}/msgs",
            json={"user_message": "And then?"},
            headers=headers,
        )

        assert response.status_code == 201
        assert response.json()["parent_id"] == root_id
        assert ai_service.calls[-1][-1] == {"role": "user", "content": "And then?"}

    @pytest.mark.asyncio
    async def test_reply_route_parent_mismatch(self, client, auth_headers):
        headers = auth_headers("alice")
        session = await _create_session(client, headers)
        root_id = session["nodes"][0]["id"]

        response = await client.post(
            f"{API}/sessions/{session['id']}/branches/{root_id}/msgs",
            json={"user_message": "x", "parent_id": "somewhere-else"},
            headers=headers,
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_new_root(self, client, auth_headers):
        headers = auth_headers("alice")
        session = await _create_session(client, headers)

        response = await client.post(
            f"{API}/sessions/{session['id']}/branches",
            json={"parent_id": None, "user_message": "Another topic", "is_new_branch": True},
            headers=headers,
        )
        assert response.status_code == 201
        assert response.json()["parent_id"] is None

        tree = (await client.get(f"{API}/sessions/{session['id']}", headers=headers)).json()
        assert [n["user_message"] for n in tree["nodes"]] == ["Hi", "Another topic"]

    @pytest.mark.asyncio
    async def test_missing_parent_without_new_branch_flag(self, client, auth_headers):
        headers = auth_headers("alice")
        session = await _create_session(client, headers)

        response = await client.post(
            f"{API}/sessions/{session['id']}/branches",
            json={"user_message": "orphan", "is_new_branch": False},
            headers=headers,
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_parent(self, client, auth_headers):
        headers = auth_headers("alice")
        session = await _create_session(client, headers)

        response = await client.post(
            f"{API}/sessions/{session['id']}/branches",
            json={"parent_id": "nope", "user_message": "hello?"},
            headers=headers,
        )

        assert response.status_code == 404
        assert response.json()["detail"] == "Node not found"

    @pytest.mark.asyncio
    async def test_delete_unknown_branch(self, client, auth_headers):
        headers = auth_headers("alice")
        session = await _create_session(client, headers)

        response = await client.delete(
            f"{API}/sessions/{session['id']}/branches/nope", headers=headers
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_empty_message(self, client, auth_headers):
        headers = auth_headers("alice")

        response = await client.post(
            f"{API}/sessions", json={"initial_message": "   "}, headers=headers
        )

        assert response.status_code == 422
        assert response.json()["detail"] == "Message must not be empty"

    @pytest.mark.asyncio
    async def test_failed_generation(self, client, auth_headers, ai_service):
        ai_service.error = RuntimeError("upstream down")
        headers = auth_headers("alice")

        session = await _create_session(client, headers)
        root = (await client.get(f"{API}/sessions/{session['id']}", headers=headers)).json()["nodes"][0]

        assert root["status"] == "failed"
        assert root["llm_response"] == ""
        assert "upstream down" in root["error"]

    @pytest.mark.asyncio
    async def test_worker_unavailable(self, client, auth_headers):
        app.dependency_overrides[get_response_worker] = lambda: None
        headers = auth_headers("alice")

        created = await _create_session(client, headers)

        root = created["nodes"][0]
        assert root["status"] == "failed"
        assert root["error"] == "Response worker unavailable"


class TestSessions:

    @pytest.mark.asyncio
    async def test_list_own_sessions(self, client, auth_headers):
        alice, bob = auth_headers("alice"), auth_headers("bob")
        first = await _create_session(client, alice, "first")
        second = await _create_session(client, alice, "second")
        await _create_session(client, bob, "bob's")

        response = await client.get(f"{API}/sessions", headers=alice)
        assert response.status_code == 200
        assert {s["id"] for s in response.json()} == {first["id"], second["id"]}

        alias = await client.get(f"{API}/sessions/user/", headers=alice)
        assert alias.status_code == 200
        assert {s["id"] for s in alias.json()} == {first["id"], second["id"]}

    @pytest.mark.asyncio
    async def test_title(self, client, auth_headers):
        headers = auth_headers("alice")

        derived = await _create_session(client, headers, "Plan a trip\nto Japan please")
        explicit = await _create_session(client, headers, "Hi", title="Greetings")

        assert derived["title"] == "Plan a trip"
        assert explicit["title"] == "Greetings"

    @pytest.mark.asyncio
    async def test_foreign_session_looks_missing(self, client, auth_headers):
        session = await _create_session(client, auth_headers("alice"), "secret")
        bob = auth_headers("bob")

        foreign = await client.get(f"{API}/sessions/{session['id']}", headers=bob)
        missing = await client.get(f"{API}/sessions/does-not-exist", headers=bob)

        assert foreign.status_code == missing.status_code == 404
        assert foreign.json() == missing.json()

        branch = await client.post(
            f"{API}/sessions/{session['id']}/branches",
            json={"parent_id": session["nodes"][0]["id"], "user_message": "hijack"},
            headers=bob,
        )
        assert branch.status_code == 404

    @pytest.mark.asyncio
    async def test_rename(self, client, auth_headers):
        headers = auth_headers("alice")
        session = await _create_session(client, headers)

        response = await client.put(
            f"{API}/sessions/{session['id']}", json={"title": "Renamed"}, headers=headers
        )
        assert response.status_code == 200
        assert response.json()["title"] == "Renamed"

        blank = await client.put(
            f"{API}/sessions/{session['id']}", json={"title": "  "}, headers=headers
        )
        assert blank.status_code == 422

    @pytest.mark.asyncio
    async def test_delete(self, client, auth_headers):
        headers = auth_headers("alice")
        session = await _create_session(client, headers)

        response = await client.delete(f"{API}/sessions/{session['id']}", headers=headers)
        assert response.status_code == 204

        assert (await client.get(f"{API}/sessions/{session['id']}", headers=headers)).status_code == 404
        assert (await client.delete(f"{API}/sessions/{session['id']}", headers=headers)).status_code == 404


class TestUsage:

    @pytest.mark.asyncio
    async def test_counts_per_endpoint(self, client, auth_headers):
        headers = auth_headers("alice")
        session = await _create_session(client, headers)
        await client.get(f"{API}/sessions/{session['id']}", headers=headers)
        await client.get(f"{API}/sessions", headers=auth_headers("bob"))

        response = await client.get(f"{API}/usage", headers=headers)

        assert response.status_code == 200
        body = response.json()
        assert body["user_id"] == "alice"
        assert body["total_requests"] == 3
        stats = {entry["endpoint"]: entry["methods"] for entry in body["by_endpoint"]}
        assert stats == {
            f"{API}/sessions": {"POST": 1},
            f"{API}/sessions/{{session_id}}": {"GET": 1},
            f"{API}/usage": {"GET": 1},
        }

    @pytest.mark.asyncio
    async def test_reversed_range(self, client, auth_headers):
        today = date.today()
        response = await client.get(
            f"{API}/usage",
            params={"start_date": today.isoformat(), "end_date": (today - timedelta(days=1)).isoformat()},
            headers=auth_headers("alice"),
        )

        assert response.status_code == 422
