"""
HTTP-level tests.

Each request gets its own session from the test engine, committed when the
request succeeds, the same way the application's session dependency works.
"""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from opustasks.ai.exceptions import AIProviderError
from opustasks.ai.providers import get_provider
from opustasks.db.session import get_db_session
from opustasks.main import app
from tests.conftest import ScriptedProvider, reply

API = "/api/v1"


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
async def client(session_factory, provider):
    async def override_db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_provider] = lambda: provider
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def register(client: AsyncClient, name: str) -> tuple[str, dict[str, str]]:
    response = await client.post(f"{API}/auth/register", json={"display_name": name})
    assert response.status_code == 201
    body = response.json()
    return body["user"]["id"], {"Authorization": f"Bearer {body['access_token']}"}


@pytest.fixture
async def alice_auth(client):
    return await register(client, "Alice")


@pytest.fixture
async def bob_auth(client):
    return await register(client, "Bob")


class TestAuth:
    async def test_register_and_me(self, client):
        user_id, headers = await register(client, "Alice")

        response = await client.get(f"{API}/auth/me", headers=headers)
        assert response.status_code == 200
        assert response.json()["id"] == user_id
        assert response.json()["display_name"] == "Alice"

    async def test_missing_token(self, client):
        response = await client.get(f"{API}/tasks/")
        assert response.status_code == 401

    async def test_garbage_token(self, client):
        response = await client.get(f"{API}/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401


class TestHealth:
    async def test_health(self, client):
        response = await client.get(f"{API}/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_ready(self, client):
        response = await client.get(f"{API}/health/ready")
        assert response.json()["checks"]["database"] == "healthy"

    async def test_request_id_is_echoed(self, client):
        response = await client.get(f"{API}/health", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"


class TestTasks:
    async def test_create_and_list_inbox(self, client, alice_auth):
        _, headers = alice_auth
        created = await client.post(f"{API}/tasks/", json={"title": "Buy milk", "priority": 1}, headers=headers)
        assert created.status_code == 201
        assert created.json()["is_blocked"] is False

        listed = await client.get(f"{API}/tasks/", params={"view": "inbox"}, headers=headers)
        assert [t["title"] for t in listed.json()] == ["Buy milk"]

    async def test_hidden_task_looks_like_missing(self, client, alice_auth, bob_auth):
        _, alice = alice_auth
        _, bob = bob_auth
        task = (await client.post(f"{API}/tasks/", json={"title": "Secret"}, headers=alice)).json()

        hidden = await client.get(f"{API}/tasks/{task['id']}", headers=bob)
        missing = await client.get(f"{API}/tasks/{uuid.uuid4()}", headers=bob)

        assert hidden.status_code == missing.status_code == 404
        assert hidden.json() == missing.json() == {"detail": "Task not found", "code": "NOT_FOUND"}

        patched = await client.patch(f"{API}/tasks/{task['id']}", json={"title": "Mine now"}, headers=bob)
        assert patched.status_code == 404

    async def test_complete_repeating_task_returns_successor(self, client, alice_auth):
        _, headers = alice_auth
        task = (
            await client.post(
                f"{API}/tasks/",
                json={"title": "Standup", "due_date": "2024-05-06", "recurrence_rule": "FREQ=WEEKLY;BYDAY=MO,TH"},
                headers=headers,
            )
        ).json()

        response = await client.post(f"{API}/tasks/{task['id']}/complete", headers=headers)

        assert response.status_code == 200
        body = response.json()
        assert body["task"]["status"] == "done"
        assert body["successor"]["due_date"] == "2024-05-09"
        assert body["successor"]["status"] == "open"

    async def test_blocked_flag_and_cycle_conflict(self, client, alice_auth):
        _, headers = alice_auth
        first = (await client.post(f"{API}/tasks/", json={"title": "First"}, headers=headers)).json()
        second = (
            await client.post(f"{API}/tasks/", json={"title": "Second", "blocked_by": first["id"]}, headers=headers)
        ).json()
        assert second["is_blocked"] is True

        response = await client.patch(f"{API}/tasks/{first['id']}", json={"blocked_by": second["id"]}, headers=headers)
        assert response.status_code == 409
        assert response.json()["code"] == "CYCLE_ERROR"

    async def test_domain_validation_error_names_field(self, client, alice_auth):
        _, headers = alice_auth
        response = await client.post(
            f"{API}/tasks/", json={"title": "x", "recurrence_rule": "FREQ=HOURLY"}, headers=headers
        )
        assert response.status_code == 422
        assert response.json()["field"] == "recurrence_rule"

    async def test_delete(self, client, alice_auth):
        _, headers = alice_auth
        task = (await client.post(f"{API}/tasks/", json={"title": "Bye"}, headers=headers)).json()

        assert (await client.delete(f"{API}/tasks/{task['id']}", headers=headers)).status_code == 204
        assert (await client.get(f"{API}/tasks/{task['id']}", headers=headers)).status_code == 404


class TestProjectsAndSharing:
    async def test_share_grants_view_access(self, client, alice_auth, bob_auth):
        _, alice = alice_auth
        bob_id, bob = bob_auth
        project = (await client.post(f"{API}/projects/", json={"name": "Trip"}, headers=alice)).json()
        await client.post(f"{API}/tasks/", json={"title": "Book hotel", "project_id": project["id"]}, headers=alice)

        assert (await client.get(f"{API}/projects/{project['id']}", headers=bob)).status_code == 404

        share = await client.post(
            f"{API}/sharing/shares",
            json={"project_id": project["id"], "user_id": bob_id, "permission": "view"},
            headers=alice,
        )
        assert share.status_code == 201

        detail = await client.get(f"{API}/projects/{project['id']}", headers=bob)
        assert detail.status_code == 200
        assert detail.json()["permission"] == "view"
        assert [t["title"] for t in detail.json()["tasks"]] == ["Book hotel"]

        write = await client.post(
            f"{API}/tasks/", json={"title": "Sneaky", "project_id": project["id"]}, headers=bob
        )
        assert write.status_code == 404

    async def test_sharee_can_leave(self, client, alice_auth, bob_auth):
        _, alice = alice_auth
        bob_id, bob = bob_auth
        project = (await client.post(f"{API}/projects/", json={"name": "Club"}, headers=alice)).json()
        share = (
            await client.post(
                f"{API}/sharing/shares", json={"project_id": project["id"], "user_id": bob_id}, headers=alice
            )
        ).json()

        assert (await client.delete(f"{API}/sharing/shares/{share['id']}", headers=bob)).status_code == 204
        assert (await client.get(f"{API}/projects/", headers=bob)).json() == []

    async def test_duplicate_share_conflicts(self, client, alice_auth, bob_auth):
        _, alice = alice_auth
        bob_id, _ = bob_auth
        project = (await client.post(f"{API}/projects/", json={"name": "Once"}, headers=alice)).json()
        body = {"project_id": project["id"], "user_id": bob_id}

        await client.post(f"{API}/sharing/shares", json=body, headers=alice)
        response = await client.post(f"{API}/sharing/shares", json=body, headers=alice)
        assert response.status_code == 409

    async def test_project_tree(self, client, alice_auth):
        _, headers = alice_auth
        parent = (await client.post(f"{API}/projects/", json={"name": "Work"}, headers=headers)).json()
        await client.post(f"{API}/projects/", json={"name": "Q3", "parent_id": parent["id"]}, headers=headers)

        tree = (await client.get(f"{API}/projects/", headers=headers)).json()
        assert [p["name"] for p in tree] == ["Work"]
        assert [c["name"] for c in tree[0]["children"]] == ["Q3"]


class TestMutations:
    async def test_batch_reports_each_item(self, client, alice_auth):
        _, headers = alice_auth
        response = await client.post(
            f"{API}/mutations/batch",
            json={
                "mutations": [
                    {"kind": "create_task", "title": "Kept"},
                    {"kind": "complete_task", "task_id": str(uuid.uuid4())},
                    {"kind": "create_project", "name": "Also kept"},
                ]
            },
            headers=headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert (body["succeeded"], body["failed"]) == (2, 1)
        assert body["results"][1]["error_code"] == "NOT_FOUND"

        inbox = (await client.get(f"{API}/tasks/", headers=headers)).json()
        assert [t["title"] for t in inbox] == ["Kept"]

    async def test_single_mutation(self, client, alice_auth):
        _, headers = alice_auth
        response = await client.post(f"{API}/mutations", json={"kind": "create_project", "name": "Home"}, headers=headers)

        assert response.status_code == 200
        assert response.json()["action"] == "created"
        assert response.json()["entity_type"] == "project"

    async def test_unknown_kind(self, client, alice_auth):
        _, headers = alice_auth
        response = await client.post(f"{API}/mutations", json={"kind": "launch"}, headers=headers)
        assert response.status_code == 422
        assert response.json()["field"] == "kind"


class TestAssistant:
    async def test_propose_then_approve(self, client, provider, alice_auth):
        _, headers = alice_auth
        provider.steps.append(reply("On it.", ("create_task", {"title": "Water plants"})))

        chat = await client.post(f"{API}/assistant/chat", json={"message": "remind me to water plants"}, headers=headers)
        assert chat.status_code == 200
        [action] = chat.json()["pending_actions"]

        # Nothing exists until approval
        assert (await client.get(f"{API}/tasks/", headers=headers)).json() == []
        pending = (await client.get(f"{API}/assistant/pending-actions", headers=headers)).json()
        assert [a["id"] for a in pending] == [action["id"]]

        approved = await client.post(
            f"{API}/assistant/actions/approve", json={"action_ids": [action["id"]]}, headers=headers
        )
        assert approved.json()[0]["success"] is True
        assert [t["title"] for t in (await client.get(f"{API}/tasks/", headers=headers)).json()] == ["Water plants"]

    async def test_reject(self, client, provider, alice_auth):
        _, headers = alice_auth
        provider.steps.append(reply("", ("create_project", {"name": "Maybe"})))
        [action] = (
            await client.post(f"{API}/assistant/chat", json={"message": "new project?"}, headers=headers)
        ).json()["pending_actions"]

        response = await client.post(f"{API}/assistant/actions/{action['id']}/reject", headers=headers)

        assert response.json() == {"action_id": action["id"], "status": "rejected"}
        assert (await client.get(f"{API}/projects/", headers=headers)).json() == []

    async def test_provider_failure_is_bad_gateway(self, client, provider, alice_auth):
        _, headers = alice_auth
        provider.steps.append(AIProviderError("scripted", "invalid_api_key", status_code=401))

        response = await client.post(f"{API}/assistant/chat", json={"message": "hi"}, headers=headers)

        assert response.status_code == 502
        assert response.json()["category"] == "invalid_credentials"
