"""
Integration tests for the HTTP surface.

Exercises the user, executor, auto-deploy and webhook routes end to end
against the test database, including error status mapping.
"""

import json
from datetime import datetime
import uuid

import pytest

from deploytrack.utilities.signatures import sign_payload
from conftest import WEBHOOK_SECRET

COMMIT = "a" * 40


def user(user_id: int) -> dict:
    return {"X-User-Id": str(user_id)}


ADMIN = {"X-User-Id": "1", "X-User-Admin": "true"}


async def create(client, user_id=7, **body):
    payload = {"repository": "org/app", "branch": "main"}
    payload.update(body)
    response = await client.post("/api/deployments", json=payload, headers=user(user_id))
    assert response.status_code == 201, response.text
    return response.json()


async def push(client, delivery_id, payload, secret=WEBHOOK_SECRET, event="push"):
    body = json.dumps(payload).encode()
    headers = {
        "X-GitHub-Event": event,
        "X-GitHub-Delivery": delivery_id,
        "X-Hub-Signature-256": sign_payload(body, secret),
        "Content-Type": "application/json",
    }
    return await client.post("/api/webhooks/github", content=body, headers=headers)


# ============================================
# USER ENDPOINTS
# ============================================

@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "running"


@pytest.mark.asyncio
async def test_create_and_get_deployment(client):
    created = await create(client, server_id=3)

    assert created["status"] == "pending"
    assert created["completed_at"] is None
    assert created["server_id"] == 3
    assert created["user_id"] == 7

    response = await client.get(f"/api/deployments/{created['id']}", headers=user(7))
    assert response.status_code == 200
    assert response.json()["id"] == created["id"]


@pytest.mark.asyncio
async def test_requests_without_user_are_unauthorized(client):
    response = await client.get("/api/deployments")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_with_empty_repository_is_rejected(client):
    response = await client.post("/api/deployments", json={"repository": " ", "branch": "main"}, headers=user(7))
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"


@pytest.mark.asyncio
async def test_other_users_deployment_is_forbidden(client):
    created = await create(client, user_id=7)

    response = await client.get(f"/api/deployments/{created['id']}", headers=user(8))
    assert response.status_code == 403

    response = await client.get(f"/api/deployments/{created['id']}", headers=ADMIN)
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_missing_deployment_is_not_found(client):
    response = await client.get(f"/api/deployments/{uuid.uuid4()}", headers=user(7))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_list_returns_only_callers_records_newest_first(client):
    ids = [(await create(client, user_id=7, repository=f"org/app{i}"))["id"] for i in range(3)]
    await create(client, user_id=8)

    response = await client.get("/api/deployments", headers=user(7))
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 3
    assert [d["id"] for d in body["deployments"]] == list(reversed(ids))

    response = await client.get("/api/deployments", params={"user_id": 7}, headers=user(8))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_stats_counts_every_status(client):
    await create(client)
    await create(client)

    response = await client.get("/api/deployments/stats", headers=user(7))
    assert response.status_code == 200
    body = response.json()
    assert body["counts"] == {"pending": 2, "running": 0, "succeeded": 0, "failed": 0, "cancelled": 0}
    assert body["total"] == 2


@pytest.mark.asyncio
async def test_cancel_and_retry(client):
    created = await create(client)

    response = await client.post(f"/api/deployments/{created['id']}/cancel", headers=user(7))
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert response.json()["completed_at"] is not None

    response = await client.post(f"/api/deployments/{created['id']}/cancel", headers=user(7))
    assert response.status_code == 409
    assert response.json()["error"] == "InvalidTransition"

    response = await client.post(f"/api/deployments/{created['id']}/retry", headers=user(8))
    assert response.status_code == 403

    response = await client.post(f"/api/deployments/{created['id']}/retry", headers=user(7))
    assert response.status_code == 201
    assert response.json()["retry_of_id"] == created["id"]
    assert response.json()["status"] == "pending"


# ============================================
# EXECUTOR ENDPOINTS
# ============================================

@pytest.mark.asyncio
async def test_executor_lifecycle(client):
    created = await create(client)
    base = f"/api/executor/deployments/{created['id']}"

    response = await client.post(f"{base}/running", json={"commit_hash": COMMIT}, headers=ADMIN)
    assert response.status_code == 200
    running = response.json()
    assert running["status"] == "running"
    assert running["commit_hash"] == COMMIT

    response = await client.post(f"{base}/log", json={"chunk": "\x1B[32mbuilt\x1B[0m\n"}, headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["log"] == "built\n"

    response = await client.post(f"{base}/complete", json={"outcome": "succeeded"}, headers=ADMIN)
    assert response.status_code == 200
    finished = response.json()
    assert finished["status"] == "succeeded"
    assert finished["completed_at"] is not None
    assert datetime.fromisoformat(finished["updated_at"]) > datetime.fromisoformat(running["updated_at"])


@pytest.mark.asyncio
async def test_executor_routes_require_admin(client):
    created = await create(client)
    response = await client.post(
        f"/api/executor/deployments/{created['id']}/running",
        json={"commit_hash": COMMIT},
        headers=user(7)
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_running_without_commit_hash_is_invalid(client):
    created = await create(client)
    response = await client.post(f"/api/executor/deployments/{created['id']}/running", json={}, headers=ADMIN)
    assert response.status_code == 409
    assert response.json()["error"] == "InvalidTransition"


@pytest.mark.asyncio
async def test_second_pickup_is_a_conflict(client):
    created = await create(client)
    url = f"/api/executor/deployments/{created['id']}/running"

    assert (await client.post(url, json={"commit_hash": COMMIT}, headers=ADMIN)).status_code == 200
    response = await client.post(url, json={"commit_hash": COMMIT}, headers=ADMIN)
    assert response.status_code == 409
    assert response.json()["error"] == "Conflict"


@pytest.mark.asyncio
async def test_detach_server(client):
    created = await create(client, server_id=5)

    response = await client.post("/api/servers/5/detach", headers=ADMIN)
    assert response.status_code == 200
    assert response.json() == {"server_id": 5, "detached": 1}

    response = await client.get(f"/api/deployments/{created['id']}", headers=user(7))
    assert response.json()["server_id"] is None


# ============================================
# AUTO-DEPLOY AND WEBHOOKS
# ============================================

def push_payload(branch="main", after=COMMIT):
    return {
        "ref": f"refs/heads/{branch}",
        "after": after,
        "repository": {"id": 42, "name": "app", "full_name": "org/app"},
    }


@pytest.mark.asyncio
async def test_auto_deploy_rule_lifecycle(client):
    response = await client.post("/api/auto-deploy", json={"repository": "org/app", "branch": "main"}, headers=user(7))
    assert response.status_code == 201

    response = await client.get("/api/auto-deploy", headers=user(7))
    assert [r["repository"] for r in response.json()] == ["org/app"]

    response = await client.delete("/api/auto-deploy", params={"repository": "org/app", "branch": "main"}, headers=user(8))
    assert response.status_code == 403

    response = await client.delete("/api/auto-deploy", params={"repository": "org/app", "branch": "main"}, headers=user(7))
    assert response.status_code == 204

    response = await client.delete("/api/auto-deploy", params={"repository": "org/app", "branch": "main"}, headers=user(7))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_webhook_push_queues_deployment_once(client):
    await create(client, auto_deploy=True, server_id=2)

    first = await push(client, "delivery-1", push_payload())
    assert first.status_code == 200
    deployment_id = first.json()["deployment_id"]
    assert deployment_id is not None

    second = await push(client, "delivery-1", push_payload())
    assert second.status_code == 200
    assert second.json()["deployment_id"] == deployment_id

    response = await client.get(f"/api/deployments/{deployment_id}", headers=user(7))
    body = response.json()
    assert body["status"] == "pending"
    assert body["auto_deploy"] is True
    assert body["commit_hash"] == COMMIT
    assert body["server_id"] == 2

    listing = (await client.get("/api/deployments", headers=user(7))).json()
    assert listing["total"] == 2


@pytest.mark.asyncio
async def test_webhook_without_rule_is_acknowledged(client):
    response = await push(client, "delivery-1", push_payload())
    assert response.status_code == 200
    assert response.json()["deployment_id"] is None


@pytest.mark.asyncio
async def test_webhook_with_bad_signature_is_rejected(client):
    response = await push(client, "delivery-1", push_payload(), secret="wrong-secret")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_webhook_non_push_event_is_ignored(client):
    response = await push(client, "delivery-1", {"zen": "Keep it logically awesome."}, event="ping")
    assert response.status_code == 200
    assert "ignored" in response.json()["message"]


@pytest.mark.asyncio
async def test_webhook_with_invalid_json_is_rejected(client):
    body = b"not json"
    response = await client.post(
        "/api/webhooks/github",
        content=body,
        headers={
            "X-GitHub-Event": "push",
            "X-GitHub-Delivery": "delivery-1",
            "X-Hub-Signature-256": sign_payload(body, WEBHOOK_SECRET),
        }
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_webhook_with_malformed_push_is_rejected(client):
    payload = {"ref": "refs/heads/main", "after": COMMIT, "repository": "org/app"}
    response = await push(client, "delivery-1", payload)
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"


@pytest.mark.asyncio
async def test_auto_deploy_rule_cannot_be_taken_over(client):
    rule = {"repository": "org/app", "branch": "main"}
    response = await client.post("/api/auto-deploy", json=dict(rule, server_id=21), headers=user(7))
    assert response.status_code == 201

    response = await client.post("/api/auto-deploy", json=dict(rule, server_id=99), headers=user(8))
    assert response.status_code == 403

    response = await client.get("/api/auto-deploy", headers=user(7))
    assert [(r["user_id"], r["server_id"]) for r in response.json()] == [(7, 21)]

    response = await client.delete("/api/auto-deploy", params=rule, headers=user(7))
    assert response.status_code == 204


@pytest.mark.asyncio
async def test_refused_auto_deploy_request_stores_no_deployment(client):
    await create(client, user_id=7, auto_deploy=True)

    response = await client.post(
        "/api/deployments",
        json={"repository": "org/app", "branch": "main", "auto_deploy": True},
        headers=user(8)
    )
    assert response.status_code == 403

    listing = (await client.get("/api/deployments", headers=user(8))).json()
    assert listing["total"] == 0
