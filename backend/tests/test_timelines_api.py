"""
Guardian Angel - Timelines and Engine API Tests
===============================================
"""

from uuid import uuid4

import pytest
from httpx import AsyncClient


async def create_timeline(client: AsyncClient, headers: dict, title: str = "Morning") -> dict:
    response = await client.post("/api/v1/timelines", json={"title": title}, headers=headers)
    assert response.status_code == 201
    return response.json()


async def add_node(client: AsyncClient, headers: dict, timeline_id: str, **body) -> dict:
    response = await client.post(f"/api/v1/timelines/{timeline_id}/nodes", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


# ==========================================================================
# Timelines
# ==========================================================================

class TestTimelineEndpoints:
    """Timeline CRUD over HTTP."""

    async def test_requires_auth(self, client: AsyncClient):
        response = await client.get("/api/v1/timelines")
        assert response.status_code == 401

    async def test_create_and_list(self, client: AsyncClient, auth_headers: dict):
        timeline = await create_timeline(client, auth_headers)
        assert timeline["root_node_id"] is not None

        response = await client.get("/api/v1/timelines", headers=auth_headers)
        assert [t["id"] for t in response.json()] == [timeline["id"]]

    async def test_first_timeline(self, client: AsyncClient, auth_headers: dict):
        response = await client.get("/api/v1/timelines/first", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["title"] == "My First Timeline"

    async def test_update(self, client: AsyncClient, auth_headers: dict):
        timeline = await create_timeline(client, auth_headers)
        response = await client.patch(
            f"/api/v1/timelines/{timeline['id']}",
            json={"description": "Weekdays"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["description"] == "Weekdays"
        assert response.json()["title"] == "Morning"

    async def test_missing(self, client: AsyncClient, auth_headers: dict):
        response = await client.get(f"/api/v1/timelines/{uuid4()}", headers=auth_headers)
        assert response.status_code == 404

    async def test_other_user_forbidden(
        self, client: AsyncClient, auth_headers: dict, other_headers: dict
    ):
        timeline = await create_timeline(client, auth_headers)
        response = await client.get(f"/api/v1/timelines/{timeline['id']}", headers=other_headers)
        assert response.status_code == 403

    async def test_delete(self, client: AsyncClient, auth_headers: dict):
        timeline = await create_timeline(client, auth_headers)
        response = await client.delete(f"/api/v1/timelines/{timeline['id']}", headers=auth_headers)
        assert response.status_code == 200
        missing = await client.get(f"/api/v1/timelines/{timeline['id']}", headers=auth_headers)
        assert missing.status_code == 404


# ==========================================================================
# Nodes and Records
# ==========================================================================

class TestNodeEndpoints:
    """Node editing and execution records."""

    async def test_build_tree_and_graph(self, client: AsyncClient, auth_headers: dict):
        timeline = await create_timeline(client, auth_headers)
        root_id = timeline["root_node_id"]
        decision = await add_node(
            client, auth_headers, timeline["id"], title="Pick", kind="decision", parent_id=root_id
        )
        await add_node(client, auth_headers, timeline["id"], title="Left", parent_id=decision["id"])

        response = await client.get(f"/api/v1/timelines/{timeline['id']}/graph", headers=auth_headers)
        assert response.status_code == 200
        graph = response.json()
        assert graph["rootId"] == root_id
        assert graph["nodes"][root_id]["children"] == [decision["id"]]
        assert len(graph["nodes"]) == 3

    async def test_mermaid(self, client: AsyncClient, auth_headers: dict):
        timeline = await create_timeline(client, auth_headers)
        await add_node(
            client, auth_headers, timeline["id"], title="Pick", kind="decision", parent_id=timeline["root_node_id"]
        )
        response = await client.get(f"/api/v1/timelines/{timeline['id']}/mermaid", headers=auth_headers)
        body = response.json()
        assert body["markup"].startswith("flowchart LR")
        assert '{"Pick"}' in body["markup"]
        assert body["node_count"] == 2

    async def test_second_root_conflict(self, client: AsyncClient, auth_headers: dict):
        timeline = await create_timeline(client, auth_headers)
        response = await client.post(
            f"/api/v1/timelines/{timeline['id']}/nodes",
            json={"title": "Another root"},
            headers=auth_headers,
        )
        assert response.status_code == 409

    async def test_patch_only_sent_fields(self, client: AsyncClient, auth_headers: dict):
        timeline = await create_timeline(client, auth_headers)
        root_id = timeline["root_node_id"]

        response = await client.patch(
            f"/api/v1/timelines/nodes/{root_id}", json={"title": "Get up"}, headers=auth_headers
        )
        assert response.json()["title"] == "Get up"
        assert response.json()["default_duration_ms"] == 5000

        cleared = await client.patch(
            f"/api/v1/timelines/nodes/{root_id}", json={"default_duration_ms": None}, headers=auth_headers
        )
        assert cleared.json()["default_duration_ms"] is None

    async def test_delete_root_rejected(self, client: AsyncClient, auth_headers: dict):
        timeline = await create_timeline(client, auth_headers)
        response = await client.delete(
            f"/api/v1/timelines/nodes/{timeline['root_node_id']}", headers=auth_headers
        )
        assert response.status_code == 400

    async def test_delete_subtree(self, client: AsyncClient, auth_headers: dict):
        timeline = await create_timeline(client, auth_headers)
        decision = await add_node(
            client, auth_headers, timeline["id"], title="Pick", kind="decision", parent_id=timeline["root_node_id"]
        )
        await add_node(client, auth_headers, timeline["id"], title="Left", parent_id=decision["id"])

        response = await client.delete(f"/api/v1/timelines/nodes/{decision['id']}", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["count"] == 2

    async def test_action_records_and_average(self, client: AsyncClient, auth_headers: dict):
        timeline = await create_timeline(client, auth_headers)
        root_id = timeline["root_node_id"]
        for duration in (1000, 3000):
            response = await client.post(
                f"/api/v1/timelines/nodes/{root_id}/actions",
                json={"duration_ms": duration},
                headers=auth_headers,
            )
            assert response.status_code == 201

        average = await client.get(f"/api/v1/timelines/nodes/{root_id}/average-duration", headers=auth_headers)
        assert average.json()["average_duration_ms"] == 2000
        records = await client.get(f"/api/v1/timelines/nodes/{root_id}/actions", headers=auth_headers)
        assert len(records.json()) == 2

    async def test_decision_records(self, client: AsyncClient, auth_headers: dict):
        timeline = await create_timeline(client, auth_headers)
        decision = await add_node(
            client, auth_headers, timeline["id"], title="Pick", kind="decision", parent_id=timeline["root_node_id"]
        )
        left = await add_node(client, auth_headers, timeline["id"], title="Left", parent_id=decision["id"])

        response = await client.post(
            f"/api/v1/timelines/nodes/{decision['id']}/decisions",
            json={"chosen_child_id": left["id"]},
            headers=auth_headers,
        )
        assert response.status_code == 201

        node = await client.get(f"/api/v1/timelines/nodes/{decision['id']}", headers=auth_headers)
        assert node.json()["chosen_child_id"] == left["id"]
        history = await client.get(f"/api/v1/timelines/nodes/{decision['id']}/decisions", headers=auth_headers)
        assert len(history.json()) == 1

    @pytest.mark.parametrize("duration_ms", [-1, 10**18])
    async def test_out_of_range_duration_rejected(
        self, client: AsyncClient, auth_headers: dict, duration_ms: int
    ):
        timeline = await create_timeline(client, auth_headers)
        response = await client.post(
            f"/api/v1/timelines/nodes/{timeline['root_node_id']}/actions",
            json={"duration_ms": duration_ms},
            headers=auth_headers,
        )
        assert response.status_code == 422


# ==========================================================================
# Migration
# ==========================================================================

class TestMigrationEndpoint:
    """POST /timelines/migrate."""

    async def test_migrate(self, client: AsyncClient, auth_headers: dict, branching_snapshot: dict):
        response = await client.post(
            "/api/v1/timelines/migrate",
            json={"snapshot": branching_snapshot, "title": "From browser"},
            headers=auth_headers,
        )
        assert response.status_code == 201
        body = response.json()
        assert body["nodes_created"] == 4
        assert set(body["id_map"]) == {"root", "choice", "fast", "slow"}

        timeline = await client.get(f"/api/v1/timelines/{body['timeline_id']}", headers=auth_headers)
        assert timeline.json()["title"] == "From browser"
        assert timeline.json()["root_node_id"] == body["id_map"]["root"]

    async def test_migrate_malformed(self, client: AsyncClient, auth_headers: dict, branching_snapshot: dict):
        branching_snapshot["nodes"]["root"]["kind"] = "teleport"
        response = await client.post(
            "/api/v1/timelines/migrate",
            json={"snapshot": branching_snapshot},
            headers=auth_headers,
        )
        assert response.status_code == 400


# ==========================================================================
# Engine
# ==========================================================================

class TestEngineEndpoints:
    """Per-user in-memory engine."""

    async def test_load_and_read_back(self, client: AsyncClient, auth_headers: dict, branching_snapshot: dict):
        response = await client.post("/api/v1/engine/load", json=branching_snapshot, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["nodeCount"] == 4

        state = await client.get("/api/v1/engine", headers=auth_headers)
        assert state.json()["rootId"] == "root"
        assert set(state.json()["nodes"]) == set(branching_snapshot["nodes"])

    async def test_malformed_keeps_contents(
        self, client: AsyncClient, auth_headers: dict, branching_snapshot: dict
    ):
        await client.post("/api/v1/engine/load", json=branching_snapshot, headers=auth_headers)

        branching_snapshot["nodes"]["choice"]["children"].append("ghost")
        response = await client.post("/api/v1/engine/load", json=branching_snapshot, headers=auth_headers)
        assert response.status_code == 400
        assert any("ghost" in p for p in response.json()["detail"]["problems"])

        state = await client.get("/api/v1/engine", headers=auth_headers)
        assert state.json()["nodeCount"] == 4

    async def test_reset(self, client: AsyncClient, auth_headers: dict, branching_snapshot: dict):
        await client.post("/api/v1/engine/load", json=branching_snapshot, headers=auth_headers)
        await client.post("/api/v1/engine/reset", headers=auth_headers)
        state = await client.get("/api/v1/engine", headers=auth_headers)
        assert state.json()["isEmpty"] is True

    async def test_engines_are_per_user(
        self, client: AsyncClient, auth_headers: dict, other_headers: dict, branching_snapshot: dict
    ):
        await client.post("/api/v1/engine/load", json=branching_snapshot, headers=auth_headers)
        state = await client.get("/api/v1/engine", headers=other_headers)
        assert state.json()["isEmpty"] is True

    async def test_mermaid(self, client: AsyncClient, auth_headers: dict, branching_snapshot: dict):
        await client.post("/api/v1/engine/load", json=branching_snapshot, headers=auth_headers)
        response = await client.get("/api/v1/engine/mermaid", headers=auth_headers)
        assert 'choice{"Breakfast?"}' in response.json()["markup"]

    async def test_load_persisted_timeline(self, client: AsyncClient, auth_headers: dict):
        timeline = await create_timeline(client, auth_headers)
        response = await client.post(
            f"/api/v1/engine/load-timeline/{timeline['id']}", headers=auth_headers
        )
        assert response.status_code == 200
        assert response.json()["rootId"] == timeline["root_node_id"]
