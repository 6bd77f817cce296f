"""
Guardian Angel - Process Flows API Tests
========================================
"""

from uuid import uuid4

import pytest
from httpx import AsyncClient

FLOW = {
    "title": "Onboarding",
    "nodes": [
        {"id": "a", "position": {"x": 0, "y": 0}, "data": {"label": "Start"}},
        {"id": "b", "position": {"x": 200, "y": 0}, "data": {"label": "End"}, "style": {"color": "red"}},
    ],
    "edges": [{"id": "a-b", "source": "a", "target": "b"}],
}


async def create_flow(client: AsyncClient, headers: dict) -> dict:
    response = await client.post("/api/v1/process-flows", json=FLOW, headers=headers)
    assert response.status_code == 201
    return response.json()


class TestProcessFlowCrud:
    """Create, read, update, delete."""

    async def test_requires_auth(self, client: AsyncClient):
        response = await client.get("/api/v1/process-flows")
        assert response.status_code == 401

    async def test_create_and_get(self, client: AsyncClient, auth_headers: dict):
        flow = await create_flow(client, auth_headers)
        assert len(flow["nodes"]) == 2

        response = await client.get(f"/api/v1/process-flows/{flow['id']}", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["edges"][0]["target"] == "b"

    async def test_list_only_own(self, client: AsyncClient, auth_headers: dict, other_headers: dict):
        await create_flow(client, auth_headers)
        mine = await client.get("/api/v1/process-flows", headers=auth_headers)
        theirs = await client.get("/api/v1/process-flows", headers=other_headers)
        assert len(mine.json()) == 1
        assert theirs.json() == []

    async def test_update_keeps_omitted_fields(self, client: AsyncClient, auth_headers: dict):
        flow = await create_flow(client, auth_headers)
        response = await client.put(
            f"/api/v1/process-flows/{flow['id']}",
            json={"title": "Offboarding"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["title"] == "Offboarding"
        assert len(response.json()["nodes"]) == 2

    @pytest.mark.parametrize("field", ["title", "nodes", "edges"])
    async def test_update_rejects_null(self, client: AsyncClient, auth_headers: dict, field: str):
        flow = await create_flow(client, auth_headers)
        response = await client.put(
            f"/api/v1/process-flows/{flow['id']}",
            json={field: None},
            headers=auth_headers,
        )
        assert response.status_code == 422

        stored = await client.get(f"/api/v1/process-flows/{flow['id']}", headers=auth_headers)
        assert stored.status_code == 200
        assert stored.json()["title"] == "Onboarding"
        assert len(stored.json()["nodes"]) == 2
        assert len(stored.json()["edges"]) == 1

    async def test_update_clears_description(self, client: AsyncClient, auth_headers: dict):
        flow = await create_flow(client, auth_headers)
        await client.put(
            f"/api/v1/process-flows/{flow['id']}",
            json={"description": "First draft"},
            headers=auth_headers,
        )
        response = await client.put(
            f"/api/v1/process-flows/{flow['id']}",
            json={"description": None},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["description"] is None

    async def test_delete(self, client: AsyncClient, auth_headers: dict):
        flow = await create_flow(client, auth_headers)
        response = await client.delete(f"/api/v1/process-flows/{flow['id']}", headers=auth_headers)
        assert response.status_code == 204
        missing = await client.get(f"/api/v1/process-flows/{flow['id']}", headers=auth_headers)
        assert missing.status_code == 404

    async def test_missing(self, client: AsyncClient, auth_headers: dict):
        response = await client.get(f"/api/v1/process-flows/{uuid4()}", headers=auth_headers)
        assert response.status_code == 404

    async def test_other_user_forbidden(self, client: AsyncClient, auth_headers: dict, other_headers: dict):
        flow = await create_flow(client, auth_headers)
        response = await client.delete(f"/api/v1/process-flows/{flow['id']}", headers=other_headers)
        assert response.status_code == 403


class TestNodeResize:
    """PATCH /process-flows/{id}/nodes/{node_id}/size."""

    async def test_size_mirrored_into_style_and_data(self, client: AsyncClient, auth_headers: dict):
        flow = await create_flow(client, auth_headers)
        response = await client.patch(
            f"/api/v1/process-flows/{flow['id']}/nodes/b/size",
            json={"width": 240, "height": 90},
            headers=auth_headers,
        )
        assert response.status_code == 200

        node = next(n for n in response.json()["nodes"] if n["id"] == "b")
        assert node["width"] == 240
        assert node["style"] == {"color": "red", "width": 240, "height": 90}
        assert node["data"]["label"] == "End"
        assert node["data"]["height"] == 90

        other = next(n for n in response.json()["nodes"] if n["id"] == "a")
        assert "width" not in other

    async def test_size_clamped_to_minimum(self, client: AsyncClient, auth_headers: dict):
        flow = await create_flow(client, auth_headers)
        response = await client.patch(
            f"/api/v1/process-flows/{flow['id']}/nodes/a/size",
            json={"width": 10, "height": 5},
            headers=auth_headers,
        )
        node = next(n for n in response.json()["nodes"] if n["id"] == "a")
        assert (node["width"], node["height"]) == (80, 40)

    async def test_size_persisted(self, client: AsyncClient, auth_headers: dict):
        flow = await create_flow(client, auth_headers)
        await client.patch(
            f"/api/v1/process-flows/{flow['id']}/nodes/a/size",
            json={"width": 300, "height": 120},
            headers=auth_headers,
        )
        response = await client.get(f"/api/v1/process-flows/{flow['id']}", headers=auth_headers)
        node = next(n for n in response.json()["nodes"] if n["id"] == "a")
        assert node["style"]["height"] == 120

    async def test_unknown_node(self, client: AsyncClient, auth_headers: dict):
        flow = await create_flow(client, auth_headers)
        response = await client.patch(
            f"/api/v1/process-flows/{flow['id']}/nodes/zzz/size",
            json={"width": 200, "height": 100},
            headers=auth_headers,
        )
        assert response.status_code == 404

    async def test_non_positive_size_rejected(self, client: AsyncClient, auth_headers: dict):
        flow = await create_flow(client, auth_headers)
        response = await client.patch(
            f"/api/v1/process-flows/{flow['id']}/nodes/a/size",
            json={"width": 0, "height": 100},
            headers=auth_headers,
        )
        assert response.status_code == 422
