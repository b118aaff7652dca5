"""
Live round trips against the real ClickUp API.

Skipped unless these are set (loaded from .env.test):
    CLICKUP_API_TOKEN, CLICKUP_TEAM_ID, CLICKUP_TEST_LIST_ID, CLICKUP_TEST_USER_ID
Every task created here is deleted in teardown; run cleanup_test_data.py to
remove leftovers from interrupted runs.
"""

import asyncio
import os
import time

import pytest
from dotenv import load_dotenv

import clickup_mcp_server as server
from clickup_mcp_server import ClickUpClient, Config, UpstreamError

load_dotenv('.env.test')

TEST_LIST_ID = os.getenv("CLICKUP_TEST_LIST_ID")
TEST_USER_ID = os.getenv("CLICKUP_TEST_USER_ID")

pytestmark = pytest.mark.skipif(
    not (os.getenv("CLICKUP_API_TOKEN") and os.getenv("CLICKUP_TEAM_ID") and TEST_LIST_ID and TEST_USER_ID),
    reason="live ClickUp credentials not configured",
)


@pytest.fixture
async def live():
    """Yields (client, created_ids); created tasks are deleted afterwards."""
    created = []
    async with ClickUpClient(Config.from_env('.env.test')) as client:
        yield client, created
        for task_id in created:
            try:
                await server.delete_task(client, id=task_id)
            except UpstreamError:
                pass


async def _new_task(client, created, label, **fields):
    result = await server.create_task(client, list_id=TEST_LIST_ID, name=f"{label} Test {int(time.time() * 1000)}", **fields)
    created.append(result["id"])
    return result


async def test_hierarchy_returns_spaces_and_members(live):
    client, _ = live
    result = await server.hierarchy(client)

    assert isinstance(result["spaces"], list)
    assert result["members"]


async def test_create_fetch_update_delete(live):
    client, created = live
    due = 1700000000000
    result = await _new_task(client, created, "CRUD", desc="Created by integration test", due=due)
    assert result["id"] and result["url"]

    task = await server.get_task(client, id=result["id"])
    assert task["desc"] == "Created by integration test"
    assert task["due"] == due

    await server.update_task(client, id=result["id"], status="in progress")
    task = await server.get_task(client, id=result["id"])
    assert task["status"].lower() == "in progress"
    assert task["desc"] == "Created by integration test"

    await server.update_task(client, id=result["id"], due=0)
    assert (await server.get_task(client, id=result["id"]))["due"] is None

    await server.delete_task(client, id=result["id"])
    created.remove(result["id"])
    with pytest.raises(UpstreamError) as exc:
        await server.get_task(client, id=result["id"])
    assert exc.value.status == 404


async def test_search_finds_tasks(live):
    client, created = live
    await _new_task(client, created, "Search")
    # Wait for indexing
    await asyncio.sleep(1)

    results = await server.search(client, q="Search Test")
    assert len(results) <= server.MAX_SEARCH_RESULTS


async def test_assign_is_idempotent(live):
    client, created = live
    user = int(TEST_USER_ID)
    result = await _new_task(client, created, "Assignee")

    await server.assign(client, id=result["id"], user=user)
    await server.assign(client, id=result["id"], user=user)
    ids = [a["id"] for a in (await server.get_task(client, id=result["id"]))["assignees"]]
    assert ids.count(user) == 1

    await server.unassign(client, id=result["id"], user=user)
    await server.unassign(client, id=result["id"], user=user)
    ids = [a["id"] for a in (await server.get_task(client, id=result["id"]))["assignees"]]
    assert user not in ids


async def test_tag_round_trip(live):
    client, created = live
    result = await _new_task(client, created, "Tag")
    before = (await server.get_task(client, id=result["id"]))["tags"]

    await server.add_tag(client, id=result["id"], tag="mcp-test-tag")
    assert "mcp-test-tag" in (await server.get_task(client, id=result["id"]))["tags"]

    await server.remove_tag(client, id=result["id"], tag="mcp-test-tag")
    assert (await server.get_task(client, id=result["id"]))["tags"] == before


async def test_delete_nonexistent_task(live):
    client, created = live
    result = await _new_task(client, created, "Delete")
    await server.delete_task(client, id=result["id"])
    created.remove(result["id"])

    # Malformed ids get 401 from ClickUp, so use a real id that no longer exists
    with pytest.raises(UpstreamError) as exc:
        await server.delete_task(client, id=result["id"])
    assert exc.value.status == 404
    assert "404" in str(exc.value)
