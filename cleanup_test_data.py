#!/usr/bin/env python3
"""
Cleanup script to remove test tasks created by the integration tests
Run this after interrupted test runs to keep the test list clean
"""

import asyncio
import os
import re
import sys

from dotenv import load_dotenv

from clickup_mcp_server import ClickUpClient, Config, ConfigurationError, UpstreamError, delete_task

# Task names produced by test_integration.py
TEST_PATTERNS = [
    r"^(crud|search|assignee|tag|delete|attachment|full options) test \d+$",
    r"^(test|updated) task \d+$",
]


def is_test_task(name: str) -> bool:
    return any(re.search(pattern, name.lower()) for pattern in TEST_PATTERNS)


async def cleanup_test_tasks(client: ClickUpClient, list_id: str) -> int:
    """Delete matching tasks from one list. Returns how many were deleted."""
    print(f"🧹 Cleaning up test tasks in list {list_id}...")

    res = await client.call("GET", f"/list/{list_id}/task?archived=false")
    deleted_count = 0
    for task in res.get("tasks") or []:
        if not is_test_task(task.get("name", "")):
            continue
        print(f"🗑️  Found test task: '{task['name']}' ({task['id']})")
        try:
            await delete_task(client, id=task["id"])
            deleted_count += 1
        except UpstreamError as e:
            print(f"❌ Failed to delete {task['id']}: {e}")

    print(f"✅ Deleted {deleted_count} test tasks")
    return deleted_count


async def main():
    load_dotenv('.env.test')
    list_id = os.getenv("CLICKUP_TEST_LIST_ID")
    if not list_id:
        print("❌ CLICKUP_TEST_LIST_ID required")
        sys.exit(1)

    try:
        config = Config.from_env('.env.test')
    except ConfigurationError as e:
        print(f"❌ {e}")
        sys.exit(1)

    async with ClickUpClient(config) as client:
        await cleanup_test_tasks(client, list_id)


if __name__ == "__main__":
    asyncio.run(main())
