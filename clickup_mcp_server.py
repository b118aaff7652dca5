#!/usr/bin/env python3
"""
ClickUp MCP Server
Exposes a small set of ClickUp task tools (hierarchy, search, task CRUD,
assignees, tags, attachments) over the MCP stdio transport.
"""

import asyncio
import json
import logging
import os
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

import httpx
from dotenv import load_dotenv
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool, ToolAnnotations
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

__version__ = "1.0.0"

DEFAULT_API_URL = "https://api.clickup.com/api/v2"
DEFAULT_LOG_DIR = "/tmp/clickup_mcp_logs"
DEFAULT_LOG_RETENTION_DAYS = 30

# Search returns a fixed slice, no pagination
MAX_SEARCH_RESULTS = 20

logger = logging.getLogger(__name__)


# Errors

class ClickUpError(Exception):
    """Base class for errors raised by the ClickUp tools."""


class ConfigurationError(ClickUpError):
    """A required setting (token, team) is missing or malformed."""


class UpstreamError(ClickUpError):
    """ClickUp answered with a non-success HTTP status."""

    def __init__(self, status: int, body: str):
        super().__init__(f"{status}: {body}")
        self.status = status
        self.body = body


class ValidationError(ClickUpError):
    """Tool arguments do not match the tool's input schema."""


# Configuration

class Config(BaseModel):
    """Process-wide settings, read once at startup and passed to the client."""
    model_config = ConfigDict(frozen=True)

    api_token: str = Field(..., min_length=1)
    team_id: Optional[str] = None
    api_url: str = DEFAULT_API_URL
    log_dir: str = DEFAULT_LOG_DIR
    log_retention_days: int = DEFAULT_LOG_RETENTION_DAYS
    http_timeout: Optional[float] = None

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Config":
        """Build the config from environment variables (and a .env file if present)."""
        load_dotenv(dotenv_path)

        token = os.getenv("CLICKUP_API_TOKEN", "").strip()
        if not token:
            raise ConfigurationError("CLICKUP_API_TOKEN required")

        try:
            retention = int(os.getenv("LOG_RETENTION_DAYS", str(DEFAULT_LOG_RETENTION_DAYS)))
            timeout = os.getenv("CLICKUP_HTTP_TIMEOUT")
            http_timeout = float(timeout) if timeout else None
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e

        return cls(
            api_token=token,
            team_id=os.getenv("CLICKUP_TEAM_ID") or None,
            api_url=os.getenv("CLICKUP_API_URL", DEFAULT_API_URL),
            log_dir=os.getenv("LOG_DIR", DEFAULT_LOG_DIR),
            log_retention_days=retention,
            http_timeout=http_timeout,
        )

    def resolve_team(self, team: Optional[str] = None) -> str:
        """Caller's team wins over the configured default; one of them is required."""
        resolved = team or self.team_id
        if not resolved:
            raise ConfigurationError("team required (or set CLICKUP_TEAM_ID)")
        return resolved


# Logging

def cleanup_old_logs(log_dir, days_old=DEFAULT_LOG_RETENTION_DAYS):
    """Remove log files older than specified days. If days_old=0, delete all logs."""
    try:
        log_path = Path(log_dir)
        if not log_path.exists():
            return

        cutoff_time = time.time() - (days_old * 24 * 60 * 60)
        deleted_count = 0
        for log_file in log_path.glob("*.log"):
            if days_old == 0 or log_file.stat().st_mtime < cutoff_time:
                log_file.unlink()
                deleted_count += 1

        if deleted_count > 0:
            logger.info(f"Cleaned up {deleted_count} old log files (retention: {days_old} days)")
    except OSError as e:
        logger.warning(f"Log cleanup failed: {e}")


def setup_logging(config: Config) -> str:
    """Log to a timestamped file in config.log_dir and to stderr. Returns the log file path."""
    os.makedirs(config.log_dir, exist_ok=True)
    cleanup_old_logs(config.log_dir, days_old=config.log_retention_days)

    log_file = os.path.join(config.log_dir, f"mcp_server_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log")

    # stdout carries the MCP protocol, so the console handler must use stderr
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stderr)
        ]
    )
    logger.info(f"=== ClickUp MCP Server Starting - Log file: {log_file} ===")
    return log_file


# HTTP client

class ClickUpClient:
    """Thin async wrapper around the ClickUp REST API: one attempt per call, no retries."""

    def __init__(self, config: Config, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._http = httpx.AsyncClient(
            base_url=config.api_url,
            headers={"Authorization": config.api_token},
            timeout=config.http_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ClickUpClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def call(self, method: str, path: str, body: Optional[dict] = None) -> dict:
        """Issue one request. `path` is relative to the API root and may carry a query string."""
        kwargs = {"headers": {"Content-Type": "application/json"}}
        if body is not None:
            kwargs["json"] = body
        response = await self._http.request(method, path, **kwargs)
        return self._parse(method, path, response)

    async def upload(self, path: str, file_path: str, filename: Optional[str] = None) -> dict:
        """POST a file as the multipart `attachment` field."""
        upload_filename = filename or Path(file_path).name
        with open(file_path, "rb") as f:
            response = await self._http.post(path, files={"attachment": (upload_filename, f)})
        return self._parse("POST", path, response)

    @staticmethod
    def _parse(method: str, path: str, response: httpx.Response) -> dict:
        logger.debug(f"{method} {path} -> {response.status_code}")
        if not response.is_success:
            raise UpstreamError(response.status_code, response.text)
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()


# Response shaping

def shape_due(value) -> Optional[int]:
    """ClickUp sends due dates as epoch-ms strings; unset is null."""
    if value is None or value == "":
        return None
    return int(value)


def shape_assignee(user: dict) -> dict:
    return {"id": user["id"], "name": user.get("username")}


def shape_member(member: dict) -> dict:
    user = member.get("user") or {}
    return {"id": user.get("id"), "name": user.get("username"), "email": user.get("email")}


def shape_list(lst: dict) -> dict:
    return {"id": lst["id"], "name": lst.get("name")}


def shape_folder(folder: dict) -> dict:
    return {
        "id": folder["id"],
        "name": folder.get("name"),
        "lists": [shape_list(lst) for lst in folder.get("lists") or []],
    }


def shape_space(space: dict, folders: list, lists: list) -> dict:
    return {
        "id": space["id"],
        "name": space.get("name"),
        "folders": [shape_folder(f) for f in folders],
        "lists": [shape_list(lst) for lst in lists],
    }


def _label(obj: Optional[dict], key: str) -> Optional[str]:
    return obj.get(key) if obj else None


def shape_task_summary(task: dict) -> dict:
    """Compact projection used by search results."""
    return {
        "id": task["id"],
        "name": task.get("name"),
        "status": _label(task.get("status"), "status"),
        "assignees": [shape_assignee(a) for a in task.get("assignees") or []],
        "due": shape_due(task.get("due_date")),
        "url": task.get("url"),
    }


def shape_task(task: dict) -> dict:
    """Full task projection."""
    return {
        "id": task["id"],
        "name": task.get("name"),
        "desc": task.get("description"),
        "status": _label(task.get("status"), "status"),
        "priority": _label(task.get("priority"), "priority"),
        "tags": [tag["name"] for tag in task.get("tags") or []],
        "assignees": [shape_assignee(a) for a in task.get("assignees") or []],
        "due": shape_due(task.get("due_date")),
        "url": task.get("url"),
    }


# Tool handlers

async def _fetch_space(client: ClickUpClient, space: dict) -> dict:
    folders, lists = await asyncio.gather(
        client.call("GET", f"/space/{space['id']}/folder?archived=false"),
        client.call("GET", f"/space/{space['id']}/list?archived=false"),
    )
    return shape_space(space, folders.get("folders") or [], lists.get("lists") or [])


async def hierarchy(client: ClickUpClient, team: Optional[str] = None) -> dict:
    """Spaces with their folders and lists, plus the team's members.

    All upstream calls must succeed; any failure fails the whole call.
    """
    team_id = client.config.resolve_team(team)
    logger.info(f"hierarchy called - team='{team_id}'")

    team_info, spaces = await asyncio.gather(
        client.call("GET", f"/team/{team_id}"),
        client.call("GET", f"/team/{team_id}/space?archived=false"),
    )
    space_records = await asyncio.gather(
        *(_fetch_space(client, space) for space in spaces.get("spaces") or [])
    )
    members = (team_info.get("team") or {}).get("members") or []

    logger.debug(f"hierarchy assembled {len(space_records)} spaces, {len(members)} members")
    return {
        "spaces": list(space_records),
        "members": [shape_member(m) for m in members],
    }


async def search(client: ClickUpClient, q: str, team: Optional[str] = None, assignee: Optional[int] = None,
                 due_before: Optional[int] = None, due_after: Optional[int] = None) -> list:
    """Search tasks in a team; returns at most MAX_SEARCH_RESULTS compact tasks in upstream order."""
    team_id = client.config.resolve_team(team)
    logger.info(f"search called - q='{q}', team='{team_id}', assignee={assignee}")

    params = [("query", q)]
    if assignee is not None:
        params.append(("assignees[]", str(assignee)))
    if due_before is not None:
        params.append(("due_date_lt", str(due_before)))
    if due_after is not None:
        params.append(("due_date_gt", str(due_after)))

    res = await client.call("GET", f"/team/{team_id}/task?{httpx.QueryParams(params)}")
    tasks = (res.get("tasks") or [])[:MAX_SEARCH_RESULTS]
    return [shape_task_summary(t) for t in tasks]


async def get_task(client: ClickUpClient, id: str) -> dict:
    logger.info(f"task called - id='{id}'")
    return shape_task(await client.call("GET", f"/task/{id}"))


async def create_task(client: ClickUpClient, list_id: str, name: str, desc: Optional[str] = None,
                      priority: Optional[int] = None, tags: Optional[List[str]] = None,
                      due: Optional[int] = None, assignees: Optional[List[int]] = None) -> dict:
    """Create a task in a list. Only supplied optional fields are sent."""
    logger.info(f"create called - list='{list_id}', name='{name}'")

    body = {"name": name}
    if desc is not None:
        body["description"] = desc
    if priority is not None:
        body["priority"] = priority
    if tags is not None:
        body["tags"] = list(dict.fromkeys(tags))
    if due is not None:
        body["due_date"] = due
    if assignees is not None:
        body["assignees"] = list(dict.fromkeys(assignees))

    task = await client.call("POST", f"/list/{list_id}/task", body)
    return {"id": task["id"], "url": task.get("url")}


async def update_task(client: ClickUpClient, id: str, name: Optional[str] = None, desc: Optional[str] = None,
                      status: Optional[str] = None, priority: Optional[int] = None,
                      due: Optional[int] = None) -> dict:
    """Partial update: omitted fields stay untouched upstream. due=0 clears the due date."""
    logger.info(f"update called - id='{id}'")

    body = {}
    if name is not None:
        body["name"] = name
    if desc is not None:
        body["description"] = desc
    if status is not None:
        body["status"] = status
    if priority is not None:
        body["priority"] = priority
    if due is not None:
        body["due_date"] = due or None

    task = await client.call("PUT", f"/task/{id}", body)
    return {"id": task["id"], "url": task.get("url")}


async def delete_task(client: ClickUpClient, id: str) -> dict:
    logger.info(f"delete called - id='{id}'")
    await client.call("DELETE", f"/task/{id}")
    return {"ok": True}


async def assign(client: ClickUpClient, id: str, user: int) -> dict:
    logger.info(f"assign called - id='{id}', user={user}")
    await client.call("PUT", f"/task/{id}", {"assignees": {"add": [user], "rem": []}})
    return {"ok": True}


async def unassign(client: ClickUpClient, id: str, user: int) -> dict:
    logger.info(f"unassign called - id='{id}', user={user}")
    await client.call("PUT", f"/task/{id}", {"assignees": {"add": [], "rem": [user]}})
    return {"ok": True}


async def add_tag(client: ClickUpClient, id: str, tag: str) -> dict:
    logger.info(f"tag called - id='{id}', tag='{tag}'")
    await client.call("POST", f"/task/{id}/tag/{quote(tag, safe='')}", {})
    return {"ok": True}


async def remove_tag(client: ClickUpClient, id: str, tag: str) -> dict:
    logger.info(f"untag called - id='{id}', tag='{tag}'")
    await client.call("DELETE", f"/task/{id}/tag/{quote(tag, safe='')}")
    return {"ok": True}


async def attach(client: ClickUpClient, id: str, file_path: str, filename: Optional[str] = None) -> dict:
    """Upload a local file as an attachment on a task."""
    logger.info(f"attach called - id='{id}', file_path='{file_path}'")

    if not Path(file_path).is_file():
        raise ValidationError(f"File not found: {file_path}")

    res = await client.upload(f"/task/{id}/attachment", file_path, filename)
    return {"id": res.get("id"), "url": res.get("url")}


# Input models

class HierarchyInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    team: Optional[str] = Field(None, description="Team (workspace) ID")


class SearchInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    q: str = Field(..., description="Search text")
    team: Optional[str] = Field(None, description="Team (workspace) ID")
    assignee: Optional[int] = Field(None, description="Filter by user ID")
    due_before: Optional[int] = Field(None, description="Tasks due before (Unix ms)")
    due_after: Optional[int] = Field(None, description="Tasks due after (Unix ms)")


class TaskIdInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1, description="Task ID")


class CreateInput(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    list_id: str = Field(..., alias="list", min_length=1, description="List ID")
    name: str = Field(..., min_length=1, description="Task name")
    desc: Optional[str] = Field(None, description="Task description")
    priority: Optional[int] = Field(None, description="Priority: 1 urgent, 2 high, 3 normal, 4 low")
    tags: Optional[List[str]] = Field(None, description="Tag names")
    due: Optional[int] = Field(None, ge=0, description="Due date (Unix ms)")
    assignees: Optional[List[int]] = Field(None, description="User IDs to assign")


class UpdateInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1, description="Task ID")
    name: Optional[str] = Field(None, description="New name")
    desc: Optional[str] = Field(None, description="New description")
    status: Optional[str] = Field(None, description="Status label")
    priority: Optional[int] = Field(None, description="Priority: 1 urgent, 2 high, 3 normal, 4 low")
    due: Optional[int] = Field(None, ge=0, description="Due date (Unix ms), use 0 to clear")


class AssigneeInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1, description="Task ID")
    user: int = Field(..., description="User ID")


class TagInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1, description="Task ID")
    tag: str = Field(..., min_length=1, description="Tag name")


class AttachInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1, description="Task ID")
    file_path: str = Field(..., min_length=1, description="Path of the local file to upload")
    filename: Optional[str] = Field(None, description="Filename to upload as (defaults to the file's basename)")


# Tool registry

TOOL_HANDLERS = {
    "hierarchy": hierarchy,
    "search": search,
    "task": get_task,
    "create": create_task,
    "update": update_task,
    "delete": delete_task,
    "assign": assign,
    "unassign": unassign,
    "tag": add_tag,
    "untag": remove_tag,
    "attach": attach,
}

INPUT_MODELS = {
    "hierarchy": HierarchyInput,
    "search": SearchInput,
    "task": TaskIdInput,
    "create": CreateInput,
    "update": UpdateInput,
    "delete": TaskIdInput,
    "assign": AssigneeInput,
    "unassign": AssigneeInput,
    "tag": TagInput,
    "untag": TagInput,
    "attach": AttachInput,
}

_TASK_ID = {"type": "string", "description": "Task ID (required)"}
_USER_ID = {"type": "integer", "description": "User ID (required)"}
_TAG_NAME = {"type": "string", "description": "Tag name (required)"}

TOOLS = [
    Tool(
        name="hierarchy",
        description="Get spaces/folders/lists and team members",
        inputSchema={
            "type": "object",
            "properties": {
                "team": {"type": "string", "description": "Team ID (optional, defaults to CLICKUP_TEAM_ID)"}
            }
        },
        annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False, idempotentHint=True, openWorldHint=True)
    ),
    Tool(
        name="search",
        description=f"Search tasks (at most {MAX_SEARCH_RESULTS} results)",
        inputSchema={
            "type": "object",
            "properties": {
                "q": {"type": "string", "description": "Search text (required)"},
                "team": {"type": "string", "description": "Team ID (optional, defaults to CLICKUP_TEAM_ID)"},
                "assignee": {"type": "integer", "description": "Filter by user ID (optional)"},
                "due_before": {"type": "integer", "description": "Tasks due before (Unix ms, optional)"},
                "due_after": {"type": "integer", "description": "Tasks due after (Unix ms, optional)"}
            },
            "required": ["q"]
        },
        annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False, idempotentHint=True, openWorldHint=True)
    ),
    Tool(
        name="task",
        description="Get task by ID",
        inputSchema={
            "type": "object",
            "properties": {"id": _TASK_ID},
            "required": ["id"]
        },
        annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False, idempotentHint=True, openWorldHint=True)
    ),
    Tool(
        name="create",
        description="Create task",
        inputSchema={
            "type": "object",
            "properties": {
                "list": {"type": "string", "description": "List ID (required)"},
                "name": {"type": "string", "description": "Task name (required)"},
                "desc": {"type": "string", "description": "Task description (optional)"},
                "priority": {"type": "integer", "description": "Priority: 1 urgent, 2 high, 3 normal, 4 low (optional)"},
                "tags": {"type": "array", "items": {"type": "string"}, "description": "Tag names (optional)"},
                "due": {"type": "integer", "description": "Due date (Unix ms, optional)"},
                "assignees": {"type": "array", "items": {"type": "integer"}, "description": "User IDs to assign (optional)"}
            },
            "required": ["list", "name"]
        },
        annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False, idempotentHint=False, openWorldHint=True)
    ),
    Tool(
        name="update",
        description="Update task; omitted fields are left unchanged",
        inputSchema={
            "type": "object",
            "properties": {
                "id": _TASK_ID,
                "name": {"type": "string", "description": "New name (optional)"},
                "desc": {"type": "string", "description": "New description (optional)"},
                "status": {"type": "string", "description": "Status label, e.g. 'in progress' (optional)"},
                "priority": {"type": "integer", "description": "Priority: 1 urgent, 2 high, 3 normal, 4 low (optional)"},
                "due": {"type": "integer", "description": "Due date (Unix ms), use 0 to clear (optional)"}
            },
            "required": ["id"]
        },
        annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False, idempotentHint=True, openWorldHint=True)
    ),
    Tool(
        name="delete",
        description="Delete task",
        inputSchema={
            "type": "object",
            "properties": {"id": _TASK_ID},
            "required": ["id"]
        },
        annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=True, idempotentHint=True, openWorldHint=True)
    ),
    Tool(
        name="assign",
        description="Add assignee",
        inputSchema={
            "type": "object",
            "properties": {"id": _TASK_ID, "user": _USER_ID},
            "required": ["id", "user"]
        },
        annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False, idempotentHint=True, openWorldHint=True)
    ),
    Tool(
        name="unassign",
        description="Remove assignee",
        inputSchema={
            "type": "object",
            "properties": {"id": _TASK_ID, "user": _USER_ID},
            "required": ["id", "user"]
        },
        annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=True, idempotentHint=True, openWorldHint=True)
    ),
    Tool(
        name="tag",
        description="Add tag",
        inputSchema={
            "type": "object",
            "properties": {"id": _TASK_ID, "tag": _TAG_NAME},
            "required": ["id", "tag"]
        },
        annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False, idempotentHint=True, openWorldHint=True)
    ),
    Tool(
        name="untag",
        description="Remove tag",
        inputSchema={
            "type": "object",
            "properties": {"id": _TASK_ID, "tag": _TAG_NAME},
            "required": ["id", "tag"]
        },
        annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=True, idempotentHint=True, openWorldHint=True)
    ),
    Tool(
        name="attach",
        description="Upload a local file as a task attachment",
        inputSchema={
            "type": "object",
            "properties": {
                "id": _TASK_ID,
                "file_path": {"type": "string", "description": "Path to the file to upload (required)"},
                "filename": {"type": "string", "description": "Filename to upload as (optional, defaults to basename of file_path)"}
            },
            "required": ["id", "file_path"]
        },
        annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False, idempotentHint=False, openWorldHint=True)
    ),
]


async def dispatch(client: ClickUpClient, name: str, arguments: Optional[dict] = None):
    """Validate arguments for tool `name` and run its handler."""
    handler = TOOL_HANDLERS.get(name)
    if handler is None:
        raise ValueError(f"Unknown tool: {name}")

    try:
        params = INPUT_MODELS[name].model_validate(arguments or {})
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid arguments for {name}: {e}") from e

    return await handler(client, **params.model_dump(exclude_unset=True))


def build_server(client: ClickUpClient) -> Server:
    server = Server("clickup")

    @server.list_tools()
    async def handle_list_tools():
        """List available ClickUp tools."""
        return TOOLS

    @server.call_tool()
    async def handle_call_tool(name: str, arguments: dict | None = None):
        """Handle tool execution. Failures are re-raised so the client sees a tool error."""
        try:
            result = await dispatch(client, name, arguments)
        except Exception as e:
            logger.error(f"Tool {name} failed: {e}")
            raise
        return [TextContent(type="text", text=json.dumps(result, indent=2))]

    return server


async def main():
    """Run the ClickUp MCP server over stdio."""
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    async with ClickUpClient(config) as client:
        server = build_server(client)
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name="clickup",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={}
                    ),
                ),
            )


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
