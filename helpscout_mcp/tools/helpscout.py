"""MCP tools for Help Scout mailboxes, conversations and threads.

Each tool wraps a HelpScoutClient call and returns a JSON-serialisable dict.
API failures come back as ``{"error": {...}}`` (code, message, retry_after,
details.suggestion) instead of raising, so the assistant can decide whether
to retry, reformulate or give up.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from mcp.server.fastmcp import FastMCP
from pydantic import Field

from helpscout_mcp.services.errors import HelpScoutAPIError
from helpscout_mcp.services.helpscout_client import get_helpscout_client
from helpscout_mcp.services.models import PaginatedResponse

logger = logging.getLogger(__name__)

mcp = FastMCP("help-scout")

Status = Literal["active", "pending", "closed", "spam"]
ConversationId = Annotated[
    str, Field(pattern=r"^\d+$", description="Numeric Help Scout conversation id"),
]

# Thread types written by staff rather than the customer
_STAFF_THREAD_TYPES = {"message", "reply", "note"}


def _error(exc: HelpScoutAPIError) -> dict[str, Any]:
    return {"error": exc.to_dict()}


def _page_info(envelope: PaginatedResponse) -> dict[str, Any]:
    page = envelope.page
    return {
        "page": page.number if page else 1,
        "total_pages": page.total_pages if page else 1,
        "total_elements": page.total_elements if page else None,
        "has_more": envelope.has_next,
    }


def _person(person: dict[str, Any] | None) -> dict[str, Any] | None:
    if not person:
        return None
    name = " ".join(p for p in (person.get("first"), person.get("last")) if p)
    return {"id": person.get("id"), "name": name or None, "email": person.get("email")}


def _conversation_brief(conv: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": conv.get("id"),
        "number": conv.get("number"),
        "subject": conv.get("subject"),
        "status": conv.get("status"),
        "mailbox_id": conv.get("mailboxId"),
        "customer": _person(conv.get("primaryCustomer")),
        "assignee": _person(conv.get("assignee")),
        "tags": [t.get("tag") or t.get("name") for t in conv.get("tags", [])],
        "created_at": conv.get("createdAt"),
        "closed_at": conv.get("closedAt"),
    }


def _thread_brief(thread: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": thread.get("id"),
        "type": thread.get("type"),
        "status": thread.get("status"),
        "body": thread.get("body"),
        "author": _person(thread.get("createdBy")),
        "created_at": thread.get("createdAt"),
    }


def _search_query(
    query: str | None, created_after: str | None, created_before: str | None,
) -> str | None:
    """Combine free-text search with Help Scout's createdAt range syntax."""
    clauses = []
    if query:
        clauses.append(query if query.startswith("(") else f'(body:"{query}" OR subject:"{query}")')
    if created_after or created_before:
        clauses.append(f"(createdAt:[{created_after or '*'} TO {created_before or '*'}])")
    return " AND ".join(clauses) or None


# ── Read tools ───────────────────────────────────────────────────────


@mcp.tool(name="searchInboxes")
async def search_inboxes(
    query: str = "",
    limit: Annotated[int, Field(ge=1, le=100)] = 50,
) -> dict[str, Any]:
    """List Help Scout inboxes (mailboxes) whose name or email contains *query*.

    Call this first whenever the user refers to an inbox by name: other tools
    need the numeric inbox id.
    """
    try:
        data = await get_helpscout_client().get("/mailboxes", {"page": 1})
    except HelpScoutAPIError as e:
        logger.error("Failed to search inboxes: %s", e)
        return _error(e)

    envelope = PaginatedResponse.model_validate(data or {})
    needle = query.lower().strip()
    inboxes = [
        {"id": m.get("id"), "name": m.get("name"), "email": m.get("email"), "slug": m.get("slug")}
        for m in envelope.items("mailboxes")
        if not needle
        or needle in (m.get("name") or "").lower()
        or needle in (m.get("email") or "").lower()
    ]
    return {"inboxes": inboxes[:limit], "total_found": len(inboxes), **_page_info(envelope)}


@mcp.tool(name="searchConversations")
async def search_conversations(
    query: str | None = None,
    inbox_id: str | None = None,
    tag: str | None = None,
    status: Status | None = None,
    created_after: str | None = None,
    created_before: str | None = None,
    limit: Annotated[int, Field(ge=1, le=100)] = 50,
    page: Annotated[int, Field(ge=1)] = 1,
    sort: Literal["createdAt", "modifiedAt", "number"] = "createdAt",
    order: Literal["asc", "desc"] = "desc",
) -> dict[str, Any]:
    """Search conversations by text, inbox, tag, status and creation date.

    Without *status* all of active, pending and closed are searched.  Dates
    are ISO 8601 (e.g. "2026-01-31T00:00:00Z").
    """
    params = {
        "query": _search_query(query, created_after, created_before),
        "mailbox": inbox_id,
        "tag": tag,
        "status": status or "all",
        "sortField": sort,
        "sortOrder": order,
        "page": page,
    }
    params = {k: v for k, v in params.items() if v is not None}
    try:
        data = await get_helpscout_client().get("/conversations", params)
    except HelpScoutAPIError as e:
        logger.error("Failed to search conversations: %s", e)
        return _error(e)

    envelope = PaginatedResponse.model_validate(data or {})
    conversations = [_conversation_brief(c) for c in envelope.items("conversations")]
    return {
        "conversations": conversations[:limit],
        "search_query": params.get("query"),
        **_page_info(envelope),
    }


@mcp.tool(name="getThreads")
async def get_threads(
    conversation_id: ConversationId,
    limit: Annotated[int, Field(ge=1, le=200)] = 200,
    page: Annotated[int, Field(ge=1)] = 1,
) -> dict[str, Any]:
    """Get the message threads (customer messages, replies, notes) of a conversation."""
    try:
        data = await get_helpscout_client().get(
            f"/conversations/{conversation_id}/threads", {"page": page},
        )
    except HelpScoutAPIError as e:
        logger.error("Failed to get threads for %s: %s", conversation_id, e)
        return _error(e)

    envelope = PaginatedResponse.model_validate(data or {})
    threads = [_thread_brief(t) for t in envelope.items("threads")]
    return {"conversation_id": conversation_id, "threads": threads[:limit], **_page_info(envelope)}


@mcp.tool(name="getConversationSummary")
async def get_conversation_summary(conversation_id: ConversationId) -> dict[str, Any]:
    """Summarise a conversation: metadata, first customer message and latest staff reply."""
    client = get_helpscout_client()
    try:
        conversation = await client.get(f"/conversations/{conversation_id}")
        data = await client.get(f"/conversations/{conversation_id}/threads", {"page": 1})
    except HelpScoutAPIError as e:
        logger.error("Failed to summarise conversation %s: %s", conversation_id, e)
        return _error(e)

    threads = sorted(
        PaginatedResponse.model_validate(data or {}).items("threads"),
        key=lambda t: t.get("createdAt") or "",
    )
    first_customer = next((t for t in threads if t.get("type") == "customer"), None)
    latest_staff = next(
        (t for t in reversed(threads) if t.get("type") in _STAFF_THREAD_TYPES), None,
    )
    return {
        "conversation": _conversation_brief(conversation or {}),
        "thread_count": len(threads),
        "first_customer_message": _thread_brief(first_customer) if first_customer else None,
        "latest_staff_reply": _thread_brief(latest_staff) if latest_staff else None,
    }


@mcp.tool(name="getAttachment")
async def get_attachment(conversation_id: ConversationId, attachment_id: str) -> dict[str, Any]:
    """Download an attachment; the content is returned base64-encoded in ``data``."""
    try:
        payload = await get_helpscout_client().get_attachment_data(conversation_id, attachment_id)
    except HelpScoutAPIError as e:
        logger.error("Failed to download attachment %s: %s", attachment_id, e)
        return _error(e)
    return {"conversation_id": conversation_id, "attachment_id": attachment_id, **payload}


@mcp.tool(name="getServerTime")
async def get_server_time() -> dict[str, Any]:
    """Current server time, for building relative date filters."""
    now = datetime.now(UTC)
    return {"iso_time": now.isoformat(), "unix_time": int(now.timestamp())}


@mcp.tool(name="serverHealth")
async def server_health() -> dict[str, Any]:
    """Report upstream reachability and connection-pool usage."""
    client = get_helpscout_client()
    return {
        "connected": await client.test_connection(),
        "auth_state": client.authenticator.state.value,
        "pool": client.pool_stats(),
    }


# ── Write tools ──────────────────────────────────────────────────────


@mcp.tool(name="updateConversationStatus")
async def update_conversation_status(
    conversation_id: ConversationId, status: Status,
) -> dict[str, Any]:
    """Change a conversation's status."""
    try:
        await get_helpscout_client().patch(
            f"/conversations/{conversation_id}",
            {"op": "replace", "path": "/status", "value": status},
        )
    except HelpScoutAPIError as e:
        logger.error("Failed to update status of %s: %s", conversation_id, e)
        return _error(e)
    return {"success": True, "conversation_id": conversation_id, "status": status}


@mcp.tool(name="updateConversationTags")
async def update_conversation_tags(
    conversation_id: ConversationId,
    tags: list[str],
    preserve_existing: bool = False,
) -> dict[str, Any]:
    """Set the tags of a conversation.

    WARNING: this REPLACES all existing tags unless *preserve_existing* is
    true, in which case the current tags are fetched and merged first.
    """
    client = get_helpscout_client()
    path = f"/conversations/{conversation_id}"
    try:
        final_tags = list(dict.fromkeys(t.strip() for t in tags if t.strip()))
        if preserve_existing:
            conversation = await client.get(path) or {}
            existing = [t.get("tag") or t.get("name") for t in conversation.get("tags", [])]
            final_tags = list(dict.fromkeys([*filter(None, existing), *final_tags]))
        await client.put(f"{path}/tags", {"tags": final_tags})
    except HelpScoutAPIError as e:
        logger.error("Failed to update tags of %s: %s", conversation_id, e)
        return _error(e)
    return {"success": True, "conversation_id": conversation_id, "tags": final_tags}


@mcp.tool(name="createNote")
async def create_note(
    conversation_id: ConversationId,
    text: Annotated[str, Field(min_length=1)],
    user: int | None = None,
) -> dict[str, Any]:
    """Add an internal note (never visible to the customer) to a conversation."""
    body: dict[str, Any] = {"text": text}
    if user is not None:
        body["user"] = user
    try:
        created = await get_helpscout_client().post(
            f"/conversations/{conversation_id}/notes", body,
        )
    except HelpScoutAPIError as e:
        logger.error("Failed to create note on %s: %s", conversation_id, e)
        return _error(e)
    return {"success": True, "conversation_id": conversation_id, "note_id": created.get("id")}


@mcp.tool(name="createDraftReply")
async def create_draft_reply(
    conversation_id: ConversationId,
    text: Annotated[str, Field(min_length=1)],
    user: int | None = None,
    status: Status | None = None,
) -> dict[str, Any]:
    """Create a draft reply to the conversation's customer for a human to review.

    *status* is applied to the conversation when the draft is eventually sent.
    """
    client = get_helpscout_client()
    try:
        conversation = await client.get(f"/conversations/{conversation_id}") or {}
        customer = conversation.get("primaryCustomer") or {}
        if not customer.get("id"):
            return {
                "error": {
                    "code": "INVALID_INPUT",
                    "message": f"Conversation {conversation_id} has no primary customer to reply to.",
                    "details": {"suggestion": "Use createNote for conversations without a customer"},
                }
            }
        body: dict[str, Any] = {"customer": {"id": customer["id"]}, "text": text, "draft": True}
        if user is not None:
            body["user"] = user
        if status is not None:
            body["status"] = status
        created = await client.post(f"/conversations/{conversation_id}/reply", body)
    except HelpScoutAPIError as e:
        logger.error("Failed to create draft reply on %s: %s", conversation_id, e)
        return _error(e)
    return {
        "success": True,
        "conversation_id": conversation_id,
        "thread_id": created.get("id"),
        "draft": True,
    }
