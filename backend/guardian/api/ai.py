"""
Guardian Angel - AI Assistant API
=================================

Chat completions relayed to the browser as server-sent events:

    data: {"content": "..."}
    ...
    data: [DONE]
"""

import json
from collections.abc import AsyncIterator
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from guardian.api.deps import CurrentUser
from guardian.core.integrations import AIChatClient, AIChatError, get_ai_chat_client

logger = structlog.get_logger()

router = APIRouter(prefix="/ai", tags=["AI Assistant"])

ChatClient = Annotated[AIChatClient, Depends(get_ai_chat_client)]


def _event(payload: Any) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def _relay(client: AIChatClient, messages: list[dict[str, Any]]) -> AsyncIterator[str]:
    try:
        async for content in client.stream(messages):
            yield _event({"content": content})
    except AIChatError as e:
        # Headers are already sent; report in-band
        yield _event({"error": str(e)})
    yield "data: [DONE]\n\n"


@router.post(
    "/chat",
    summary="Stream a chat completion",
    responses={
        400: {"description": "Missing or invalid messages array"},
        500: {"description": "AI provider is not configured"},
    },
)
async def chat(request: Request, current_user: CurrentUser, client: ChatClient) -> StreamingResponse:
    """Stream a completion for a `{"messages": [...]}` body."""
    if not client.configured:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="AI provider API key is not configured",
        )

    try:
        body = await request.json()
    except ValueError:
        body = None
    messages = body.get("messages") if isinstance(body, dict) else None
    if not isinstance(messages, list):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Messages array is required",
        )

    logger.info("ai_chat_started", user_id=str(current_user.id), messages=len(messages))
    return StreamingResponse(
        _relay(client, messages),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
