"""FastAPI dependencies shared by the routers.

The chat hub and quote service are built in the application lifespan and
kept on ``app.state``; handlers receive them through these dependencies
rather than importing module globals.
"""
from typing import Optional

from fastapi import Header, HTTPException, Request

from .chat.hub import ChatHub
from .quotes.service import QuoteService


def get_hub(request: Request) -> ChatHub:
    return request.app.state.chat_hub


def get_quote_service(request: Request) -> QuoteService:
    return request.app.state.quote_service


def current_user_id(
    x_user_id: Optional[int] = Header(None, alias="X-User-Id", description="Authenticated user id"),
) -> int:
    """The opaque current user id set by the authentication layer in front of us."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id
