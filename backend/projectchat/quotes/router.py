"""Quote REST API router.

Endpoints:
    GET  /api/quotes/project/{project_id} - Quotes for a project, newest first
    POST /api/quotes                      - Submit a quote (service providers only)
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from ..dependencies import current_user_id, get_quote_service
from ..storage import Quote
from .schemas import QuoteCreate
from .service import QuoteError, QuoteService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["quotes"])


@router.get("/api/quotes/project/{project_id}", response_model=List[Quote])
async def list_project_quotes(
    project_id: int,
    service: QuoteService = Depends(get_quote_service),
) -> List[Quote]:
    return service.list_by_project(project_id)


@router.post("/api/quotes", response_model=Quote)
async def submit_quote(
    request: QuoteCreate,
    user_id: int = Depends(current_user_id),
    service: QuoteService = Depends(get_quote_service),
) -> Quote:
    """Submit a quote and notify the project chat.

    Returns:
        The committed quote (``chatMessageId`` is null if the chat
        notification is still pending).
    """
    try:
        return await service.submit(
            request.projectId,
            user_id,
            request.amount,
            request.description,
            request.timeline,
            request.validUntil,
        )
    except QuoteError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
