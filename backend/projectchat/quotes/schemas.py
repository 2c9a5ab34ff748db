"""Pydantic schemas for quote submission."""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, PositiveInt


class QuoteCreate(BaseModel):
    """Input schema for POST /api/quotes.

    The service provider is the authenticated user.

    Attributes:
        projectId: Project being quoted.
        amount: Price, at most two decimal places.
        description: What the work covers.
        timeline: Free-text duration, e.g. "1 week".
        validUntil: Optional expiry of the offer.
    """
    projectId: PositiveInt
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    description: str = ""
    timeline: str = ""
    validUntil: Optional[datetime] = None
