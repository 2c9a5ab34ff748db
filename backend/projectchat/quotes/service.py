"""Quote submission and its chat notification.

A quote is written to two places: the quotes table (source of truth) and the
project chat, as a ``quote`` message. The two writes are not one
transaction, so they are ordered:

    1. commit the quote record
    2. post the chat message (persist, then broadcast)
    3. link the message id back onto the quote

If step 2 fails the quote stays committed with ``chatMessageId`` unset, and
:meth:`QuoteService.announce_pending` (run at startup) posts it later. If only
step 3 fails, ``announce_pending`` finds the posted message and links it
instead of posting a second one. A chat message therefore never exists for a
quote that was not committed, and a quote is announced at most once.
"""
import logging
from decimal import Decimal
from datetime import datetime
from typing import List, Optional

from ..chat.errors import PersistenceFailure
from ..chat.hub import ChatHub
from ..storage import Message, MessageType, ProjectRef, Quote, QuoteStore

logger = logging.getLogger(__name__)

SERVICE_PROVIDER = "service_provider"


class QuoteError(Exception):
    """Base exception for quote submission errors."""
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def format_amount(amount: Decimal) -> str:
    """Render a price the way the marketplace shows it: ``$1,250`` or ``$1,250.50``."""
    amount = Decimal(amount).quantize(Decimal("0.01"))
    if amount == amount.to_integral_value():
        return f"${amount:,.0f}"
    return f"${amount:,.2f}"


def format_quote_message(quote: Quote) -> str:
    """Chat summary of a quote, e.g. ``New quote: $150 - Fix sink (Timeline: 1 week)``."""
    text = f"New quote: {format_amount(quote.amount)}"
    if quote.description:
        text += f" - {quote.description}"
    if quote.timeline:
        text += f" (Timeline: {quote.timeline})"
    return text


class QuoteService:
    """Creates quotes and mirrors them into the project chat."""

    def __init__(self, quotes: QuoteStore, hub: ChatHub) -> None:
        self._quotes = quotes
        self._hub = hub

    def list_by_project(self, project_id: int) -> List[Quote]:
        return self._quotes.list_by_project(project_id)

    async def submit(
        self,
        project_id: int,
        service_provider_id: int,
        amount: Decimal,
        description: str = "",
        timeline: str = "",
        valid_until: Optional[datetime] = None,
    ) -> Quote:
        """Commit a quote, then announce it in the project chat.

        Raises:
            QuoteError: 404 for unknown projects, 403 for non service providers.
        """
        project = self._hub.projects.get(project_id)
        if project is None:
            raise QuoteError("Project not found", status_code=404)
        provider = self._hub.users.get(service_provider_id)
        if provider is None or provider.userType != SERVICE_PROVIDER:
            raise QuoteError("Only service providers can create quotes", status_code=403)

        quote = self._quotes.create(
            project_id, service_provider_id, amount, description, timeline, valid_until
        )
        logger.info(
            "[Quotes] Quote %s committed: project=%s provider=%s amount=%s",
            quote.id, project_id, service_provider_id, quote.amount,
        )
        return await self.announce(quote, project)

    async def announce(self, quote: Quote, project: Optional[ProjectRef] = None) -> Quote:
        """Post the chat notification for a committed quote.

        Returns:
            The quote, with ``chatMessageId`` set if the notification was posted.
        """
        project = project or self._hub.projects.get(quote.projectId)
        if project is None:
            logger.warning("[Quotes] Project %s of quote %s no longer exists", quote.projectId, quote.id)
            return quote

        try:
            message = await self._hub.post_message(
                quote.projectId,
                quote.serviceProviderId,
                project.homeownerId,
                format_quote_message(quote),
                MessageType.QUOTE,
                {
                    "quoteId": quote.id,
                    "amount": str(quote.amount),
                    "description": quote.description,
                    "timeline": quote.timeline,
                },
            )
        except PersistenceFailure:
            logger.warning("[Quotes] Quote %s committed but its chat notification failed", quote.id)
            return quote

        return self._link(quote, message.id)

    def _link(self, quote: Quote, message_id: int) -> Quote:
        try:
            self._quotes.link_message(quote.id, message_id)
        except Exception:
            logger.exception("[Quotes] Could not link message %s to quote %s", message_id, quote.id)
        return quote.model_copy(update={"chatMessageId": message_id})

    async def _posted_message(self, quote: Quote) -> Optional[Message]:
        """The quote message already posted for *quote*, if any."""
        for message in await self._hub.messages.list_by_project(quote.projectId):
            if (
                message.messageType == MessageType.QUOTE
                and isinstance(message.attachments, dict)
                and message.attachments.get("quoteId") == quote.id
            ):
                return message
        return None

    async def announce_pending(self) -> int:
        """Post notifications for quotes committed without one.

        Quotes whose message was posted but never linked are linked, not
        re-posted.

        Returns:
            Number of quotes now linked to a chat message.
        """
        announced = 0
        for quote in self._quotes.list_unannounced():
            try:
                posted = await self._posted_message(quote)
            except Exception:
                logger.exception("[Quotes] Could not check chat history for quote %s", quote.id)
                continue
            if posted is not None:
                quote = self._link(quote, posted.id)
            else:
                quote = await self.announce(quote)
            if quote.chatMessageId is not None:
                announced += 1
        if announced:
            logger.info("[Quotes] Announced %d pending quote(s)", announced)
        return announced
