"""Quote submission with chat notifications."""
from .service import QuoteError, QuoteService, format_amount, format_quote_message

__all__ = ["QuoteError", "QuoteService", "format_amount", "format_quote_message"]
