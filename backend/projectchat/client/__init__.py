"""Python client for the project chat socket protocol."""
from .client import ChatClientError, ProjectChatClient
from .state import ChatState, PendingSend, reduce

__all__ = ["ChatClientError", "ProjectChatClient", "ChatState", "PendingSend", "reduce"]
