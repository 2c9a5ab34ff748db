"""Protocol error taxonomy.

Every error carries a machine-readable ``code`` that is sent back to the
offending connection inside an ``error`` frame. Errors are never broadcast.
"""
from typing import Optional

# ── Error codes (machine-readable, included in error frames) ──────────

ERR_UNAUTHENTICATED = "UNAUTHENTICATED"
ERR_NOT_IN_ROOM = "NOT_IN_ROOM"
ERR_VALIDATION = "VALIDATION_ERROR"
ERR_PERSISTENCE = "PERSISTENCE_FAILURE"
ERR_ALREADY_AUTHENTICATED = "ALREADY_AUTHENTICATED"


class ChatError(Exception):
    """Base exception for chat protocol errors."""
    def __init__(self, message: str, code: str):
        self.message = message
        self.code = code
        super().__init__(message)

    def to_frame(self, frame_type: Optional[str] = None) -> dict:
        """Error frame; *frame_type* names the inbound frame that failed, when known."""
        frame = {"type": "error", "code": self.code, "message": self.message}
        if frame_type is not None:
            frame["frameType"] = frame_type
        return frame


class Unauthenticated(ChatError):
    """Raised when a frame needs a bound user id and none is present."""
    def __init__(self, message: str = "Authenticate before sending this frame"):
        super().__init__(message, ERR_UNAUTHENTICATED)


class NotInRoom(ChatError):
    """Raised when a frame needs membership of a project room."""
    def __init__(self, project_id: int):
        self.project_id = project_id
        super().__init__(f"Not joined to project {project_id}", ERR_NOT_IN_ROOM)


class FrameValidationError(ChatError):
    """Raised for malformed frames and invalid field values."""
    def __init__(self, message: str):
        super().__init__(message, ERR_VALIDATION)


class PersistenceFailure(ChatError):
    """Raised when a store call was rejected or threw."""
    def __init__(self, message: str = "Could not save, please retry"):
        super().__init__(message, ERR_PERSISTENCE)


class AlreadyAuthenticated(ChatError):
    """Raised when a live socket tries to switch to another user id."""
    def __init__(self, message: str = "Connection is already authenticated as another user"):
        super().__init__(message, ERR_ALREADY_AUTHENTICATED)


class MessageNotFound(FrameValidationError):
    """Raised when a message id is unknown or belongs to another project."""
    def __init__(self, message_id: int, project_id: Optional[int] = None):
        self.message_id = message_id
        if project_id is None:
            super().__init__(f"Unknown message {message_id}")
        else:
            super().__init__(f"Unknown message {message_id} in project {project_id}")
