"""Error taxonomy raised by the conversation pipeline."""
from __future__ import annotations


class ChatError(Exception):
    """Base class for conversation pipeline errors."""


class ConversationNotFound(ChatError):
    """The conversation does not exist or belongs to another identity."""

    def __init__(self, conversation_id: object) -> None:
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


class ChatValidationError(ChatError):
    """Caller supplied text or a title the pipeline refuses to store."""


class StoreFailure(ChatError):
    """A persistence operation failed; the request cannot continue."""

    def __init__(self, operation: str, table: str) -> None:
        super().__init__(f"{operation} on {table} failed")
        self.operation = operation
        self.table = table
