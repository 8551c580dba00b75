"""
Chat client error taxonomy.

Everything below ChatError is caught at the ChatView boundary and turned
into a notice or an in-list delivery flag; none of it reaches the caller.
"""


class ChatError(Exception):
    """Base class for chat client failures."""

    title = "Error"


class ChatBackendError(ChatError):
    """Transport failure talking to the chat backend."""


class RefCodeConflictError(ChatBackendError):
    """The backend already holds a conversation with this reference code."""


class ClosedConversationError(ChatBackendError):
    """The backend rejected a customer write into a closed conversation."""


class CreateFailedError(ChatError):
    """Starting a new conversation failed. Retrying mints a new code."""


class ConversationNotFoundError(ChatError):
    """Resume by reference code found no conversation."""

    title = "Not Found"


class SendFailedError(ChatError):
    """Message submission failed after the optimistic insert."""


class AttachFailedError(ChatError):
    """Media upload failed; no message was created."""


class FetchFailedError(ChatError):
    """A poll or subscription attempt failed. Transient."""


class ChatPermissionError(ChatError):
    """Operation reserved for staff."""
