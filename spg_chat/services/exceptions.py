"""Domain errors raised by the conversation and message services."""


class DuplicateRefCodeError(ValueError):
    """A conversation with this reference code already exists."""


class UnknownConversationError(ValueError):
    """No conversation with the given id."""


class ConversationClosedError(ValueError):
    """Customer message rejected because the conversation is closed."""
