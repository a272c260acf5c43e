"""Exception types shared across the chat core."""


class BackendError(RuntimeError):
    """A remote (or local stand-in) backend call failed."""


class ChatPermissionError(Exception):
    """The current user is not allowed to perform a chat action."""
