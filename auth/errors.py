"""
auth/errors.py -- Exceptions raised by the identity store adapter.

NotFoundError and DuplicateUsernameError are business outcomes: routes turn
them into distinct user-facing messages. ProviderError wraps infrastructure
failures (database down, driver errors) and always surfaces as a generic
server error.
"""


class AuthError(Exception):
    """Base class for auth-layer errors."""


class NotFoundError(AuthError):
    def __init__(self, username: str) -> None:
        super().__init__(f"No user named {username!r}")
        self.username = username


class DuplicateUsernameError(AuthError):
    def __init__(self, username: str) -> None:
        super().__init__(f"Username {username!r} is already taken")
        self.username = username


class ProviderError(AuthError):
    """The resource store or identity provider itself failed."""
