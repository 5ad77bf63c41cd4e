"""Error taxonomy. Raised before a session is live, contained after."""

from __future__ import annotations


class LiveCardError(Exception):
    """Base for all livecard errors."""


class ConfigurationError(LiveCardError):
    """App credentials missing for an account."""


class AuthError(LiveCardError):
    """Tenant access token exchange was rejected."""


class RemoteAPIError(LiveCardError):
    """Card or message endpoint returned a non-success response."""

    def __init__(self, message: str, code: int | None = None, msg: str = "") -> None:
        super().__init__(message)
        self.code = code
        self.msg = msg


class TransientDeliveryError(LiveCardError):
    """A card mutation failed while the session was live. Never leaves the session."""
