"""Exception hierarchy shared by the chat core, stores and routers."""
from typing import Optional


class CourierError(Exception):
    """Common superclass for all Courier exceptions.

    Attributes:
        code: Short machine-readable code sent to clients in error frames.
    """
    code = "internal_error"


class PersistenceError(CourierError):
    """A message store append or query failed."""
    code = "persistence_error"


class MalformedEvent(CourierError):
    """An inbound event is not valid JSON, has an unknown type,
    or is missing a required field."""
    code = "malformed_event"

    def __init__(self, detail: str, event_type: Optional[str] = None) -> None:
        super().__init__(detail)
        self.event_type = event_type


class SenderMismatch(CourierError):
    """A connection tried to send as an identity it has not joined."""
    code = "sender_mismatch"


# == Auth errors ==

class AuthError(CourierError):
    """Common superclass for signup/login failures."""
    code = "auth_error"


class UserAlreadyExists(AuthError):
    code = "user_exists"


class UserNotFound(AuthError):
    code = "user_not_found"


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
