from typing import Optional


class PosAgentError(Exception):
    """Base class for errors raised by the agent core."""


class StorageUnavailable(PosAgentError):
    """The local durable store cannot be opened or used."""


class NetworkError(PosAgentError):
    """The upstream API could not be reached (DNS, refused, timeout)."""


class RemoteRejected(PosAgentError):
    """The upstream API answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str = "", reason: str = ""):
        self.status_code = int(status_code)
        self.body = (body or "")[:1000]
        self.reason = reason or ""
        msg = f"http {self.status_code} {self.reason}".strip()
        if self.body:
            msg = f"{msg}: {self.body}"
        super().__init__(msg)


class ValidationError(PosAgentError):
    """A user action was rejected before touching the queue (e.g. holding an empty cart)."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)


class NotFound(PosAgentError):
    """A locally addressed record (held sale, cart line, transaction) does not exist."""
