"""Error kinds raised or reported by live sessions."""

from typing import Optional


class LiveError(Exception):
    """Base class for live session errors."""


class TransportOpenFailed(LiveError):
    """The transport could not be opened."""


class SetupRejected(LiveError):
    """The server returned an error while the setup was being acknowledged."""


class ServerError(LiveError):
    """The server returned an error after the session became ready."""

    def __init__(self, message: str, code: Optional[int] = None, status: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.status = status


class InvalidCapabilities(LiveError):
    """A dependent feature was enabled while its prerequisite was not."""


class SendBeforeReady(LiveError):
    """Data was offered to a session that is not ready to transmit it."""

    def __init__(self, state: str):
        super().__init__(f"Session is not ready (state={state})")
        self.state = state
