"""Error types shared across the call pipeline."""


class SessionMissingError(Exception):
    """Raised when an event arrives for a call that has no live session."""

    def __init__(self, call_id: str):
        super().__init__(f"No active session for call {call_id}")
        self.call_id = call_id


class SessionAlreadyExistsError(Exception):
    """Raised when the transport starts the same call twice."""

    def __init__(self, call_id: str):
        super().__init__(f"Session already exists for call {call_id}")
        self.call_id = call_id


class UpstreamUnavailableError(Exception):
    """Raised when the reasoning engine, STT, TTS or a store call fails."""

    def __init__(self, service: str, message: str):
        super().__init__(f"{service} unavailable: {message}")
        self.service = service


class ValidationFailedError(Exception):
    """Raised when action arguments or booking details fail validation."""
