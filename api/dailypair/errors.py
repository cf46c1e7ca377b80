from typing import Any


class EngineError(Exception):
    """Base class for typed failures surfaced to callers of the pairing engine."""

    code = "engine_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.context}


class PairingNotFound(EngineError):
    code = "pairing_not_found"


class ParticipantNotFound(EngineError):
    code = "participant_not_found"


class NotAParticipant(EngineError):
    code = "not_a_participant"


class AlreadyTerminal(EngineError):
    code = "already_terminal"


class InvalidInput(EngineError):
    code = "invalid_input"


class NoReplacementAvailable(EngineError):
    code = "no_replacement_available"


class ConcurrentModification(EngineError):
    """Raised only once the transaction retries are exhausted."""

    code = "concurrent_modification"


class MalformedRecord(EngineError):
    code = "malformed_record"


class PartialBatchFailure(EngineError):
    """Some reaper batches failed after others committed. Safe to re-run."""

    code = "partial_batch_failure"

    def __init__(self, message: str, summary: Any = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.summary = summary
