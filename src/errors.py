# src/errors.py
"""
Error taxonomy for the feedback analysis core.

Only the service boundary (extractor, transcription) and the persistence
boundary raise; normalization and sampling degrade by exclusion instead.
"""


class FeedbackInsightsError(Exception):
    """Base class for all analysis errors."""


class InsufficientDataError(FeedbackInsightsError):
    """Fewer normalizable feedback items than the analysis minimum."""

    def __init__(self, count: int, minimum: int):
        self.count = count
        self.minimum = minimum
        super().__init__(
            f"not enough feedback to analyze ({count} usable items, at least {minimum} required)"
        )


class ExtractionParseError(FeedbackInsightsError):
    """The service response could not be parsed against the requested contract."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class UpstreamServiceError(FeedbackInsightsError):
    """The text-understanding (or transcription) service call failed or timed out."""

    def __init__(self, detail: str = ""):
        self.detail = detail
        message = "analysis service unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class PersistenceError(FeedbackInsightsError):
    """Reading from or writing to the feedback store failed."""

    def __init__(self, detail: str = ""):
        self.detail = detail
        message = "result computed but not saved"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class RecordNotFoundError(FeedbackInsightsError):
    """A campaign or company lookup returned no row."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class TranscriptionError(FeedbackInsightsError):
    """A transcription job finished in an error state."""


class TranscriptionTimeoutError(TranscriptionError):
    """A transcription job did not reach a terminal state within the attempt ceiling."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Transcription timed out after {attempts} polling attempts")
