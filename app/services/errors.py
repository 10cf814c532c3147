"""Error taxonomy for reading, decoding and storing the vulnerability dataset."""


class IngestionError(Exception):
    """Base for failures that abort an ingestion run. Already committed batches are kept."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)


class SourceUnavailable(IngestionError):
    """
    No candidate source could be read, or a chunk could not be fetched.

    attempts holds (location, error) for every candidate tried, in order.
    """

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        attempts: list[tuple[str, Exception]] | None = None,
    ) -> None:
        super().__init__(message, cause)
        self.attempts = attempts or []


class PayloadError(IngestionError):
    """A payload was fetched but is not usable as dataset, manifest or chunk."""

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        location: str | None = None,
        attempts: list[tuple[str, Exception]] | None = None,
    ) -> None:
        super().__init__(message, cause)
        self.location = location
        self.attempts = attempts or []


class PointerFileError(PayloadError):
    """The payload is a large-file-storage pointer stub; the real binary was never transferred."""


class DecompressionError(PayloadError):
    """A payload declared as gzip could not be inflated."""


class DecodeError(PayloadError):
    """The payload is not valid JSON, or not a dataset/manifest/chunk shape."""


class DuplicateKeyCollision(IngestionError):
    """One batch carried the same record id twice (ids are ordinal-suffixed, so this indicates a bug)."""

    def __init__(self, message: str, record_id: str) -> None:
        super().__init__(message)
        self.record_id = record_id


def describe_attempts(attempts: list[tuple[str, Exception]]) -> str:
    """One line per attempt: 'location: ErrorType: message'."""
    return "; ".join(
        f"{location}: {type(err).__name__}: {getattr(err, 'message', None) or err}"
        for location, err in attempts
    )
