"""Error taxonomy for the ingestion pipeline.

Each error carries the pipeline ``stage`` it was raised in and a short machine
``reason`` code that ends up in the webhook acknowledgement and in the logs.
"""


class IngestError(Exception):
    def __init__(self, reason: str, *, stage: str, message: str | None = None):
        self.reason = reason
        self.stage = stage
        self.message = message or reason
        super().__init__(self.message)


class PayloadValidationError(IngestError):
    """Unresolvable sender or empty delivery: acknowledged and ignored, never retried."""


class TransientIOError(IngestError):
    """Media fetch/upload or provider call failed: logged, the pipeline degrades and continues."""


class StorageConflictError(IngestError):
    """A unique constraint could not be resolved by re-reading the winning row."""


class FatalConfigError(IngestError):
    """The delivery cannot be attributed to a tenant: abort with an error response."""
