"""Exceptions shared by the ingestion pipeline."""


class FinanceFlowError(Exception):
    """Base class for predictable pipeline failures."""


class TransientInfraError(FinanceFlowError):
    """The queue or key-value store could not be reached."""


class ExtractionError(FinanceFlowError):
    """The model call failed or its response could not be parsed."""

    def __init__(self, message: str, raw_output: str | None = None) -> None:
        super().__init__(message)
        self.raw_output = raw_output


class PersistenceError(FinanceFlowError):
    """A transaction record could not be inserted."""
