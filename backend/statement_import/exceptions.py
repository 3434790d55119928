"""
Error taxonomy for the statement import pipeline.

Structural errors fail a whole call before any row is read. Row errors are
collected per row by the coordinator and never abort a batch. Persistence
errors are reported per upsert item in the commit summary.
"""


class ImportPipelineError(Exception):
    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class StructuralError(ImportPipelineError):
    """The file or the request cannot be processed at all."""


class UnsupportedFormat(StructuralError):
    """File kind is neither CSV nor a spreadsheet."""


class SheetNotFound(StructuralError):
    """A sheet name was requested that the workbook does not contain."""


class EmptyFile(StructuralError):
    """Fewer than a header row plus one data row."""


class MalformedFile(StructuralError):
    """Bytes could not be decoded as the declared file kind."""


class MissingColumnMapping(StructuralError):
    """A required mapping field is empty or not among the decoded headers."""


class FileTooLarge(StructuralError):
    """Upload exceeds the configured byte limit."""


class TooManyRows(StructuralError):
    """Upload exceeds the configured data-row limit."""


class RowError(ImportPipelineError):
    """A single row failed validation on one field."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(message)


class PersistenceError(ImportPipelineError):
    """One upsert item could not be written."""


class JobNotFound(ImportPipelineError):
    """No background import job with the given id."""


class QueueUnavailable(ImportPipelineError):
    """Background commit requested but no job queue is configured."""
