"""
Import coordination: column discovery, preview and commit.

A call moves through decode -> mapping check -> row validation, then either
returns a capped preview or writes every candidate with an idempotent upsert.
Structural problems raise before any row is read; row problems are collected
into the result and never stop the batch.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import Settings
from .decoder import DecodedTable, decode, decode_headers, detect_file_kind
from .duplicates import DuplicateDetector, candidate_hash
from .exceptions import (
    EmptyFile,
    FileTooLarge,
    ImportPipelineError,
    MissingColumnMapping,
    QueueUnavailable,
    RowError,
    TooManyRows,
)
from .jobs import ImportJobQueue
from .langfuse_tracer import LangfuseTracer, TraceHandle
from .models import (
    BulkUpsertResult,
    ColumnMapping,
    ColumnsResponse,
    CommitSummary,
    ImportCandidate,
    ImportErrorEntry,
    ImportPreset,
    ImportResult,
    ImportRule,
    PreviewResult,
    SignConvention,
    TransactionKind,
    UpsertOperation,
)
from .repository import JsonPresetStore, JsonRuleStore, RecordRepository
from .row_normalizer import RowNormalizer
from .rules import apply_rules
from .schema_sniffer import column_signature, suggest

logger = logging.getLogger(__name__)

SAMPLE_ROWS = 10
REQUIRED_FIELDS = ("date", "description", "amount")
OPTIONAL_FIELDS = ("type", "category", "note")


@dataclass
class UploadedFile:
    filename: Optional[str]
    content: bytes
    content_type: Optional[str] = None
    sheet_name: Optional[str] = None


def to_document(account_id: str, candidate: ImportCandidate) -> Dict[str, Any]:
    """Repository document for a hashed candidate."""
    return {
        "account_id": account_id,
        "kind": candidate.kind.value,
        "amount": candidate.amount,
        "amount_cents": int(round(candidate.amount * 100)),
        "category": candidate.category,
        "description": candidate.description,
        "note": candidate.note or candidate.description,
        "tags": candidate.tags,
        "date": candidate.date.isoformat(),
        "content_hash": candidate.content_hash,
    }


def validate_mapping(mapping: ColumnMapping, headers: List[str]):
    """Reject mappings whose required columns are blank or absent from the file."""
    blank = [f"{name}_column" for name in REQUIRED_FIELDS if not getattr(mapping, name).strip()]
    if blank:
        raise MissingColumnMapping(f"Missing required column(s): {', '.join(blank)}")

    absent = [
        getattr(mapping, name) for name in REQUIRED_FIELDS if getattr(mapping, name) not in headers
    ]
    if absent:
        raise MissingColumnMapping(
            f"Column(s) not found in file headers: {', '.join(absent)}"
        )

    for name in OPTIONAL_FIELDS:
        column = getattr(mapping, name)
        if column and column not in headers:
            logger.warning("Optional %s column %r not in headers, ignoring", name, column)


class ImportCoordinator:
    """
    Runs the import pipeline for one account at a time.

    Collaborators are passed in: the record repository, optional preset and
    rule stores, an optional tracer and an optional job queue for background
    commits.
    """

    def __init__(
        self,
        repository: RecordRepository,
        settings: Optional[Settings] = None,
        tracer: Optional[LangfuseTracer] = None,
        job_queue: Optional[ImportJobQueue] = None,
        presets: Optional[JsonPresetStore] = None,
        rules: Optional[JsonRuleStore] = None,
    ):
        self.repository = repository
        self.settings = settings or Settings()
        self.tracer = tracer
        self.job_queue = job_queue
        self.presets = presets or JsonPresetStore()
        self.rules = rules or JsonRuleStore()

    # --- tracing helpers ---

    @contextmanager
    def _traced(self, operation: str, account_id: str, upload: UploadedFile):
        """Yield a stage recorder; the trace is closed, with any raised error, on exit."""
        trace: Optional[TraceHandle] = None
        if self.tracer:
            trace = self.tracer.start_import(
                operation, account_id, metadata={"filename": upload.filename}
            )

        def stage(name: str, **counts):
            if self.tracer:
                self.tracer.record_stage(trace, name, **counts)

        error: Optional[str] = None
        try:
            yield stage
        except Exception as e:
            error = e.message if isinstance(e, ImportPipelineError) else str(e)
            raise
        finally:
            if self.tracer:
                self.tracer.finish_import(trace, error=error)

    # --- pipeline stages ---

    def _check_size(self, upload: UploadedFile):
        if len(upload.content) > self.settings.max_file_bytes:
            raise FileTooLarge(
                f"File is {len(upload.content)} bytes; the limit is "
                f"{self.settings.max_file_bytes} bytes"
            )
        if not upload.content:
            raise EmptyFile("File is empty")

    def open_table(self, upload: UploadedFile) -> DecodedTable:
        """Size check, kind detection and decode; fails before any row is normalized."""
        self._check_size(upload)
        kind = detect_file_kind(upload.filename, upload.content_type)
        table = decode(upload.content, kind, upload.sheet_name)
        logger.info(
            "Decoded %s upload %r with %d columns", kind.value, upload.filename, len(table.headers)
        )
        return table

    def parse(
        self,
        table: DecodedTable,
        mapping: ColumnMapping,
        sign_convention: Optional[SignConvention] = None,
        rules: Optional[List[ImportRule]] = None,
    ) -> ImportResult:
        """
        Normalize every row of the table and apply the account rules.

        Row failures become ImportErrorEntry items; the loop always runs to
        the end of the file so totals and errors cover all rows. ``rules``
        must be enabled rules in evaluation order.
        """
        normalizer = RowNormalizer(mapping, sign_convention or self.settings.sign_convention)
        candidates: List[ImportCandidate] = []
        errors: List[ImportErrorEntry] = []
        total_rows = 0

        for row in table.rows():
            total_rows += 1
            if total_rows > self.settings.max_rows:
                raise TooManyRows(f"File has more than {self.settings.max_rows} data rows")
            try:
                candidate = normalizer.normalize(row)
            except RowError as e:
                errors.append(
                    ImportErrorEntry(
                        row=row.line, field=e.field, message=e.message, raw_data=row.to_dict()
                    )
                )
                continue
            # Discover lists card payments as credits
            if normalizer.discover and candidate.kind == TransactionKind.INCOME:
                continue
            if rules:
                apply_rules(candidate, rules)
            candidates.append(candidate)

        return ImportResult(
            total_rows=total_rows,
            valid_rows=len(candidates),
            candidates=candidates,
            errors=errors,
        )

    def _detector(self, account_id: str) -> DuplicateDetector:
        window = self.repository.find_recent(account_id, self.settings.duplicate_window)
        return DuplicateDetector(account_id, window)

    def _preview_limit(self, requested: Optional[int]) -> int:
        limit = requested if requested is not None else self.settings.preview_rows
        return max(1, min(limit, self.settings.max_preview_rows))

    # --- public operations ---

    def columns(self, account_id: str, upload: UploadedFile) -> ColumnsResponse:
        """Headers, sheet names, a suggested mapping and a small row sample."""
        self._check_size(upload)
        kind = detect_file_kind(upload.filename, upload.content_type)
        table = decode_headers(upload.content, kind, upload.sheet_name)
        signature = column_signature(table.headers)
        preset = self.presets.get(account_id, signature)
        return ColumnsResponse(
            headers=table.headers,
            sheets=table.sheets,
            sample_rows=[row.to_dict() for row in table.rows(limit=SAMPLE_ROWS)],
            suggested_mapping=suggest(table.headers),
            signature=signature,
            preset=preset,
        )

    def save_preset(self, account_id: str, preset: ImportPreset):
        return self.presets.save(account_id, preset)

    def preview(
        self,
        account_id: str,
        upload: UploadedFile,
        mapping: ColumnMapping,
        preview_rows: Optional[int] = None,
        sign_convention: Optional[SignConvention] = None,
    ) -> PreviewResult:
        """
        Validate the whole file without writing anything.

        Only the candidate list is capped; total_rows and errors always
        describe the full file.
        """
        with self._traced("import_preview", account_id, upload) as stage:
            table = self.open_table(upload)
            validate_mapping(mapping, table.headers)
            stage("decode", kind=table.kind.value, headers=table.headers)

            result = self.parse(
                table, mapping, sign_convention, self.rules.enabled_rules(account_id)
            )
            stage("normalize", total_rows=result.total_rows, errors=len(result.errors))

            for candidate in result.candidates:
                candidate.content_hash = candidate_hash(account_id, candidate)
            duplicates = self._detector(account_id).find_duplicates(result.candidates)
            stage("duplicates", duplicates=len(duplicates))

        limit = self._preview_limit(preview_rows)
        logger.info(
            "Preview for %s: total_rows=%d valid=%d errors=%d duplicates=%d",
            account_id,
            result.total_rows,
            result.valid_rows,
            len(result.errors),
            len(duplicates),
        )
        return PreviewResult(
            total_rows=result.total_rows,
            valid_rows=result.valid_rows,
            errors=result.errors,
            preview=result.candidates[:limit],
            duplicates=duplicates,
        )

    def commit(
        self,
        account_id: str,
        upload: UploadedFile,
        mapping: ColumnMapping,
        skip_duplicates: bool = True,
        overwrite_duplicates: bool = False,
        sign_convention: Optional[SignConvention] = None,
    ) -> CommitSummary:
        """
        Re-run the full pipeline and upsert every candidate by content hash.

        Without ``overwrite_duplicates`` each upsert only inserts when the
        hash is new, so committing the same file twice writes nothing the
        second time. With ``skip_duplicates`` fuzzy matches against the
        recent window are also left out.
        """
        with self._traced("import_commit", account_id, upload) as stage:
            table = self.open_table(upload)
            validate_mapping(mapping, table.headers)
            stage("decode", kind=table.kind.value, headers=table.headers)

            result = self.parse(
                table, mapping, sign_convention, self.rules.enabled_rules(account_id)
            )
            stage("normalize", total_rows=result.total_rows, errors=len(result.errors))

            candidates = result.candidates
            for candidate in candidates:
                candidate.content_hash = candidate_hash(account_id, candidate)

            to_write = candidates
            if skip_duplicates and not overwrite_duplicates:
                detector = self._detector(account_id)
                to_write = [c for c in candidates if not detector.is_duplicate(c)]
            skipped = len(candidates) - len(to_write)

            operations = [
                UpsertOperation(
                    match_key=c.content_hash,
                    doc=to_document(account_id, c),
                    overwrite=overwrite_duplicates,
                )
                for c in to_write
            ]
            outcome = (
                self.repository.bulk_upsert(account_id, operations)
                if operations
                else BulkUpsertResult()
            )
            unchanged = len(operations) - outcome.inserted - outcome.updated - len(outcome.failures)
            stage(
                "upsert",
                inserted=outcome.inserted,
                updated=outcome.updated,
                failed=len(outcome.failures),
            )

        summary = CommitSummary(
            total_rows=result.total_rows,
            total_processed=len(candidates),
            inserted=outcome.inserted,
            updated=outcome.updated,
            duplicates_skipped=skipped + unchanged,
            failed=len(outcome.failures),
            failures=outcome.failures,
            errors=result.errors,
        )
        logger.info(
            "Commit for %s: processed=%d inserted=%d updated=%d skipped=%d failed=%d",
            account_id,
            summary.total_processed,
            summary.inserted,
            summary.updated,
            summary.duplicates_skipped,
            summary.failed,
        )
        return summary

    def submit_commit(
        self,
        account_id: str,
        upload: UploadedFile,
        mapping: ColumnMapping,
        skip_duplicates: bool = True,
        overwrite_duplicates: bool = False,
        sign_convention: Optional[SignConvention] = None,
    ) -> str:
        """Run ``commit`` on the job queue and return the job id."""
        if self.job_queue is None:
            raise QueueUnavailable("Background imports are not configured")
        # Structural problems are reported now rather than as a failed job
        table = self.open_table(upload)
        validate_mapping(mapping, table.headers)
        return self.job_queue.submit(
            lambda: self.commit(
                account_id,
                upload,
                mapping,
                skip_duplicates=skip_duplicates,
                overwrite_duplicates=overwrite_duplicates,
                sign_convention=sign_convention,
            ),
            owner=account_id,
        )
