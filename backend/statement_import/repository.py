"""
Record persistence used by the import pipeline.

The pipeline only needs two things from the transaction store: a window of
recent records for duplicate comparison and an unordered bulk upsert keyed
by content hash. ``JsonRecordRepository`` implements both in memory, with an
optional JSON file behind it.
"""

import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .exceptions import PersistenceError
from .models import (
    BulkUpsertResult,
    ExistingRecord,
    ImportPreset,
    ImportRule,
    UpsertFailure,
    UpsertOperation,
)
from .utils import load_json, save_json

logger = logging.getLogger(__name__)

REQUIRED_DOC_FIELDS = ("date", "amount", "kind")


class RecordRepository(Protocol):
    def find_recent(self, account_id: str, limit: int) -> List[ExistingRecord]:
        ...

    def bulk_upsert(
        self, account_id: str, operations: List[UpsertOperation]
    ) -> BulkUpsertResult:
        ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class JsonRecordRepository:
    """Thread-safe record store keyed by account and content hash."""

    FILE_NAME = "transactions.json"

    def __init__(self, data_dir: Optional[Path] = None):
        self.path = Path(data_dir) / self.FILE_NAME if data_dir else None
        self._lock = threading.Lock()
        self._records: Dict[str, Dict[str, Dict[str, Any]]] = (
            load_json(self.path, {}) if self.path else {}
        )

    def find_recent(self, account_id: str, limit: int) -> List[ExistingRecord]:
        """Most recent records for the account, newest transaction date first."""
        with self._lock:
            docs = list(self._records.get(account_id, {}).values())
        docs.sort(key=lambda d: (d["date"], d.get("updated_at", "")), reverse=True)
        return [
            ExistingRecord(
                date=doc["date"],
                amount=doc["amount"],
                kind=doc["kind"],
                note=doc.get("note"),
                description=doc.get("description"),
                content_hash=doc.get("content_hash"),
            )
            for doc in docs[:limit]
        ]

    def get(self, account_id: str, match_key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self._records.get(account_id, {}).get(match_key)
            return dict(doc) if doc else None

    def count(self, account_id: str) -> int:
        with self._lock:
            return len(self._records.get(account_id, {}))

    def bulk_upsert(
        self, account_id: str, operations: List[UpsertOperation]
    ) -> BulkUpsertResult:
        """
        Apply every operation independently.

        Insert-if-absent unless the operation asks to overwrite. A failing
        operation is reported in ``failures`` and does not stop the others.
        """
        result = BulkUpsertResult()
        with self._lock:
            store = self._records.setdefault(account_id, {})
            for op in operations:
                try:
                    outcome = self._apply(store, op)
                except PersistenceError as e:
                    logger.warning("Upsert failed for %s: %s", op.match_key, e.message)
                    result.failures.append(
                        UpsertFailure(match_key=op.match_key, message=e.message)
                    )
                    continue
                if outcome == "inserted":
                    result.inserted += 1
                elif outcome == "updated":
                    result.updated += 1
            self._flush()
        return result

    def _apply(self, store: Dict[str, Dict[str, Any]], op: UpsertOperation) -> Optional[str]:
        if not op.match_key:
            raise PersistenceError("Missing match key")
        missing = [f for f in REQUIRED_DOC_FIELDS if op.doc.get(f) in (None, "")]
        if missing:
            raise PersistenceError(f"Document missing field(s): {', '.join(missing)}")

        now = _now()
        existing = store.get(op.match_key)
        if existing is None:
            store[op.match_key] = {**op.doc, "created_at": now, "updated_at": now}
            return "inserted"
        if not op.overwrite:
            return None
        # Only a change to a stored field counts as an update
        if all(existing.get(key) == value for key, value in op.doc.items()):
            return None
        existing.update(op.doc)
        existing["updated_at"] = now
        return "updated"

    def _flush(self):
        if self.path:
            save_json(self.path, self._records)


class JsonPresetStore:
    """Saved column mappings keyed by account and header signature."""

    FILE_NAME = "import_presets.json"

    def __init__(self, data_dir: Optional[Path] = None):
        self.path = Path(data_dir) / self.FILE_NAME if data_dir else None
        self._lock = threading.Lock()
        self._presets: Dict[str, Dict[str, Dict[str, Any]]] = (
            load_json(self.path, {}) if self.path else {}
        )

    def get(self, account_id: str, signature: str) -> Optional[ImportPreset]:
        with self._lock:
            data = self._presets.get(account_id, {}).get(signature)
        return ImportPreset(**data) if data else None

    def save(self, account_id: str, preset: ImportPreset) -> Tuple[ImportPreset, bool]:
        """Create or replace the preset; returns it and whether it was new."""
        with self._lock:
            presets = self._presets.setdefault(account_id, {})
            created = preset.signature not in presets
            presets[preset.signature] = preset.model_dump(mode="json")
            if self.path:
                save_json(self.path, self._presets)
        return preset, created


class JsonRuleStore:
    """Per-account categorization rules, evaluated in ``order``."""

    FILE_NAME = "import_rules.json"

    def __init__(self, data_dir: Optional[Path] = None):
        self.path = Path(data_dir) / self.FILE_NAME if data_dir else None
        self._lock = threading.Lock()
        self._rules: Dict[str, List[Dict[str, Any]]] = (
            load_json(self.path, {}) if self.path else {}
        )

    def list_rules(self, account_id: str) -> List[ImportRule]:
        """All rules sorted by order; ties keep creation order."""
        with self._lock:
            data = list(self._rules.get(account_id, []))
        rules = [ImportRule(**item) for item in data]
        rules.sort(key=lambda rule: rule.order)
        return rules

    def enabled_rules(self, account_id: str) -> List[ImportRule]:
        return [rule for rule in self.list_rules(account_id) if rule.enabled]

    def save(self, account_id: str, rule: ImportRule) -> Tuple[ImportRule, bool]:
        """Replace the rule with the same id, or add it under a new id."""
        with self._lock:
            rules = self._rules.setdefault(account_id, [])
            index = next(
                (i for i, item in enumerate(rules) if rule.id and item.get("id") == rule.id),
                None,
            )
            if index is None:
                rule = rule.model_copy(update={"id": rule.id or uuid.uuid4().hex})
                rules.append(rule.model_dump(mode="json"))
            else:
                rules[index] = rule.model_dump(mode="json")
            self._flush()
        return rule, index is None

    def delete(self, account_id: str, rule_id: str) -> bool:
        with self._lock:
            rules = self._rules.get(account_id, [])
            kept = [item for item in rules if item.get("id") != rule_id]
            if len(kept) == len(rules):
                return False
            self._rules[account_id] = kept
            self._flush()
        return True

    def _flush(self):
        if self.path:
            save_json(self.path, self._rules)
