"""
Record store adapters - where the table's ingredient records come from.

Every operation returns a StoreResult. Failures (unknown id, invalid data,
storage errors after retries) come back as success=False with a message and
never as exceptions, so the table controller can keep showing the last
good data.

Implementations:
- LocalRecordStore: in-memory list, optionally seeded from a JSON file
- DatabaseRecordStore: SQLAlchemy table, with transient failures retried

Both evaluate ListOptions with the same filter engine and sort comparator
the table uses, so server-side and client-side results agree.
"""

import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..models.ingredient import Ingredient
from ..models.ingredient_record import IngredientRecord
from ..utils.config import DataSourceConfig
from ..utils.constants import INGREDIENT_STATUSES, INGREDIENT_TYPES, STATUS_INACTIVE
from ..utils.datetime_utils import utc_now_iso
from ..utils.validators import validate_ingredient_data
from .database import run_in_session
from .dto import ListOptions, StoreResult
from .exceptions import RecordNotFound, SerializationError, ServiceError, ValidationError
from .filter_service import DEFAULT_FILTER_DEFINITIONS, FilterDefinition, apply_filters
from .logging_utils import get_service_logger, log_operation
from .table_service import sort_records

logger = get_service_logger(__name__)

# Fields a caller may not set through create/update
_READ_ONLY_FIELDS = ("id", "updated_at")


def generate_record_id() -> str:
    return f"ingredient-{uuid.uuid4().hex[:12]}"


def _apply_changes(record: Ingredient, changes: Dict[str, Any]) -> Ingredient:
    allowed = {key: value for key, value in changes.items() if key not in _READ_ONLY_FIELDS}
    merged = replace(record, **allowed)
    if merged.allergens is not None:
        merged.allergens = list(merged.allergens)
    return merged


def _validate(data: Dict[str, Any], partial: bool = False) -> None:
    unknown = sorted(set(data) - set(Ingredient.__dataclass_fields__))
    errors = [f"Unknown field: {key}" for key in unknown]
    is_valid, field_errors = validate_ingredient_data(data, partial=partial)
    if not is_valid:
        errors.extend(field_errors)
    if errors:
        raise ValidationError(errors)


class RecordStore(ABC):
    """
    Abstract ingredient record store.

    Subclasses implement list/get/create/update/delete; toggle_favorite,
    duplicate, archive and get_filter_options are built on top of them.
    """

    definitions: Sequence[FilterDefinition] = DEFAULT_FILTER_DEFINITIONS

    def _guard(self, operation: str, fn: Callable[[], StoreResult], **context: Any) -> StoreResult:
        try:
            return fn()
        except (RecordNotFound, ValidationError) as e:
            log_operation(logger, operation, "failed", level=logging.WARNING, error=str(e), **context)
            return StoreResult.fail(str(e))
        except (ServiceError, SQLAlchemyError) as e:
            log_operation(logger, operation, "error", level=logging.ERROR, error=str(e), **context)
            return StoreResult.fail(str(e))

    def _select(self, records: Sequence[Ingredient], options: Optional[ListOptions]) -> StoreResult:
        """Filter, sort and paginate; total is the filtered count."""
        options = options or ListOptions()
        result = list(records)
        if options.filters:
            result = apply_filters(result, self.definitions, options.filters)
        total = len(result)
        if options.sort_by:
            result = sort_records(result, options.sort_by)
        if options.pagination is not None:
            start = options.pagination.offset()
            result = result[start:start + options.pagination.page_size]
        return StoreResult.ok([record.copy() for record in result], total=total)

    @abstractmethod
    def list(self, options: Optional[ListOptions] = None) -> StoreResult:
        """List records (data: List[Ingredient], total: filtered count)."""

    @abstractmethod
    def get(self, record_id: str) -> StoreResult:
        """Get one record (data: Ingredient)."""

    @abstractmethod
    def create(self, data: Dict[str, Any]) -> StoreResult:
        """Create a record from a field dictionary (data: Ingredient)."""

    @abstractmethod
    def update(self, record_id: str, changes: Dict[str, Any]) -> StoreResult:
        """Apply a partial update (data: Ingredient)."""

    @abstractmethod
    def delete(self, record_id: str) -> StoreResult:
        """Delete a record (data: None)."""

    def toggle_favorite(self, record_id: str) -> StoreResult:
        current = self.get(record_id)
        if not current.success:
            return current
        return self.update(record_id, {"favorite": not current.data.favorite})

    def duplicate(self, record_id: str) -> StoreResult:
        """Create a copy named "<name> (Copy)" with a new id."""
        current = self.get(record_id)
        if not current.success:
            return current
        data = current.data.to_dict()
        for key in _READ_ONLY_FIELDS:
            data.pop(key, None)
        data["name"] = f"{current.data.name} (Copy)"
        return self.create(data)

    def archive(self, record_id: str) -> StoreResult:
        """Soft delete: mark the record Inactive."""
        return self.update(record_id, {"status": STATUS_INACTIVE})

    def get_filter_options(self) -> StoreResult:
        """Distinct categories, families and suppliers plus the known statuses and types."""
        listed = self.list()
        if not listed.success:
            return listed
        records = listed.data
        return StoreResult.ok(
            {
                "categories": sorted({r.category for r in records if r.category}),
                "families": sorted({r.family for r in records if r.family}),
                "suppliers": sorted({r.supplier for r in records if r.supplier}),
                "statuses": sorted(set(INGREDIENT_STATUSES) | {r.status for r in records if r.status}),
                "types": sorted(set(INGREDIENT_TYPES) | {r.type for r in records if r.type}),
            }
        )


# ============================================================================
# In-memory store
# ============================================================================


class LocalRecordStore(RecordStore):
    """
    In-memory record store.

    Records are copied on the way in and out; callers never share objects
    with the store.
    """

    def __init__(self, records: Optional[Sequence[Ingredient]] = None):
        self._records: List[Ingredient] = [record.copy() for record in records or []]
        self._lock = threading.Lock()

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "LocalRecordStore":
        """
        Seed a store from a JSON file.

        The file holds a list of records, or an object with an
        "ingredients" list.

        Raises:
            SerializationError: If the file cannot be read or parsed
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SerializationError(f"Cannot read ingredient file {path}: {e}", e)

        if isinstance(data, dict):
            data = data.get("ingredients")
        if not isinstance(data, list):
            raise SerializationError(f"Ingredient file {path} must contain a list of ingredients")
        try:
            records = [Ingredient.from_dict(item) for item in data]
        except (KeyError, TypeError, AttributeError) as e:
            raise SerializationError(f"Invalid ingredient in {path}: {e}", e)

        logger.info(f"Loaded {len(records)} ingredients from {path}")
        return cls(records)

    def _index(self, record_id: str) -> int:
        for position, record in enumerate(self._records):
            if record.id == record_id:
                return position
        raise RecordNotFound(record_id)

    def list(self, options: Optional[ListOptions] = None) -> StoreResult:
        with self._lock:
            snapshot = list(self._records)
        return self._guard("list_records", lambda: self._select(snapshot, options))

    def get(self, record_id: str) -> StoreResult:
        def _impl() -> StoreResult:
            with self._lock:
                return StoreResult.ok(self._records[self._index(record_id)].copy())

        return self._guard("get_record", _impl, record_id=record_id)

    def create(self, data: Dict[str, Any]) -> StoreResult:
        def _impl() -> StoreResult:
            _validate(data)
            with self._lock:
                record_id = str(data.get("id") or generate_record_id())
                if any(record.id == record_id for record in self._records):
                    raise ValidationError([f"Ingredient with ID {record_id} already exists"])
                fields = {key: value for key, value in data.items() if key not in _READ_ONLY_FIELDS}
                record = Ingredient(id=record_id, updated_at=utc_now_iso(), **fields).copy()
                self._records.append(record)
            log_operation(logger, "create_record", "success", record_id=record_id)
            return StoreResult.ok(record.copy())

        return self._guard("create_record", _impl)

    def update(self, record_id: str, changes: Dict[str, Any]) -> StoreResult:
        def _impl() -> StoreResult:
            _validate(changes, partial=True)
            with self._lock:
                position = self._index(record_id)
                record = _apply_changes(self._records[position], changes)
                record.updated_at = utc_now_iso()
                self._records[position] = record
            return StoreResult.ok(record.copy())

        return self._guard("update_record", _impl, record_id=record_id)

    def delete(self, record_id: str) -> StoreResult:
        def _impl() -> StoreResult:
            with self._lock:
                del self._records[self._index(record_id)]
            log_operation(logger, "delete_record", "success", record_id=record_id)
            return StoreResult.ok()

        return self._guard("delete_record", _impl, record_id=record_id)


# ============================================================================
# Database store
# ============================================================================


class DatabaseRecordStore(RecordStore):
    """
    Record store backed by the ingredients table.

    Transient database errors are retried with exponential backoff
    (DataSourceConfig.retry_*) before the operation fails.
    """

    def __init__(self, session_factory: sessionmaker, data_source: Optional[DataSourceConfig] = None):
        self.session_factory = session_factory
        self.data_source = data_source or DataSourceConfig(type="database")

    def _run(self, work: Callable[[Session], Any]) -> Any:
        return run_in_session(
            self.session_factory,
            work,
            retry_attempts=self.data_source.retry_attempts,
            retry_delay=self.data_source.retry_delay,
            retry_max_delay=self.data_source.retry_max_delay,
        )

    def _get_row(self, session: Session, record_id: str) -> IngredientRecord:
        row = session.query(IngredientRecord).filter(IngredientRecord.ingredient_id == record_id).first()
        if row is None:
            raise RecordNotFound(record_id)
        return row

    def add_records(self, records: Sequence[Ingredient]) -> StoreResult:
        """Bulk insert records as given (ids and timestamps kept)."""

        def _impl(session: Session) -> int:
            for record in records:
                session.add(IngredientRecord.from_ingredient(record))
            return len(records)

        return self._guard("add_records", lambda: StoreResult.ok(self._run(_impl)))

    def list(self, options: Optional[ListOptions] = None) -> StoreResult:
        def _impl(session: Session) -> List[Ingredient]:
            rows = session.query(IngredientRecord).order_by(IngredientRecord.id).all()
            return [row.to_ingredient() for row in rows]

        return self._guard("list_records", lambda: self._select(self._run(_impl), options))

    def get(self, record_id: str) -> StoreResult:
        return self._guard(
            "get_record",
            lambda: StoreResult.ok(self._run(lambda s: self._get_row(s, record_id).to_ingredient())),
            record_id=record_id,
        )

    def create(self, data: Dict[str, Any]) -> StoreResult:
        def _impl(session: Session) -> Ingredient:
            record_id = str(data.get("id") or generate_record_id())
            exists = session.query(IngredientRecord).filter(IngredientRecord.ingredient_id == record_id).first()
            if exists is not None:
                raise ValidationError([f"Ingredient with ID {record_id} already exists"])
            fields = {key: value for key, value in data.items() if key not in _READ_ONLY_FIELDS}
            record = Ingredient(id=record_id, updated_at=utc_now_iso(), **fields)
            session.add(IngredientRecord.from_ingredient(record))
            return record

        def _create() -> StoreResult:
            _validate(data)
            record = self._run(_impl)
            log_operation(logger, "create_record", "success", record_id=record.id)
            return StoreResult.ok(record)

        return self._guard("create_record", _create)

    def update(self, record_id: str, changes: Dict[str, Any]) -> StoreResult:
        def _impl(session: Session) -> Ingredient:
            row = self._get_row(session, record_id)
            record = _apply_changes(row.to_ingredient(), changes)
            record.updated_at = utc_now_iso()
            row.apply_ingredient(record)
            return record

        def _update() -> StoreResult:
            _validate(changes, partial=True)
            return StoreResult.ok(self._run(_impl))

        return self._guard("update_record", _update, record_id=record_id)

    def delete(self, record_id: str) -> StoreResult:
        def _impl(session: Session) -> None:
            session.delete(self._get_row(session, record_id))

        def _delete() -> StoreResult:
            self._run(_impl)
            log_operation(logger, "delete_record", "success", record_id=record_id)
            return StoreResult.ok()

        return self._guard("delete_record", _delete, record_id=record_id)
