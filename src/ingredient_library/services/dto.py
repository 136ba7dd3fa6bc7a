"""Data Transfer Objects for the service layer.

This module provides the small value types shared across the engine:
- StoreResult: the success/error envelope returned by every store operation
- ListOptions: filtering, sorting and pagination passed to RecordStore.list()
- Pagination, SortSpec, ColumnConfig: pieces of the view state that are also
  persisted in saved views and preferences

All value types here are immutable; "changing" one means building a new one
with dataclasses.replace().
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, Tuple, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    """Result envelope for store and persistence operations.

    Failures never raise across the store boundary; they come back with
    success=False and a descriptive error message.

    Attributes:
        success: Whether the operation succeeded
        data: Payload on success
        error: Error message on failure
        total: For list operations, the filtered count before pagination

    Examples:
        >>> StoreResult.ok([1, 2], total=10).total
        10
        >>> StoreResult.fail("View not found").success
        False
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    total: Optional[int] = None

    @classmethod
    def ok(cls, data: Optional[T] = None, total: Optional[int] = None) -> "StoreResult[T]":
        return cls(success=True, data=data, total=total)

    @classmethod
    def fail(cls, error: str) -> "StoreResult[T]":
        return cls(success=False, error=error)


@dataclass(frozen=True)
class Pagination:
    """Zero-based page position.

    Attributes:
        page_index: Page number (0-indexed)
        page_size: Rows per page (must be > 0)

    Raises:
        ValueError: If page_index < 0 or page_size < 1
    """

    page_index: int = 0
    page_size: int = 25

    def __post_init__(self) -> None:
        if self.page_index < 0:
            raise ValueError("page_index must be >= 0")
        if self.page_size < 1:
            raise ValueError("page_size must be >= 1")

    def offset(self) -> int:
        """
        Index of the first row on this page.

        Examples:
            >>> Pagination(page_index=2, page_size=25).offset()
            50
        """
        return self.page_index * self.page_size

    def to_dict(self) -> Dict[str, int]:
        return {"page_index": self.page_index, "page_size": self.page_size}


def page_count(total: int, page_size: int) -> int:
    """
    Number of pages needed for total rows (minimum 1, even for empty results).

    Examples:
        >>> page_count(0, 25)
        1
        >>> page_count(51, 25)
        3
    """
    if total <= 0:
        return 1
    return (total + page_size - 1) // page_size


@dataclass(frozen=True)
class SortSpec:
    """Sort on one column."""

    id: str
    desc: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "desc": self.desc}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SortSpec":
        return cls(id=str(data["id"]), desc=bool(data.get("desc", False)))


@dataclass(frozen=True)
class ColumnConfig:
    """Visibility, width and position of one table column."""

    key: str
    visible: bool = True
    order: int = 0
    width: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "visible": self.visible, "order": self.order, "width": self.width}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ColumnConfig":
        width = data.get("width")
        return cls(
            key=str(data["key"]),
            visible=bool(data.get("visible", True)),
            order=int(data.get("order", 0)),
            width=int(width) if width is not None else None,
        )


@dataclass(frozen=True)
class ListOptions:
    """Options for RecordStore.list().

    Attributes:
        filters: Filters state (filter key -> value); None means unfiltered
        sort_by: Sort specifications, highest priority first
        pagination: Page to return; None returns every matching record
    """

    filters: Optional[Dict[str, Any]] = None
    sort_by: Tuple[SortSpec, ...] = field(default_factory=tuple)
    pagination: Optional[Pagination] = None

