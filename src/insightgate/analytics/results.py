"""
Query Results - Value objects returned by the query executor.

A QueryResult is built fresh for every query and never mutated after it is
returned. Charting and summarization consume it read-only.
"""

import math
from datetime import date, datetime
from dataclasses import dataclass, field
from typing import Any, Optional

Row = dict[str, Any]


@dataclass(frozen=True)
class QueryMetadata:
    """Query execution metadata."""

    row_count: int = 0
    execution_time_ms: float = 0.0
    cached: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "rowCount": self.row_count,
            "executionTimeMs": self.execution_time_ms,
            "cached": self.cached,
        }


@dataclass(frozen=True)
class AggregationResult:
    field: str
    function: str
    value: float

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "function": self.function, "value": self.value}


@dataclass(frozen=True)
class Pagination:
    page: int
    page_size: int
    total_rows: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "pageSize": self.page_size,
            "totalRows": self.total_rows,
            "totalPages": self.total_pages,
            "hasNextPage": self.has_next_page,
            "hasPreviousPage": self.has_previous_page,
        }


@dataclass(frozen=True)
class QueryResult:
    """Rows plus execution metadata for one query."""

    data: list[Row] = field(default_factory=list)
    metadata: QueryMetadata = field(default_factory=QueryMetadata)
    aggregations: Optional[list[AggregationResult]] = None
    grouped_by: Optional[dict[str, list[Row]]] = None
    pagination: Optional[Pagination] = None

    @property
    def is_empty(self) -> bool:
        return not self.data

    def to_dict(self) -> dict[str, Any]:
        d = {"data": self.data, "metadata": self.metadata.to_dict()}
        if self.aggregations is not None:
            d["aggregations"] = [a.to_dict() for a in self.aggregations]
        if self.grouped_by is not None:
            d["groupedBy"] = self.grouped_by
        if self.pagination is not None:
            d["pagination"] = self.pagination.to_dict()
        return d


def calculate_pagination(total_rows: int, page: int, page_size: int) -> Pagination:
    """
    Derive pagination flags from a row count.

    Args:
        total_rows: Rows matching the query across all pages
        page: 1-based page number
        page_size: Rows per page

    Returns:
        Pagination where has_next_page holds iff page < total_pages
    """
    total_pages = math.ceil(total_rows / page_size) if page_size > 0 else 0
    return Pagination(
        page=page,
        page_size=page_size,
        total_rows=total_rows,
        total_pages=total_pages,
        has_next_page=page < total_pages,
        has_previous_page=page > 1,
    )


def empty_query_result(execution_time_ms: float = 0.0) -> QueryResult:
    return QueryResult(
        data=[],
        metadata=QueryMetadata(
            row_count=0, execution_time_ms=execution_time_ms, cached=False
        ),
    )


def merge_query_results(first: QueryResult, second: QueryResult) -> QueryResult:
    """Concatenate two results; grouping and pagination do not survive a merge."""
    data = [*first.data, *second.data]
    aggregations = [*(first.aggregations or []), *(second.aggregations or [])]
    return QueryResult(
        data=data,
        metadata=QueryMetadata(
            row_count=len(data),
            execution_time_ms=first.metadata.execution_time_ms
            + second.metadata.execution_time_ms,
            cached=first.metadata.cached and second.metadata.cached,
        ),
        aggregations=aggregations or None,
    )


def is_numeric(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_date(value: Any) -> Optional[datetime]:
    """ISO date or datetime as a naive datetime, None when it is not one."""
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or len(value) < 8:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(
            tzinfo=None
        )
    except ValueError:
        return None


def field_names(rows: list[Row]) -> list[str]:
    """Keys of the first row, in order."""
    return list(rows[0].keys()) if rows else []


def numeric_fields(rows: list[Row]) -> list[str]:
    """Fields whose value is a number or null in every row."""
    return [
        f
        for f in field_names(rows)
        if all(is_numeric(r.get(f)) or r.get(f) is None for r in rows)
        and any(is_numeric(r.get(f)) for r in rows)
    ]


def date_fields(rows: list[Row]) -> list[str]:
    """Fields whose non-null values all parse as dates."""
    found = []
    for f in field_names(rows):
        values = [r.get(f) for r in rows if r.get(f) is not None]
        if values and all(parse_date(v) is not None for v in values):
            found.append(f)
    return found


def categorical_fields(rows: list[Row], max_distinct: int = 10) -> list[str]:
    """Fields with at most `max_distinct` distinct values, compared as strings."""
    found = []
    for f in field_names(rows):
        values = [r.get(f) for r in rows if r.get(f) is not None]
        if values and len({str(v) for v in values}) <= max_distinct:
            found.append(f)
    return found


def numeric_values(rows: list[Row], field_name: str) -> list[float]:
    return [r[field_name] for r in rows if is_numeric(r.get(field_name))]
