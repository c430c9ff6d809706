"""
Query Executor - Bounded, tenant-scoped reads against the store.

The executor compiles a validated QueryIntent, runs the main query (and a count
query when paginating) concurrently, and assembles a QueryResult. Store
failures never propagate: they are logged and surface as an empty result.
"""

import asyncio
import time
from typing import Any, Optional, Union
from uuid import UUID

import structlog

from insightgate import metrics
from insightgate.analytics.compiler import Compiler, aggregate_alias
from insightgate.analytics.intents import AggregateFunction, QueryIntent
from insightgate.analytics.results import (
    AggregationResult,
    QueryMetadata,
    QueryResult,
    Row,
    calculate_pagination,
    empty_query_result,
    is_numeric,
)
from insightgate.analytics.validation import UUID_PATTERN
from insightgate.analytics.whitelist import strip_unsafe_chars
from insightgate.api.store import Store
from insightgate.config import settings
from insightgate.errors import (
    ColumnNotAccessible,
    ResourceNotAccessible,
    StoreExecutionError,
    TenantContextMalformed,
    TenantContextMissing,
)

logger = structlog.get_logger(__name__)

GROUP_KEY_SEPARATOR = "::"


def group_key(row: Row, columns: list[str]) -> str:
    return GROUP_KEY_SEPARATOR.join(str(row.get(c)) for c in columns)


def require_tenant(tenant_id: Optional[Union[str, UUID]]) -> str:
    """
    Normalize a tenant id or refuse to run unscoped.

    Raises:
        TenantContextMissing: If no tenant id is given
        TenantContextMalformed: If the tenant id is not a UUID
    """
    if tenant_id is None or tenant_id == "":
        raise TenantContextMissing("Tenant id is required to execute a query")
    tenant = str(tenant_id)
    if not UUID_PATTERN.match(tenant):
        raise TenantContextMalformed("Tenant id must be a valid UUID")
    return tenant


class QueryExecutor:
    """
    Runs validated query intents against a store.

    The caller is expected to have passed the intent through the validation
    pipeline for the same tenant; the resource, fields and aggregate functions
    are checked once more while compiling.
    """

    def __init__(self, store: Store, compiler: Optional[Compiler] = None):
        """
        Initialize the executor.

        Args:
            store: Store transport the compiled statements run against
            compiler: Optional compiler; defaults to one for the store's dialect
        """
        self.store = store
        self.compiler = compiler or Compiler(
            dialect=store.dialect,
            default_page_size=settings.instance().execution.default_page_size,
        )

    async def execute(
        self, intent: QueryIntent, tenant_id: Union[str, UUID]
    ) -> QueryResult:
        """
        Execute a query intent for one tenant.

        Args:
            intent: Validated QueryIntent
            tenant_id: Tenant whose rows may be returned

        Returns:
            QueryResult; empty when the store fails or the query is rejected

        Raises:
            TenantContextMissing: If tenant_id is absent
            TenantContextMalformed: If tenant_id is not a UUID
        """
        tenant = require_tenant(tenant_id)
        start = time.perf_counter()

        try:
            compiled = self.compiler.compile(intent, tenant)
            if not compiled.validated:
                raise StoreExecutionError(
                    "Generated statement failed verification: "
                    + "; ".join(compiled.ast_checks.errors)
                )

            main_start = time.perf_counter()
            if compiled.count_sql is not None:
                results = await asyncio.gather(
                    self._timed(intent.resource, compiled.sql, compiled.params),
                    self.store.fetch_all(compiled.count_sql, compiled.count_params),
                    return_exceptions=True,
                )
                if failed := [r for r in results if isinstance(r, BaseException)]:
                    raise failed[0]
                rows, count_rows = results
            else:
                rows = await self._timed(intent.resource, compiled.sql, compiled.params)
                count_rows = None
            execution_ms = (time.perf_counter() - main_start) * 1000
        except (StoreExecutionError, ResourceNotAccessible, ColumnNotAccessible) as e:
            elapsed = (time.perf_counter() - start) * 1000
            logger.error(
                "query_failed",
                resource=intent.resource,
                kind=str(e.kind),
                error=e.message,
            )
            metrics.store_error_counter().labels(resource=intent.resource).inc()
            return empty_query_result(execution_time_ms=elapsed)

        aggregations = self._aggregation_results(intent, rows)
        grouped = self._group(intent, rows)

        pagination = None
        if compiled.page is not None:
            if count_rows is not None:
                total = int((count_rows[0] if count_rows else {}).get("total") or 0)
            else:
                # aggregation without grouping is always a single row
                total = 1
            pagination = calculate_pagination(total, compiled.page, compiled.page_size)

        logger.info(
            "query_executed",
            resource=intent.resource,
            rows=len(rows),
            execution_ms=round(execution_ms, 2),
        )

        return QueryResult(
            data=rows,
            metadata=QueryMetadata(
                row_count=len(rows), execution_time_ms=execution_ms, cached=False
            ),
            aggregations=aggregations,
            grouped_by=grouped,
            pagination=pagination,
        )

    async def count(self, resource: str, tenant_id: Union[str, UUID]) -> int:
        """Number of rows the tenant can see in a resource, 0 on failure."""
        result = await self.execute(
            QueryIntent(
                resource=resource,
                aggregations=[{"field": _count_field(resource), "function": "count"}],
            ),
            tenant_id,
        )
        return int(result.aggregations[0].value) if result.aggregations else 0

    async def aggregate(
        self,
        resource: str,
        field: str,
        function: Union[AggregateFunction, str],
        tenant_id: Union[str, UUID],
    ) -> Optional[float]:
        """Single aggregate over a resource, None on failure or empty input."""
        result = await self.execute(
            QueryIntent(
                resource=resource,
                aggregations=[{"field": field, "function": str(function)}],
            ),
            tenant_id,
        )
        return result.aggregations[0].value if result.aggregations else None

    async def _timed(self, resource: str, sql: str, params: list[Any]) -> list[Row]:
        with metrics.query_histogram().labels(resource=resource).time():
            return await self.store.fetch_all(sql, params)

    def _aggregation_results(
        self, intent: QueryIntent, rows: list[Row]
    ) -> Optional[list[AggregationResult]]:
        # only an ungrouped aggregate has a single meaningful row
        if not intent.aggregations or intent.group_by or not rows:
            return None

        first = rows[0]
        results = []
        for agg in intent.aggregations:
            value = first.get(
                aggregate_alias(strip_unsafe_chars(agg.field), str(agg.function))
            )
            if is_numeric(value):
                results.append(
                    AggregationResult(
                        field=agg.field, function=str(agg.function), value=value
                    )
                )
        return results or None

    def _group(
        self, intent: QueryIntent, rows: list[Row]
    ) -> Optional[dict[str, list[Row]]]:
        if not intent.group_by or not rows:
            return None

        columns = [strip_unsafe_chars(g) for g in intent.group_by]
        grouped: dict[str, list[Row]] = {}
        for row in rows:
            grouped.setdefault(group_key(row, columns), []).append(row)
        return grouped


def _count_field(resource: str) -> str:
    # user_preferences is keyed by user, not by id
    return "user_id" if resource == "user_preferences" else "id"
