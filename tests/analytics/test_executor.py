#
#  Copyright (C) 2017-2025 Dremio Corporation
#
#  Licensed under the Apache License, Version 2.0 (the "License");
#  you may not use this file except in compliance with the License.
#  You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
#  Unless required by applicable law or agreed to in writing, software
#  distributed under the License is distributed on an "AS IS" BASIS,
#  WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#  See the License for the specific language governing permissions and
#  limitations under the License.
#

import asyncio

import pytest
from unittest.mock import AsyncMock

from insightgate import metrics
from insightgate.analytics.executor import QueryExecutor, group_key, require_tenant
from insightgate.analytics.intents import QueryIntent
from insightgate.analytics.results import calculate_pagination
from insightgate.errors import (
    StoreExecutionError,
    TenantContextMalformed,
    TenantContextMissing,
)

from conftest import TENANT_A, TENANT_B


def _intent(**kw) -> QueryIntent:
    return QueryIntent.model_validate(kw)


@pytest.fixture
def executor(store) -> QueryExecutor:
    return QueryExecutor(store)


class TestQueryExecutor:
    """Tenant-scoped execution against the seeded sqlite store"""

    @pytest.mark.asyncio
    async def test_sum_is_scoped_to_tenant(self, executor):
        intent = _intent(
            resource="customers",
            aggregations=[{"field": "total_revenue", "function": "sum"}],
        )
        a = await executor.execute(intent, TENANT_A)
        b = await executor.execute(intent, TENANT_B)

        assert len(a.aggregations) == 1
        agg = a.aggregations[0]
        assert (agg.field, agg.function, agg.value) == ("total_revenue", "sum", 600.0)
        assert b.aggregations[0].value == 12000.0

    @pytest.mark.asyncio
    async def test_rows_never_cross_tenants(self, executor):
        result = await executor.execute(_intent(resource="customers"), TENANT_A)
        assert result.metadata.row_count == 3
        assert {r["organization_id"] for r in result.data} == {TENANT_A}

    @pytest.mark.asyncio
    async def test_filters_cannot_widen_scope(self, executor):
        result = await executor.execute(
            _intent(
                resource="customers",
                filters=[
                    {"column": "organization_id", "operator": "eq", "value": TENANT_B}
                ],
            ),
            TENANT_A,
        )
        assert result.data == []

    @pytest.mark.asyncio
    async def test_injection_value_is_just_a_value(self, executor):
        result = await executor.execute(
            _intent(
                resource="customers",
                filters=[
                    {"column": "name", "operator": "eq", "value": "1=1' OR '1'='1"}
                ],
            ),
            TENANT_A,
        )
        assert result.data == [] and result.metadata.row_count == 0

    @pytest.mark.asyncio
    async def test_execution_is_idempotent(self, executor):
        intent = _intent(
            resource="revenue",
            orderBy=[{"field": "date", "direction": "asc"}],
        )
        first = await executor.execute(intent, TENANT_A)
        second = await executor.execute(intent, TENANT_A)
        assert first.data == second.data
        assert first.metadata.row_count == second.metadata.row_count == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "operator,value,names",
        [
            ("eq", "active", {"Alice", "Bob"}),
            ("ne", "active", {"Carol"}),
            ("in", ["churned", "unknown"], {"Carol"}),
            ("contains", "ACT", {"Alice", "Bob"}),
            ("contains", "_", set()),
            ("contains", "%", set()),
            ("contains", "ti%e", set()),
        ],
    )
    async def test_filters(self, executor, operator, value, names):
        result = await executor.execute(
            _intent(
                resource="customers",
                filters=[{"column": "status", "operator": operator, "value": value}],
            ),
            TENANT_A,
        )
        assert {r["name"] for r in result.data} == names

    @pytest.mark.asyncio
    async def test_numeric_comparison(self, executor):
        result = await executor.execute(
            _intent(
                resource="customers",
                filters=[{"column": "total_revenue", "operator": "gte", "value": 200}],
            ),
            TENANT_A,
        )
        assert {r["name"] for r in result.data} == {"Bob", "Carol"}

    @pytest.mark.asyncio
    async def test_group_by_with_aggregation(self, executor):
        result = await executor.execute(
            _intent(
                resource="revenue",
                groupBy=["category"],
                aggregations=[{"field": "amount", "function": "sum"}],
                orderBy=[{"field": "amount", "direction": "desc"}],
            ),
            TENANT_A,
        )
        assert result.data == [
            {"category": "services", "amount_sum": 250},
            {"category": "subscription", "amount_sum": 200},
        ]
        assert set(result.grouped_by) == {"subscription", "services"}
        assert result.aggregations is None

    @pytest.mark.asyncio
    async def test_pagination_clamps_page_size(self, executor):
        result = await executor.execute(
            _intent(resource="revenue", page=1, pageSize=500), TENANT_A
        )
        assert result.pagination.page_size == 100
        assert result.pagination.total_rows == 4
        assert result.pagination.total_pages == 1
        assert not result.pagination.has_next_page

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "page,rows,has_next,has_previous", [(1, 3, True, False), (2, 1, False, True)]
    )
    async def test_pagination_pages(self, executor, page, rows, has_next, has_previous):
        result = await executor.execute(
            _intent(
                resource="revenue",
                page=page,
                pageSize=3,
                orderBy=[{"field": "date"}],
            ),
            TENANT_A,
        )
        p = result.pagination
        assert len(result.data) == rows
        assert (p.total_rows, p.total_pages) == (4, 2)
        assert (p.has_next_page, p.has_previous_page) == (has_next, has_previous)

    @pytest.mark.asyncio
    async def test_restricted_resource_rows(self, executor):
        result = await executor.execute(_intent(resource="audit_logs"), TENANT_A)
        assert result.data == [{"id": "a-1", "created_at": "2024-01-01T00:00:00Z"}]

    @pytest.mark.asyncio
    async def test_count_and_aggregate_helpers(self, executor):
        assert await executor.count("customers", TENANT_A) == 3
        assert await executor.count("usage_log", TENANT_A) == 1
        assert await executor.count("organizations", TENANT_B) == 1
        assert await executor.aggregate("revenue", "amount", "max", TENANT_A) == 150
        assert await executor.aggregate("revenue", "amount", "avg", TENANT_B) == 9

    @pytest.mark.asyncio
    async def test_store_error_becomes_empty_result(self):
        store = AsyncMock()
        store.dialect = "sqlite"
        store.fetch_all.side_effect = StoreExecutionError("no such table: customers")
        executor = QueryExecutor(store)

        result = await executor.execute(_intent(resource="customers"), TENANT_A)

        assert result.data == [] and result.metadata.row_count == 0
        assert result.aggregations is None and result.pagination is None
        assert (
            metrics.registry().get_sample_value(
                "insightgate_store_errors_total", {"resource": "customers"}
            )
            == 1
        )

    @pytest.mark.asyncio
    async def test_data_and_count_run_together(self):
        store = AsyncMock()
        store.dialect = "sqlite"
        store.fetch_all.side_effect = [[{"id": "r-1"}], [{"total": 120}]]
        executor = QueryExecutor(store)

        result = await executor.execute(
            _intent(resource="revenue", page=2, pageSize=50), TENANT_A
        )

        assert store.fetch_all.await_count == 2
        assert result.pagination == calculate_pagination(120, 2, 50)

    @pytest.mark.asyncio
    async def test_failed_count_waits_for_data_query(self):
        finished = []

        async def fetch_all(sql, params):
            if '"total"' in sql:
                raise StoreExecutionError("count failed")
            await asyncio.sleep(0.01)
            finished.append(sql)
            return [{"id": "r-1"}]

        store = AsyncMock()
        store.dialect = "sqlite"
        store.fetch_all.side_effect = fetch_all
        executor = QueryExecutor(store)

        result = await executor.execute(
            _intent(resource="revenue", page=1, pageSize=10), TENANT_A
        )

        assert result.data == [] and result.pagination is None
        assert len(finished) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "tenant,error",
        [(None, TenantContextMissing), ("", TenantContextMissing), ("acme", TenantContextMalformed)],
    )
    async def test_requires_tenant(self, executor, tenant, error):
        with pytest.raises(error):
            await executor.execute(_intent(resource="customers"), tenant)


class TestHelpers:
    def test_group_key(self):
        assert group_key({"a": 1, "b": "x"}, ["a", "b"]) == "1::x"

    def test_require_tenant_accepts_uuid(self):
        assert require_tenant(TENANT_A.upper()) == TENANT_A.upper()

    @pytest.mark.parametrize(
        "total,page,size,pages,has_next,has_prev",
        [
            (0, 1, 10, 0, False, False),
            (10, 1, 10, 1, False, False),
            (11, 1, 10, 2, True, False),
            (11, 2, 10, 2, False, True),
            (250, 3, 100, 3, False, True),
        ],
    )
    def test_calculate_pagination(self, total, page, size, pages, has_next, has_prev):
        p = calculate_pagination(total, page, size)
        assert p.total_pages == pages
        assert p.has_next_page == (page < pages) == has_next
        assert p.has_previous_page == has_prev
