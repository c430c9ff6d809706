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

"""
Global pytest fixtures for insightgate tests.
"""
import os
from typing import Any, Dict, List

import pytest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch

from insightgate import metrics
from insightgate.analytics import whitelist
from insightgate.analytics.tenant import StaticTenantContextProvider, TenantContext
from insightgate.analytics.validation import ValidationContext
from insightgate.api.store import SQLiteStore
from insightgate.config import settings

TENANT_A = "11111111-1111-4111-8111-111111111111"
TENANT_B = "22222222-2222-4222-8222-222222222222"
USER_A = "user-a"


@pytest.fixture(autouse=True)
def reset_metrics_registry():
    """
    Reset the metrics registry between tests so counters start from zero.
    """
    metrics.reset()
    yield


@pytest.fixture(autouse=True)
def default_settings():
    """Run every test against default settings, never the user's config file"""
    old = settings._settings.get()
    settings._settings.set(settings.Settings())
    try:
        yield settings.instance()
    finally:
        settings._settings.set(old)


@pytest.fixture
def temp_config_dir():
    """Create a temporary directory for config files"""
    with TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def mock_config_dir(temp_config_dir):
    """Mock the home directory to use our temporary directory"""
    with patch.object(Path, "home", return_value=temp_config_dir):
        old_env = os.environ.get("XDG_CONFIG_HOME")
        os.environ["XDG_CONFIG_HOME"] = str(temp_config_dir)
        yield temp_config_dir
        if old_env:
            os.environ["XDG_CONFIG_HOME"] = old_env
        else:
            os.environ.pop("XDG_CONFIG_HOME", None)


@pytest.fixture
def context() -> ValidationContext:
    return ValidationContext(tenant_id=TENANT_A, user_id=USER_A, role="member")


@pytest.fixture
def tenant_provider() -> StaticTenantContextProvider:
    return StaticTenantContextProvider(
        TenantContext(tenant_id=TENANT_A, user_id=USER_A, role="member")
    )


def _customer(i: int, tenant: str, name: str, revenue: float, status: str, **kw):
    row = {
        "id": f"c-{tenant[:1]}-{i}",
        "organization_id": tenant,
        "name": name,
        "email": f"{name.lower()}@example.com",
        "company": f"{name} Inc",
        "industry": kw.get("industry", "software"),
        "total_revenue": revenue,
        "last_purchase_date": kw.get("last_purchase_date", "2024-03-01"),
        "status": status,
        "deleted_at": None,
        "created_at": kw.get("created_at", f"2024-01-0{i}T00:00:00Z"),
        "updated_at": None,
    }
    return row


SEED: Dict[str, List[Dict[str, Any]]] = {
    "organizations": [
        {"id": TENANT_A, "name": "Acme", "slug": "acme"},
        {"id": TENANT_B, "name": "Globex", "slug": "globex"},
    ],
    "customers": [
        _customer(1, TENANT_A, "Alice", 100.0, "active", industry="retail"),
        _customer(2, TENANT_A, "Bob", 200.0, "active"),
        _customer(3, TENANT_A, "Carol", 300.0, "churned"),
        _customer(1, TENANT_B, "Dave", 5000.0, "active"),
        _customer(2, TENANT_B, "Erin", 7000.0, "active"),
    ],
    "revenue": [
        {
            "id": f"r-{tenant[:1]}-{i}",
            "organization_id": tenant,
            "customer_id": f"c-{tenant[:1]}-1",
            "amount": amount,
            "date": f"2024-0{i}-01",
            "category": "subscription" if i % 2 else "services",
            "description": None,
            "created_at": f"2024-0{i}-01T00:00:00Z",
        }
        for tenant, amounts in ((TENANT_A, (100, 100, 100, 150)), (TENANT_B, (9, 9)))
        for i, amount in enumerate(amounts, 1)
    ],
    "audit_logs": [
        {
            "id": "a-1",
            "organization_id": TENANT_A,
            "user_id": USER_A,
            "action": "UPDATE",
            "table_name": "customers",
            "record_id": "c-1-1",
            "old_data": "{}",
            "new_data": "{}",
            "created_at": "2024-01-01T00:00:00Z",
        }
    ],
    "ai_usage_log": [
        {
            "id": "u-1",
            "user_id": USER_A,
            "organization_id": TENANT_A,
            "query_id": "q-1",
            "input_tokens": 100,
            "output_tokens": 50,
            "cost_usd": 0.01,
            "model": "gpt-4o-mini",
            "date": "2024-01-01",
            "created_at": "2024-01-01T00:00:00Z",
        }
    ],
}


def seed_store(store: SQLiteStore, seed: Dict[str, List[Dict[str, Any]]] = None):
    """Create every whitelisted table and load the seed rows into it"""
    for spec in whitelist.RESOURCES.values():
        columns = ", ".join(f'"{c}"' for c in spec.columns)
        store.executescript(f'CREATE TABLE IF NOT EXISTS "{spec.table}" ({columns});')

    for table, rows in (seed or SEED).items():
        if not rows:
            continue
        columns = list(rows[0])
        store.executemany(
            f'INSERT INTO "{table}" ({", ".join(columns)}) '
            f'VALUES ({", ".join("?" for _ in columns)})',
            [[row.get(c) for c in columns] for row in rows],
        )


@pytest.fixture
def store():
    s = SQLiteStore(":memory:")
    seed_store(s)
    yield s
    s.connection().close()
