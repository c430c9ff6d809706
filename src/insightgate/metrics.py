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
from typing import Dict

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    make_asgi_app,
)

_registry = CollectorRegistry()
_collectors: Dict[str, object] = {}


def registry() -> CollectorRegistry:
    return _registry


def reset():
    """Drop every collector; tests call this between cases."""
    global _registry
    _registry = CollectorRegistry()
    _collectors.clear()


def _get(name: str, factory):
    if name not in _collectors:
        _collectors[name] = factory(_registry)
    return _collectors[name]


def validation_counter() -> Counter:
    return _get(
        "validation",
        lambda r: Counter(
            "insightgate_validation_total",
            "Intent validation outcomes",
            ["kind", "stage", "outcome"],
            registry=r,
        ),
    )


def query_histogram() -> Histogram:
    return _get(
        "query",
        lambda r: Histogram(
            "insightgate_query_seconds",
            "Main query wall-clock time",
            ["resource"],
            registry=r,
        ),
    )


def store_error_counter() -> Counter:
    return _get(
        "store_errors",
        lambda r: Counter(
            "insightgate_store_errors_total",
            "Store failures converted into empty results",
            ["resource"],
            registry=r,
        ),
    )


def get_metrics_app():
    return make_asgi_app(registry=_registry)
