"""
Resource Whitelist - Static registry of queryable resources.

This module is the single source of truth for which resources the AI layer may
read, which aggregate functions each resource permits, and which fields are
withheld. It is compiled in on purpose: nothing the model says can widen it.
"""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

import structlog
from rapidfuzz import fuzz, process

from insightgate.errors import FieldNotAccessible

logger = structlog.get_logger(__name__)

SENSITIVE_TERMS = (
    "password",
    "secret",
    "token",
    "key",
    "credential",
    "private_key",
    "api_secret",
)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_]")

ALL_AGGREGATES = frozenset({"count", "sum", "avg", "min", "max"})

# fields an allow-listed resource may ever expose
RESTRICTED_RESOURCE_FIELDS = ("id", "created_at", "updated_at")


@dataclass(frozen=True)
class ResourceSpec:
    """Static description of one whitelisted resource."""

    name: str
    table: str
    aggregates: frozenset[str]
    columns: tuple[str, ...]
    tenant_column: str = "organization_id"
    select: bool = True
    # when set, only these fields are visible; everything else is restricted
    exposed: Optional[tuple[str, ...]] = None
    restricted: frozenset[str] = field(init=False)

    def __post_init__(self):
        restricted = (
            frozenset(c for c in self.columns if c not in self.exposed)
            if self.exposed is not None
            else frozenset()
        )
        object.__setattr__(self, "restricted", restricted)


RESOURCES: Mapping[str, ResourceSpec] = MappingProxyType(
    {
        spec.name: spec
        for spec in (
            ResourceSpec(
                name="organizations",
                table="organizations",
                aggregates=frozenset({"count"}),
                columns=("id", "name", "slug", "created_at", "updated_at"),
                tenant_column="id",
            ),
            ResourceSpec(
                name="profiles",
                table="profiles",
                aggregates=frozenset({"count"}),
                columns=(
                    "id",
                    "organization_id",
                    "email",
                    "full_name",
                    "role",
                    "created_at",
                    "updated_at",
                ),
            ),
            ResourceSpec(
                name="customers",
                table="customers",
                aggregates=ALL_AGGREGATES,
                columns=(
                    "id",
                    "organization_id",
                    "name",
                    "email",
                    "company",
                    "industry",
                    "total_revenue",
                    "last_purchase_date",
                    "status",
                    "deleted_at",
                    "created_at",
                    "updated_at",
                ),
            ),
            ResourceSpec(
                name="revenue",
                table="revenue",
                aggregates=ALL_AGGREGATES,
                columns=(
                    "id",
                    "organization_id",
                    "customer_id",
                    "amount",
                    "date",
                    "category",
                    "description",
                    "created_at",
                ),
            ),
            ResourceSpec(
                name="activities",
                table="activities",
                aggregates=ALL_AGGREGATES,
                columns=(
                    "id",
                    "organization_id",
                    "type",
                    "customer_id",
                    "metadata",
                    "created_at",
                ),
            ),
            ResourceSpec(
                name="audit_logs",
                table="audit_logs",
                aggregates=frozenset({"count"}),
                columns=(
                    "id",
                    "organization_id",
                    "user_id",
                    "action",
                    "table_name",
                    "record_id",
                    "old_data",
                    "new_data",
                    "created_at",
                ),
                exposed=RESTRICTED_RESOURCE_FIELDS,
            ),
            ResourceSpec(
                name="usage_log",
                table="ai_usage_log",
                aggregates=frozenset({"count", "sum"}),
                columns=(
                    "id",
                    "user_id",
                    "organization_id",
                    "query_id",
                    "input_tokens",
                    "output_tokens",
                    "cost_usd",
                    "model",
                    "date",
                    "created_at",
                ),
                exposed=RESTRICTED_RESOURCE_FIELDS,
            ),
            ResourceSpec(
                name="user_preferences",
                table="user_preferences",
                aggregates=frozenset({"count"}),
                columns=(
                    "user_id",
                    "organization_id",
                    "theme_preference",
                    "updated_at",
                ),
            ),
        )
    }
)


def list_allowed_resources() -> list[str]:
    return list(RESOURCES)


def get_resource(name: str) -> Optional[ResourceSpec]:
    return RESOURCES.get(name) if isinstance(name, str) else None


def is_resource_allowed(name: str) -> bool:
    return get_resource(name) is not None


def is_operation_allowed(name: str, operation: str) -> bool:
    """Only reads are ever permitted through the AI path."""
    spec = get_resource(name)
    if spec is None:
        return False
    return operation == "select" and spec.select


def allowed_aggregates(name: str) -> frozenset[str]:
    spec = get_resource(name)
    return spec.aggregates if spec else frozenset()


def restricted_fields(name: str) -> frozenset[str]:
    spec = get_resource(name)
    return spec.restricted if spec else frozenset()


def exposed_fields(name: str) -> Optional[tuple[str, ...]]:
    """
    Fields a restricted resource may project.

    Returns:
        The allow-list for restricted resources, None for deny-list resources
    """
    spec = get_resource(name)
    return spec.exposed if spec else None


def tenant_column(name: str) -> Optional[str]:
    spec = get_resource(name)
    return spec.tenant_column if spec else None


def table_name(name: str) -> Optional[str]:
    spec = get_resource(name)
    return spec.table if spec else None


def strip_unsafe_chars(name: str) -> str:
    return _UNSAFE_CHARS.sub("", name)


def sanitize_field_name(name: str) -> str:
    """
    Strip every character outside [A-Za-z0-9_] and reject sensitive names.

    Args:
        name: Field name as supplied by the intent

    Returns:
        Sanitized field name

    Raises:
        FieldNotAccessible: If nothing is left after sanitizing or the result
            contains a sensitive term
    """
    sanitized = strip_unsafe_chars(name)
    if not sanitized:
        raise FieldNotAccessible(f"Column '{name}' is not a valid identifier", name)

    lowered = sanitized.lower()
    if any(term in lowered for term in SENSITIVE_TERMS):
        raise FieldNotAccessible(f"Column '{name}' is not accessible", name)

    return sanitized


def validate_column_access(
    resource: str, columns: Iterable[str]
) -> tuple[bool, list[str]]:
    """
    Check a set of field references against a resource.

    Normal resources are deny-list only: anything that sanitizes cleanly is
    allowed. Restricted resources only admit their exposed fields.

    Returns:
        Tuple of (valid, invalid_columns)
    """
    exposed = exposed_fields(resource)
    invalid = []
    for column in columns:
        try:
            sanitized = sanitize_field_name(column)
        except FieldNotAccessible:
            invalid.append(column)
            continue
        if exposed is not None and sanitized not in exposed:
            invalid.append(column)

    return len(invalid) == 0, invalid


def suggest_resource(name: str, min_score: float = 60.0) -> Optional[str]:
    """
    Find the closest whitelisted resource name for a rejected one.

    Args:
        name: Rejected resource name
        min_score: Minimum rapidfuzz ratio (0-100) to accept a suggestion

    Returns:
        Closest resource name, or None if nothing is similar enough
    """
    if not isinstance(name, str) or not name:
        return None

    match = process.extractOne(
        name.lower(),
        list(RESOURCES),
        scorer=fuzz.ratio,
        score_cutoff=min_score,
    )
    if match is None:
        return None

    suggestion, score, _ = match
    logger.debug("resource_suggested", requested=name, suggestion=suggestion, score=score)
    return suggestion
