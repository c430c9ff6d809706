"""
Validation Pipeline - Staged checks between model output and the store.

Stages run in a fixed order:
schema -> resource_whitelist -> column_validation -> tenant_context -> injection_scan

Every failure is recovered into a ValidationResult; nothing raises across the
pipeline boundary.
"""

import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Optional, Union
from uuid import UUID

import pydantic
import structlog

from insightgate import metrics
from insightgate.analytics import whitelist
from insightgate.analytics.intents import (
    INTENT_MODELS,
    ChartIntent,
    IntentKind,
    QueryIntent,
    SummaryIntent,
    query_of,
)
from insightgate.config import settings
from insightgate.errors import ErrorKind, FieldNotAccessible

logger = structlog.get_logger(__name__)

Intent = Union[QueryIntent, ChartIntent, SummaryIntent]

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

INJECTION_PATTERNS = (
    # statement keywords
    re.compile(
        r"\b(select|insert|update|delete|drop|truncate|alter|create|exec|execute|union|join)\b",
        re.IGNORECASE,
    ),
    # comment markers
    re.compile(r"--|/\*|\*/"),
    # tautologies such as "or 1=1"
    re.compile(r"\b(or|and)\s+\d+\s*=\s*\d+", re.IGNORECASE),
    # quoted or terminated fragments
    re.compile(r"['\"`;].*?['\"`;]"),
    # stored procedures
    re.compile(r"\b(xp_|sp_)|\bexec\s+", re.IGNORECASE),
    # hex literals
    re.compile(r"\b0x[0-9a-f]+", re.IGNORECASE),
)


class ValidationStage(StrEnum):
    SCHEMA = "schema"
    RESOURCE_WHITELIST = "resource_whitelist"
    COLUMN_VALIDATION = "column_validation"
    TENANT_CONTEXT = "tenant_context"
    INJECTION_SCAN = "injection_scan"
    PASSED = "passed"


@dataclass
class ValidationContext:
    """Identity the intent is validated for."""

    tenant_id: Optional[Union[str, UUID]] = None
    user_id: Optional[str] = None
    role: Optional[str] = None


@dataclass
class ValidationError:
    stage: ValidationStage
    kind: ErrorKind
    message: str
    field: Optional[str] = None
    suggestion: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        d = {"stage": str(self.stage), "kind": str(self.kind), "message": self.message}
        if self.field is not None:
            d["field"] = self.field
        if self.suggestion is not None:
            d["suggestion"] = self.suggestion
        return d


@dataclass
class ValidationResult:
    """Outcome of a pipeline run; errors is empty iff success."""

    success: bool
    stage: ValidationStage
    data: Optional[Intent] = None
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def error_messages(self) -> list[str]:
        return [e.message for e in self.errors]

    def to_dict(self) -> dict[str, Any]:
        d = {
            "success": self.success,
            "stage": str(self.stage),
            "errors": [e.to_dict() for e in self.errors],
        }
        if self.data is not None:
            d["data"] = self.data.to_dict()
        if self.warnings:
            d["warnings"] = list(self.warnings)
        return d


def scan_for_injection(value: Any, path: str = "") -> list[str]:
    """
    Recursively scan every string leaf of a value for SQL-like content.

    Args:
        value: Intent tree (dicts, lists, scalars)
        path: Dotted path of `value` within the tree

    Returns:
        Paths of the string leaves that matched a pattern
    """
    if value is None:
        return []

    if isinstance(value, str):
        if any(p.search(value) for p in INJECTION_PATTERNS):
            return [path or "<root>"]
        return []

    hits = []
    if isinstance(value, dict):
        for k, v in value.items():
            hits.extend(scan_for_injection(v, f"{path}.{k}" if path else str(k)))
    elif isinstance(value, (list, tuple)):
        for i, v in enumerate(value):
            hits.extend(scan_for_injection(v, f"{path}[{i}]" if path else f"[{i}]"))
    return hits


def _format_schema_error(err: dict[str, Any]) -> tuple[str, Optional[str]]:
    loc = ".".join(str(p) for p in err.get("loc", ()))
    if loc:
        return f"Field '{loc}': {err['msg']}", loc
    return f"Intent: {err['msg']}", None


class ValidationPipeline:
    """
    Staged validator for query, chart and summary intents.

    With abort_early the first failing stage ends the run and is reported as
    `stage`. Without it every stage that can run does run, and the last stage
    that failed is reported. A tenant failure is reported as the stage in
    either mode.
    """

    def __init__(
        self,
        abort_early: Optional[bool] = None,
        strip_unknown: Optional[bool] = None,
        injection_severity: Optional[str] = None,
    ):
        cfg = settings.instance().validation
        self.abort_early = cfg.abort_early if abort_early is None else abort_early
        self.strip_unknown = (
            cfg.strip_unknown if strip_unknown is None else strip_unknown
        )
        self.injection_severity = str(
            injection_severity or cfg.injection_severity or "error"
        )

    def validate(
        self,
        kind: Union[IntentKind, str],
        raw: Any,
        context: Optional[ValidationContext],
    ) -> ValidationResult:
        """
        Run every stage over a raw intent.

        Args:
            kind: Which intent shape `raw` should have
            raw: Candidate intent as emitted by the model
            context: Tenant identity the intent runs under

        Returns:
            ValidationResult; data holds the sanitized intent only on success
        """
        errors: list[ValidationError] = []
        warnings: list[str] = []
        failed: list[ValidationStage] = []

        def finish() -> ValidationResult:
            if not failed:
                stage = ValidationStage.PASSED
            elif ValidationStage.TENANT_CONTEXT in failed:
                stage = ValidationStage.TENANT_CONTEXT
            else:
                stage = failed[-1]
            result = ValidationResult(
                success=not errors,
                stage=stage,
                data=intent if not errors else None,
                errors=errors,
                warnings=warnings,
            )
            self._record(kind, result)
            return result

        tenant_errors = self._check_tenant(context)

        def fail(stage: ValidationStage, stage_errors: list[ValidationError]) -> bool:
            if not stage_errors:
                return False
            errors.extend(stage_errors)
            failed.append(stage)
            if (
                self.abort_early
                and tenant_errors
                and stage != ValidationStage.TENANT_CONTEXT
            ):
                # a missing tenant is reported whichever stage stopped the run
                errors.extend(tenant_errors)
                failed.append(ValidationStage.TENANT_CONTEXT)
            return self.abort_early

        intent: Optional[Intent] = None

        # schema
        intent, stage_errors = self._check_schema(kind, raw)
        if fail(ValidationStage.SCHEMA, stage_errors):
            return finish()

        # resource whitelist
        if intent is not None:
            if fail(ValidationStage.RESOURCE_WHITELIST, self._check_resource(intent)):
                return finish()

        # columns
        if intent is not None:
            intent, stage_errors = self._check_columns(intent, warnings)
            if fail(ValidationStage.COLUMN_VALIDATION, stage_errors):
                return finish()

        # tenant context
        if fail(ValidationStage.TENANT_CONTEXT, tenant_errors):
            return finish()

        # injection scan
        tree = intent.to_dict() if intent is not None else raw
        stage_errors = self._check_injection(tree, warnings)
        if fail(ValidationStage.INJECTION_SCAN, stage_errors):
            return finish()

        return finish()

    def validate_query(self, raw: Any, context: ValidationContext) -> ValidationResult:
        return self.validate(IntentKind.QUERY, raw, context)

    def validate_chart(self, raw: Any, context: ValidationContext) -> ValidationResult:
        return self.validate(IntentKind.CHART, raw, context)

    def validate_summary(
        self, raw: Any, context: ValidationContext
    ) -> ValidationResult:
        return self.validate(IntentKind.SUMMARY, raw, context)

    def _check_schema(
        self, kind: Union[IntentKind, str], raw: Any
    ) -> tuple[Optional[Intent], list[ValidationError]]:
        try:
            model = INTENT_MODELS[IntentKind(kind)]
        except ValueError:
            return None, [
                ValidationError(
                    stage=ValidationStage.SCHEMA,
                    kind=ErrorKind.SCHEMA_VALIDATION,
                    message=f"Unknown intent kind '{kind}'. "
                    f"Expected one of: {', '.join(IntentKind)}",
                )
            ]

        try:
            intent = model.model_validate(
                raw, context={"reject_unknown": not self.strip_unknown}
            )
        except pydantic.ValidationError as e:
            errors = []
            for err in e.errors():
                message, loc = _format_schema_error(err)
                errors.append(
                    ValidationError(
                        stage=ValidationStage.SCHEMA,
                        kind=ErrorKind.SCHEMA_VALIDATION,
                        message=message,
                        field=loc,
                        suggestion="Check the intent against the expected schema",
                    )
                )
                if self.abort_early:
                    break
            return None, errors

        return intent, []

    def _check_resource(self, intent: Intent) -> list[ValidationError]:
        resource = query_of(intent).resource
        if whitelist.is_resource_allowed(resource) and whitelist.is_operation_allowed(
            resource, "select"
        ):
            return []

        allowed = ", ".join(whitelist.list_allowed_resources())
        suggestion = whitelist.suggest_resource(resource)
        hint = f"Did you mean '{suggestion}'? " if suggestion else ""
        return [
            ValidationError(
                stage=ValidationStage.RESOURCE_WHITELIST,
                kind=ErrorKind.RESOURCE_NOT_ACCESSIBLE,
                message=f"Resource '{resource}' is not accessible. Allowed: {allowed}",
                field="resource",
                suggestion=f"{hint}Use one of: {allowed}",
            )
        ]

    def _check_columns(
        self, intent: Intent, warnings: list[str]
    ) -> tuple[Intent, list[ValidationError]]:
        errors: list[ValidationError] = []
        query = query_of(intent)
        resource = query.resource
        known = whitelist.is_resource_allowed(resource)
        exposed = whitelist.exposed_fields(resource)

        def check(path: str, name: str, scoped: bool = True) -> str:
            try:
                sanitized = whitelist.sanitize_field_name(name)
            except FieldNotAccessible as e:
                errors.append(
                    ValidationError(
                        stage=ValidationStage.COLUMN_VALIDATION,
                        kind=ErrorKind.COLUMN_NOT_ACCESSIBLE,
                        message=e.message,
                        field=path,
                    )
                )
                return name

            if sanitized != name:
                warnings.append(f"Column '{name}' was sanitized to '{sanitized}'")

            if scoped and exposed is not None and sanitized not in exposed:
                errors.append(
                    ValidationError(
                        stage=ValidationStage.COLUMN_VALIDATION,
                        kind=ErrorKind.COLUMN_NOT_ACCESSIBLE,
                        message=f"Column '{name}' is not accessible on '{resource}'",
                        field=path,
                        suggestion=f"Allowed columns: {', '.join(exposed)}",
                    )
                )
            return sanitized

        filters = [
            f.model_copy(update={"column": check(f"filters[{i}].column", f.column)})
            for i, f in enumerate(query.filters or [])
        ]

        aggregates = whitelist.allowed_aggregates(resource)
        aggregations = []
        for i, agg in enumerate(query.aggregations or []):
            aggregations.append(
                agg.model_copy(
                    update={"field": check(f"aggregations[{i}].field", agg.field)}
                )
            )
            if known and agg.function not in aggregates:
                errors.append(
                    ValidationError(
                        stage=ValidationStage.COLUMN_VALIDATION,
                        kind=ErrorKind.COLUMN_NOT_ACCESSIBLE,
                        message=f"Aggregation '{agg.function}' is not allowed on "
                        f"'{resource}'. Allowed: {', '.join(sorted(aggregates))}",
                        field=f"aggregations[{i}].function",
                    )
                )

        group_by = [
            check(f"groupBy[{i}]", g) for i, g in enumerate(query.group_by or [])
        ]
        order_by = [
            o.model_copy(update={"field": check(f"orderBy[{i}].field", o.field)})
            for i, o in enumerate(query.order_by or [])
        ]

        sanitized_query = query.model_copy(
            update={
                "filters": filters if query.filters is not None else None,
                "aggregations": aggregations
                if query.aggregations is not None
                else None,
                "group_by": group_by if query.group_by is not None else None,
                "order_by": order_by if query.order_by is not None else None,
            }
        )

        # chart axes and focus areas name result columns, which may be
        # aggregate aliases, so they are only sanitized
        match intent:
            case ChartIntent():
                update = {"data_source": sanitized_query}
                if intent.x_axis is not None:
                    update["x_axis"] = check("xAxis", intent.x_axis, scoped=False)
                if intent.y_axis is not None:
                    update["y_axis"] = [
                        check(f"yAxis[{i}]", y, scoped=False)
                        for i, y in enumerate(intent.y_axis)
                    ]
                intent = intent.model_copy(update=update)
            case SummaryIntent():
                update = {"data_source": sanitized_query}
                if intent.focus_areas is not None:
                    update["focus_areas"] = [
                        check(f"focusAreas[{i}]", a, scoped=False)
                        for i, a in enumerate(intent.focus_areas)
                    ]
                intent = intent.model_copy(update=update)
            case _:
                intent = sanitized_query

        return intent, errors

    def _check_tenant(
        self, context: Optional[ValidationContext]
    ) -> list[ValidationError]:
        tenant_id = context.tenant_id if context is not None else None
        if tenant_id is None or (isinstance(tenant_id, str) and not tenant_id):
            return [
                ValidationError(
                    stage=ValidationStage.TENANT_CONTEXT,
                    kind=ErrorKind.TENANT_CONTEXT_MISSING,
                    message="Tenant id is required for every data request",
                    suggestion="Ensure the caller is authenticated and belongs to a tenant",
                )
            ]

        if not UUID_PATTERN.match(str(tenant_id)):
            return [
                ValidationError(
                    stage=ValidationStage.TENANT_CONTEXT,
                    kind=ErrorKind.TENANT_CONTEXT_MALFORMED,
                    message="Invalid tenant id format",
                    suggestion="Tenant id must be a valid UUID",
                )
            ]
        return []

    def _check_injection(self, tree: Any, warnings: list[str]) -> list[ValidationError]:
        errors = []
        for path in scan_for_injection(tree):
            message = f"Potential SQL injection detected in {path}"
            if self.injection_severity == "warning":
                warnings.append(message)
            else:
                errors.append(
                    ValidationError(
                        stage=ValidationStage.INJECTION_SCAN,
                        kind=ErrorKind.INJECTION_PATTERN_DETECTED,
                        message=message,
                        field=path,
                        suggestion="Remove quotes, comments and SQL keywords from values",
                    )
                )
        return errors

    def _record(self, kind: Union[IntentKind, str], result: ValidationResult):
        outcome = "passed" if result.success else "rejected"
        metrics.validation_counter().labels(
            kind=str(kind), stage=str(result.stage), outcome=outcome
        ).inc()
        log = logger.info if result.success else logger.warning
        log(
            "intent_validated",
            kind=str(kind),
            stage=str(result.stage),
            errors=len(result.errors),
            warnings=len(result.warnings),
        )
