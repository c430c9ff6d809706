"""
Compiler & Validator Component - SQL Generation and Validation.

This module turns a validated QueryIntent into a parameterized SELECT built
with the sqlglot expression builder, then parses the generated statement back
to an AST to confirm it is a read against a whitelisted table. Identifiers are
always quoted and every intent-supplied value is bound through a placeholder.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

import structlog
from sqlglot import exp, parse_one

from insightgate.analytics import whitelist
from insightgate.analytics.intents import QueryIntent
from insightgate.errors import (
    ColumnNotAccessible,
    ResourceNotAccessible,
    TenantContextMissing,
)

logger = structlog.get_logger(__name__)

MAX_LIMIT = 1000
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50

_COMPARISONS = {
    "eq": exp.EQ,
    "ne": exp.NEQ,
    "gt": exp.GT,
    "lt": exp.LT,
    "gte": exp.GTE,
    "lte": exp.LTE,
}

_AGGREGATES = {
    "count": exp.Count,
    "sum": exp.Sum,
    "avg": exp.Avg,
    "min": exp.Min,
    "max": exp.Max,
}

# aggregates that read as zero rather than NULL over an empty set
_COALESCED = {"sum", "avg"}

LIKE_ESCAPE = "\\"


@dataclass
class ASTValidationResult:
    """Results of AST validation checks."""

    valid: bool
    no_ddl: bool = False
    no_dml: bool = False
    table_allowed: bool = False
    no_select_star: bool = False
    allowed_operations: bool = False
    params_bound: bool = False
    errors: list[str] = field(default_factory=list)


@dataclass
class CompiledQuery:
    """Compiled SQL query with validation results."""

    sql: str
    params: list[Any]
    validated: bool
    ast_checks: ASTValidationResult
    count_sql: Optional[str] = None
    count_params: list[Any] = field(default_factory=list)
    page: Optional[int] = None
    page_size: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)


def aggregate_alias(field_name: str, function: str) -> str:
    return f"{field_name}_{function}"


def escape_like(value: str) -> str:
    """Escapes LIKE wildcards so `value` only matches itself."""
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def _col(name: str) -> exp.Column:
    return exp.column(name, quoted=True)


class Compiler:
    """
    Compiler & Validator component for SQL generation and validation.

    This component:
    1. Re-checks the resource, fields and aggregate functions
    2. Builds the tenant-scoped SELECT (and a count query when paginating)
    3. Parses the generated SQL back to an AST
    4. Validates it is a single read against a whitelisted table
    """

    # Allowed top-level statement types
    ALLOWED_STATEMENTS = {exp.Select}

    # Blocked statement types (DDL/DML/EXPORT)
    BLOCKED_STATEMENTS = {
        exp.Create,
        exp.Drop,
        exp.Alter,
        exp.Insert,
        exp.Update,
        exp.Delete,
        exp.Merge,
        exp.TruncateTable,
        exp.Copy,
        exp.Command,
    }

    def __init__(
        self,
        dialect: Optional[str] = None,
        default_page_size: int = DEFAULT_PAGE_SIZE,
    ):
        """
        Initialize the Compiler.

        Args:
            dialect: sqlglot dialect of the target store (None for generic SQL)
            default_page_size: Page size used when only `page` is requested
        """
        self.dialect = dialect
        self.default_page_size = min(default_page_size, MAX_PAGE_SIZE)
        self.allowed_tables = {spec.table for spec in whitelist.RESOURCES.values()}

    def compile(self, intent: QueryIntent, tenant_id: str) -> CompiledQuery:
        """
        Compile a query intent into validated, parameterized SQL.

        Args:
            intent: QueryIntent that already passed the validation pipeline
            tenant_id: Tenant the query is scoped to

        Returns:
            CompiledQuery with SQL, bound parameters and validation results

        Raises:
            ResourceNotAccessible: If the resource is not whitelisted
            ColumnNotAccessible: If a field or aggregate function is not allowed
            TenantContextMissing: If no tenant id is given
        """
        if not tenant_id:
            raise TenantContextMissing("Tenant id is required to compile a query")

        spec = whitelist.get_resource(intent.resource)
        if spec is None or not whitelist.is_operation_allowed(spec.name, "select"):
            raise ResourceNotAccessible(
                f"Resource '{intent.resource}' is not accessible", "resource"
            )

        table = exp.Table(this=exp.to_identifier(spec.table, quoted=True))
        conditions, params = self._build_conditions(spec, intent, str(tenant_id))
        group_by = [self._field(spec, g) for g in intent.group_by or []]
        aggregations = [
            (self._field(spec, agg.field), str(agg.function))
            for agg in intent.aggregations or []
        ]
        for _, function in aggregations:
            if function not in spec.aggregates:
                raise ColumnNotAccessible(
                    f"Aggregation '{function}' is not allowed on '{spec.name}'",
                    "aggregations",
                )

        # projection
        if aggregations:
            projection = [_col(g) for g in group_by] + [
                self._aggregate(name, function) for name, function in aggregations
            ]
        elif group_by:
            projection = [_col(g) for g in group_by]
        else:
            projection = [_col(c) for c in self._visible_columns(spec)]

        query = exp.select(*projection).from_(table).where(*conditions)
        if group_by:
            query = query.group_by(*[_col(g) for g in group_by])

        aliases = {name: aggregate_alias(name, fn) for name, fn in reversed(aggregations)}
        for order in intent.order_by or []:
            name = self._field(spec, order.field)
            target = _col(aliases.get(name, name))
            query = query.order_by(
                exp.Ordered(this=target, desc=str(order.direction) == "desc")
            )

        page = page_size = None
        if intent.paginated:
            page = intent.page or 1
            page_size = min(intent.page_size or self.default_page_size, MAX_PAGE_SIZE)
            query = query.limit(page_size).offset((page - 1) * page_size)
        else:
            query = query.limit(min(intent.limit or MAX_LIMIT, MAX_LIMIT))

        sql = query.sql(dialect=self.dialect)

        count_sql = None
        if page is not None and not (aggregations and not group_by):
            count_sql = self._count_query(table, conditions, group_by).sql(
                dialect=self.dialect
            )

        validation = self._validate_sql(sql, len(params))
        if count_sql is not None:
            count_validation = self._validate_sql(count_sql, len(params))
            if not count_validation.valid:
                validation.valid = False
                validation.errors.extend(count_validation.errors)

        compiled = CompiledQuery(
            sql=sql,
            params=params,
            validated=validation.valid,
            ast_checks=validation,
            count_sql=count_sql,
            count_params=list(params) if count_sql else [],
            page=page,
            page_size=page_size,
            metadata={
                "resource": spec.name,
                "table": spec.table,
                "aggregated": bool(aggregations),
                "grouped": bool(group_by),
            },
        )

        if not validation.valid:
            logger.error(
                "sql_validation_failed",
                errors=validation.errors,
                resource=spec.name,
            )
        else:
            logger.debug("sql_validated", resource=spec.name, sql=sql)

        return compiled

    def _field(self, spec: whitelist.ResourceSpec, name: str) -> str:
        sanitized = whitelist.sanitize_field_name(name)
        if spec.exposed is not None and sanitized not in spec.exposed:
            raise ColumnNotAccessible(
                f"Column '{name}' is not accessible on '{spec.name}'", name
            )
        return sanitized

    def _visible_columns(self, spec: whitelist.ResourceSpec) -> list[str]:
        if spec.exposed is None:
            return list(spec.columns)
        return [c for c in spec.columns if c in spec.exposed]

    def _aggregate(self, name: str, function: str) -> exp.Expression:
        agg = _AGGREGATES[function](this=_col(name))
        if function in _COALESCED:
            agg = exp.Coalesce(this=agg, expressions=[exp.Literal.number(0)])
        return exp.alias_(agg, aggregate_alias(name, function), quoted=True)

    def _build_conditions(
        self, spec: whitelist.ResourceSpec, intent: QueryIntent, tenant_id: str
    ) -> tuple[list[exp.Expression], list[Any]]:
        """
        Build the WHERE predicates in placeholder order.

        The tenant predicate always comes first; filters are ANDed after it.
        """
        params: list[Any] = [tenant_id]
        conditions: list[exp.Expression] = [
            exp.EQ(this=_col(spec.tenant_column), expression=exp.Placeholder())
        ]

        for f in intent.filters or []:
            column = _col(self._field(spec, f.column))
            operator, value = str(f.operator), f.value

            if operator == "in":
                values = value if isinstance(value, list) else [value]
                if not values:
                    conditions.append(exp.false())
                    continue
                conditions.append(
                    exp.In(
                        this=column,
                        expressions=[exp.Placeholder() for _ in values],
                    )
                )
                params.extend(values)
            elif isinstance(value, list):
                # only set membership takes a list
                conditions.append(exp.false())
            elif operator in ("eq", "ne") and value is None:
                is_null = exp.Is(this=column, expression=exp.Null())
                conditions.append(is_null if operator == "eq" else exp.not_(is_null))
            elif operator in _COMPARISONS:
                conditions.append(
                    _COMPARISONS[operator](this=column, expression=exp.Placeholder())
                )
                params.append(value)
            elif operator == "contains":
                like = exp.Like(
                    this=exp.Lower(this=column),
                    expression=exp.Lower(this=exp.Placeholder()),
                )
                conditions.append(
                    exp.Escape(this=like, expression=exp.Literal.string(LIKE_ESCAPE))
                )
                params.append(f"%{escape_like(str(value))}%")
            else:
                logger.warning("unknown_filter_operator", operator=operator)
                conditions.append(exp.false())

        return conditions, params

    def _count_query(
        self,
        table: exp.Table,
        conditions: list[exp.Expression],
        group_by: list[str],
    ) -> exp.Select:
        total = exp.alias_(exp.Count(this=exp.Star()), "total", quoted=True)
        if not group_by:
            return exp.select(total).from_(table).where(*conditions)

        grouped = (
            exp.select(*[_col(g) for g in group_by])
            .from_(table)
            .where(*conditions)
            .group_by(*[_col(g) for g in group_by])
        )
        return exp.select(total).from_(grouped.subquery("grouped"))

    def _validate_sql(self, sql: str, expected_params: int) -> ASTValidationResult:
        """
        Validate SQL using AST parsing.

        Args:
            sql: SQL string to validate
            expected_params: Number of bound parameters the statement must use

        Returns:
            ASTValidationResult with detailed validation results
        """
        result = ASTValidationResult(valid=True)
        errors = []

        try:
            ast = parse_one(sql, read=self.dialect)

            # Check 1: Top-level statement type
            stmt_type = type(ast)
            if stmt_type not in self.ALLOWED_STATEMENTS:
                result.valid = False
                errors.append(
                    f"Statement type {stmt_type.__name__} not allowed. "
                    f"Only SELECT is permitted."
                )
            else:
                result.allowed_operations = True

            # Check 2: No DDL/DML
            blocked_found = [
                type(node).__name__
                for node in ast.walk()
                if type(node) in self.BLOCKED_STATEMENTS
            ]
            if blocked_found:
                result.valid = False
                errors.append(f"Blocked operations found: {', '.join(blocked_found)}")
            else:
                result.no_ddl = True
                result.no_dml = True

            # Check 3: Table allowlist
            disallowed = {
                t.name for t in ast.find_all(exp.Table)
            } - self.allowed_tables
            if disallowed:
                result.valid = False
                errors.append(f"Disallowed tables: {', '.join(sorted(disallowed))}")
            else:
                result.table_allowed = True

            # Check 4: No SELECT *
            if self._check_select_star(ast):
                result.valid = False
                errors.append("SELECT * is not allowed. Specify columns explicitly.")
            else:
                result.no_select_star = True

            # Check 5: every value is bound
            placeholders = len(list(ast.find_all(exp.Placeholder)))
            if placeholders != expected_params:
                result.valid = False
                errors.append(
                    f"Expected {expected_params} bound parameters, found {placeholders}"
                )
            else:
                result.params_bound = True

        except Exception as e:
            result.valid = False
            errors.append(f"SQL parsing error: {str(e)}")
            logger.error("sql_parse_error", error=str(e))

        result.errors = errors
        return result

    def _check_select_star(self, ast: exp.Expression) -> bool:
        for select_node in ast.find_all(exp.Select):
            for expr in select_node.expressions:
                if isinstance(expr, exp.Star):
                    return True
        return False
