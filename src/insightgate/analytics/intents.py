"""
Intent Schema - Structured request shapes emitted by the model.

Three intent kinds are accepted (query, chart, summary). They share the
Filter / Aggregation / OrderBy sub-shapes. Unknown keys are dropped during
validation so nothing the model invents travels further down the pipeline.
"""

from enum import StrEnum
from typing import Annotated, Any, Dict, List, Optional, Type, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationInfo,
    model_validator,
)


class FilterOperator(StrEnum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    CONTAINS = "contains"
    IN = "in"


class AggregateFunction(StrEnum):
    COUNT = "count"
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"


class SortDirection(StrEnum):
    ASC = "asc"
    DESC = "desc"


class ChartType(StrEnum):
    BAR = "bar"
    LINE = "line"
    AREA = "area"
    PIE = "pie"
    SCATTER = "scatter"


class SummaryType(StrEnum):
    TREND = "trend"
    COMPARISON = "comparison"
    ANOMALY = "anomaly"
    SUMMARY = "summary"


class Tone(StrEnum):
    NEUTRAL = "neutral"
    INSIGHTFUL = "insightful"
    ACTIONABLE = "actionable"


class IntentKind(StrEnum):
    QUERY = "query"
    CHART = "chart"
    SUMMARY = "summary"


Scalar = Union[StrictBool, StrictInt, StrictFloat, StrictStr]
FilterValue = Union[Scalar, None, List[Scalar]]
HexColor = Annotated[str, Field(pattern=r"^#[0-9A-Fa-f]{6}$")]


class _Intent(BaseModel):
    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        use_enum_values=True,
        frozen=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _reject_unknown(cls, data: Any, info: ValidationInfo) -> Any:
        if not (info.context and info.context.get("reject_unknown")):
            return data
        if not isinstance(data, dict):
            return data

        known = set()
        for name, f in cls.model_fields.items():
            known.add(name)
            if f.alias:
                known.add(f.alias)
            if isinstance(f.validation_alias, AliasChoices):
                known.update(c for c in f.validation_alias.choices if isinstance(c, str))
            elif isinstance(f.validation_alias, str):
                known.add(f.validation_alias)

        if unknown := sorted(str(k) for k in data if k not in known):
            raise ValueError(f"Unknown field(s): {', '.join(unknown)}")
        return data

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Filter(_Intent):
    column: str = Field(min_length=1)
    operator: FilterOperator
    value: FilterValue = None


class Aggregation(_Intent):
    field: str = Field(min_length=1)
    function: AggregateFunction


class OrderBy(_Intent):
    field: str = Field(min_length=1)
    direction: SortDirection = SortDirection.ASC


class QueryIntent(_Intent):
    """
    A bounded read request against one whitelisted resource.

    `resource` is only checked for shape here; membership in the whitelist is
    its own pipeline stage so the rejection can name the allowed set.
    """

    resource: str = Field(
        min_length=1, validation_alias=AliasChoices("resource", "table")
    )
    filters: Optional[List[Filter]] = None
    aggregations: Optional[List[Aggregation]] = None
    group_by: Optional[List[str]] = Field(default=None, alias="groupBy")
    limit: Optional[int] = Field(default=None, ge=1, le=1000)
    order_by: Optional[List[OrderBy]] = Field(default=None, alias="orderBy")
    page: Optional[int] = Field(default=None, ge=1)
    # clamped to 100 by the executor rather than rejected
    page_size: Optional[int] = Field(default=None, ge=1, alias="pageSize")

    @property
    def paginated(self) -> bool:
        return self.page is not None or self.page_size is not None


class ChartIntent(_Intent):
    data_source: QueryIntent = Field(alias="dataSource")
    chart_type: Optional[ChartType] = Field(default=None, alias="chartType")
    x_axis: Optional[str] = Field(default=None, min_length=1, alias="xAxis")
    y_axis: Optional[List[str]] = Field(default=None, alias="yAxis")
    title: Optional[str] = None
    colors: Optional[List[HexColor]] = None


class SummaryIntent(_Intent):
    data_source: QueryIntent = Field(alias="dataSource")
    summary_type: SummaryType = Field(alias="summaryType")
    focus_areas: Optional[List[str]] = Field(default=None, alias="focusAreas")
    tone: Tone = Tone.NEUTRAL


INTENT_MODELS: Dict[IntentKind, Type[_Intent]] = {
    IntentKind.QUERY: QueryIntent,
    IntentKind.CHART: ChartIntent,
    IntentKind.SUMMARY: SummaryIntent,
}


def query_of(intent: Union[QueryIntent, ChartIntent, SummaryIntent]) -> QueryIntent:
    """The query that feeds an intent, whichever kind it is."""
    return intent if isinstance(intent, QueryIntent) else intent.data_source
