"""
Chart Configurator - Renderer-agnostic chart configuration from query results.

This module inspects result rows to find numeric, categorical and date fields,
chooses axes and a chart type when none is requested, and builds a
configuration any charting front end can render. Empty or non-numeric results
yield an explicit "no data" configuration rather than an error.
"""

import locale
from dataclasses import dataclass, field, replace
from typing import Any, Optional

import structlog

from insightgate.analytics.intents import ChartIntent, ChartType
from insightgate.analytics.results import (
    QueryResult,
    Row,
    categorical_fields,
    date_fields,
    field_names,
    is_numeric,
    numeric_fields,
)

logger = structlog.get_logger(__name__)

CHART_COLORS = (
    "#3B82F6",  # blue
    "#10B981",  # emerald
    "#F59E0B",  # amber
    "#EF4444",  # red
    "#8B5CF6",  # violet
    "#EC4899",  # pink
    "#06B6D4",  # cyan
    "#84CC16",  # lime
    "#F97316",  # orange
    "#6366F1",  # indigo
)

GRID_STROKE = "#E5E7EB"
MAX_DEFAULT_Y_FIELDS = 3


@dataclass(frozen=True)
class AxisConfig:
    data_key: str
    label: Optional[str] = None
    tick: bool = True

    def to_dict(self) -> dict[str, Any]:
        d = {"dataKey": self.data_key, "tick": self.tick}
        if self.label is not None:
            d["label"] = self.label
        return d


@dataclass(frozen=True)
class SeriesConfig:
    data_key: str
    name: str
    color: str
    type: str = "monotone"
    stroke_width: int = 2
    fill_opacity: float = 0.3

    def to_dict(self) -> dict[str, Any]:
        return {
            "dataKey": self.data_key,
            "name": self.name,
            "color": self.color,
            "type": self.type,
            "strokeWidth": self.stroke_width,
            "fillOpacity": self.fill_opacity,
        }


@dataclass(frozen=True)
class TooltipConfig:
    enabled: bool = True

    def format(self, value: Any, name: str) -> str:
        """Locale-aware rendering of one tooltip entry."""
        if is_numeric(value):
            return f"{name}: {locale.format_string('%.10g', value, grouping=True)}"
        return f"{name}: {value}"

    def to_dict(self) -> dict[str, Any]:
        return {"enabled": self.enabled, "valueFormat": "locale"}


@dataclass(frozen=True)
class LegendConfig:
    position: str = "top"
    align: str = "center"

    def to_dict(self) -> dict[str, Any]:
        return {"position": self.position, "align": self.align}


@dataclass(frozen=True)
class GridConfig:
    show: bool = True
    stroke: str = GRID_STROKE
    stroke_dasharray: Optional[str] = "3 3"

    def to_dict(self) -> dict[str, Any]:
        d = {"show": self.show, "stroke": self.stroke}
        if self.stroke_dasharray is not None:
            d["strokeDasharray"] = self.stroke_dasharray
        return d


@dataclass(frozen=True)
class ChartConfiguration:
    type: str
    title: str
    data: list[Row]
    x_axis: AxisConfig
    y_axis: list[AxisConfig] = field(default_factory=list)
    series: list[SeriesConfig] = field(default_factory=list)
    colors: list[str] = field(default_factory=list)
    tooltip: TooltipConfig = field(default_factory=TooltipConfig)
    legend: LegendConfig = field(default_factory=LegendConfig)
    grid: GridConfig = field(default_factory=GridConfig)
    animation: bool = True
    responsive: bool = True

    @property
    def is_empty(self) -> bool:
        return not self.series

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "title": self.title,
            "data": self.data,
            "xAxis": self.x_axis.to_dict(),
            "yAxis": [a.to_dict() for a in self.y_axis],
            "series": [s.to_dict() for s in self.series],
            "colors": list(self.colors),
            "tooltip": self.tooltip.to_dict(),
            "legend": self.legend.to_dict(),
            "grid": self.grid.to_dict(),
            "animation": self.animation,
            "responsive": self.responsive,
        }


def generate_chart_colors(count: int) -> list[str]:
    return [CHART_COLORS[i % len(CHART_COLORS)] for i in range(count)]


def select_x_axis(rows: list[Row], requested: Optional[str] = None) -> str:
    """Requested field if present, then first date, categorical, or any field."""
    names = field_names(rows)
    if requested and requested in names:
        return requested
    for candidates in (date_fields(rows), categorical_fields(rows), names):
        if candidates:
            return candidates[0]
    return requested or "category"


def select_y_axis(
    rows: list[Row], x_axis: str, requested: Optional[list[str]] = None
) -> list[str]:
    names = field_names(rows)
    if requested:
        present = [y for y in requested if y in names]
        if present:
            return present
        logger.warning("requested_y_axis_missing", requested=requested)
    return [f for f in numeric_fields(rows) if f != x_axis][:MAX_DEFAULT_Y_FIELDS]


def infer_chart_type(rows: list[Row], x_axis: str, y_axis: list[str]) -> str:
    """
    Pick a chart type for unrequested charts.

    More than three series read best as bars; a date x-axis becomes an area
    (one series) or line (several); exactly two series become a scatter.
    """
    if len(y_axis) > MAX_DEFAULT_Y_FIELDS:
        return ChartType.BAR.value
    if x_axis in date_fields(rows):
        return ChartType.LINE.value if len(y_axis) > 1 else ChartType.AREA.value
    if len(y_axis) == 2:
        return ChartType.SCATTER.value
    return ChartType.BAR.value


def chart_title(chart_type: str, x_axis: str, y_axis: list[str]) -> str:
    name = chart_type.capitalize()
    if len(y_axis) == 1:
        return f"{name} of {y_axis[0]} by {x_axis}"
    return f"{name} comparing {', '.join(y_axis)} by {x_axis}"


def project_rows(rows: list[Row], x_axis: str, y_axis: list[str]) -> list[Row]:
    return [{k: row.get(k) for k in (x_axis, *y_axis)} for row in rows]


def build_series_chart(
    chart_type: str,
    title: str,
    rows: list[Row],
    x_axis: str,
    y_axis: list[str],
    colors: Optional[list[str]] = None,
) -> ChartConfiguration:
    palette = list(colors) if colors else generate_chart_colors(len(y_axis))
    fill_opacity = 0.0 if chart_type == ChartType.LINE else 0.3
    return ChartConfiguration(
        type=chart_type,
        title=title,
        data=project_rows(rows, x_axis, y_axis),
        x_axis=AxisConfig(x_axis, label=x_axis),
        y_axis=[AxisConfig(y, label=y) for y in y_axis],
        series=[
            SeriesConfig(y, y, palette[i % len(palette)], fill_opacity=fill_opacity)
            for i, y in enumerate(y_axis)
        ],
        colors=palette,
    )


def build_pie_chart(
    title: str,
    rows: list[Row],
    name_field: str,
    value_field: str,
    colors: Optional[list[str]] = None,
) -> ChartConfiguration:
    slices = [{"name": str(r.get(name_field)), "value": r.get(value_field)} for r in rows]
    palette = list(colors) if colors else generate_chart_colors(len(slices))
    return ChartConfiguration(
        type=ChartType.PIE.value,
        title=title,
        data=slices,
        x_axis=AxisConfig("name"),
        y_axis=[AxisConfig("value")],
        series=[
            SeriesConfig(s["name"], s["name"], palette[i % len(palette)])
            for i, s in enumerate(slices)
        ],
        colors=palette,
        legend=LegendConfig(position="right"),
        grid=GridConfig(show=False, stroke="", stroke_dasharray=None),
    )


class ChartConfigurator:
    """
    Chart Configurator component.

    This component:
    1. Detects numeric, categorical and date fields in result rows
    2. Selects x and y axes (requested first, inferred otherwise)
    3. Infers a chart type when none is requested
    4. Builds the configuration with palette, tooltip, legend and grid
    """

    def configure(
        self,
        intent: ChartIntent,
        result: QueryResult,
        tooltip: Optional[TooltipConfig] = None,
        legend: Optional[LegendConfig] = None,
        grid: Optional[GridConfig] = None,
    ) -> ChartConfiguration:
        """
        Build a chart configuration for a query result.

        Args:
            intent: Validated ChartIntent
            result: Rows produced for the intent's data source
            tooltip: Tooltip settings replacing the default
            legend: Legend settings replacing the default
            grid: Grid settings replacing the default

        Returns:
            ChartConfiguration; empty data/series when nothing can be plotted
        """
        rows = result.data
        requested_type = intent.chart_type

        if not rows:
            return ChartConfiguration(
                type=requested_type or ChartType.BAR.value,
                title=intent.title or "No Data Available",
                data=[],
                x_axis=AxisConfig(intent.x_axis or "category"),
            )

        x_axis = select_x_axis(rows, intent.x_axis)
        y_axis = select_y_axis(rows, x_axis, intent.y_axis)

        if not y_axis:
            return ChartConfiguration(
                type=requested_type or ChartType.BAR.value,
                title=intent.title or "No Numeric Data Available",
                data=[],
                x_axis=AxisConfig(x_axis),
            )

        chart_type = requested_type or infer_chart_type(rows, x_axis, y_axis)
        title = intent.title or chart_title(chart_type, x_axis, y_axis)

        if chart_type == ChartType.PIE:
            config = build_pie_chart(title, rows, x_axis, y_axis[0], intent.colors)
        else:
            config = build_series_chart(
                chart_type, title, rows, x_axis, y_axis, intent.colors
            )

        overrides = {
            k: v
            for k, v in (("tooltip", tooltip), ("legend", legend), ("grid", grid))
            if v is not None
        }
        if overrides:
            config = replace(config, **overrides)

        logger.info(
            "chart_configured",
            chart_type=chart_type,
            inferred=requested_type is None,
            series=len(config.series),
            rows=len(config.data),
        )
        return config


def suggest_chart_configuration(rows: list[Row], goal: str) -> dict[str, Any]:
    """
    Suggest chart fields for a free-text goal.

    Returns:
        Partial chart intent with chartType, xAxis and yAxis
    """
    numeric = numeric_fields(rows)
    categorical = categorical_fields(rows)
    dates = date_fields(rows)
    goal = goal.lower()

    def first(*candidates: list[str]) -> Optional[str]:
        for c in candidates:
            if c:
                return c[0]
        return None

    if ("trend" in goal or "over time" in goal) and dates:
        return {"chartType": "line", "xAxis": dates[0], "yAxis": numeric[:2]}

    if "compar" in goal:
        return {
            "chartType": "bar",
            "xAxis": first(categorical, numeric),
            "yAxis": numeric[:3],
        }

    if "distribution" in goal or "breakdown" in goal:
        return {
            "chartType": "pie",
            "xAxis": first(categorical),
            "yAxis": [numeric[0] if numeric else "count"],
        }

    if "correlation" in goal or "relationship" in goal:
        return {"chartType": "scatter", "xAxis": first(numeric), "yAxis": numeric[1:3]}

    return {
        "chartType": "bar",
        "xAxis": first(categorical, dates, numeric),
        "yAxis": numeric[:2],
    }
