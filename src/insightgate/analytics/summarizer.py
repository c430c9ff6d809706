"""
Summarizer - Statistical narratives over query results.

Four analysis modes (trend, comparison, anomaly, summary) compute their numbers
with the shared statistics primitives, then render them in one of three tones.
Tone only picks the wording; it never changes a computed value.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from insightgate.analytics import stats
from insightgate.analytics.intents import SummaryIntent, SummaryType, Tone
from insightgate.analytics.results import (
    QueryResult,
    Row,
    date_fields,
    numeric_fields,
    numeric_values,
    parse_date,
)
from insightgate.config import settings

logger = structlog.get_logger(__name__)

NO_DATA_MESSAGE = "No data available to generate a summary."
NO_NUMERIC_MESSAGE = (
    "Unable to generate numerical summary: no numeric fields detected in the data."
)
NO_ANOMALIES_MESSAGE = (
    "No significant anomalies detected in the data. "
    "All values fall within expected ranges."
)


@dataclass(frozen=True)
class TrendAnalysis:
    direction: str  # "up", "down" or "stable"
    percentage: float
    period: str


@dataclass(frozen=True)
class ComparisonResult:
    current: float
    previous: Optional[float]
    difference: float
    percentage_change: float
    verdict: str  # "increase", "decrease" or "no_change"


@dataclass(frozen=True)
class AnomalyFinding:
    row_index: int
    value: float
    expected_min: float
    expected_max: float
    deviation: float
    description: str


@dataclass(frozen=True)
class DataInsights:
    total: float
    average: float
    min: float
    max: float
    median: Optional[float] = None
    std_dev: Optional[float] = None

    @property
    def coefficient_of_variation(self) -> Optional[float]:
        if self.std_dev is None or self.average == 0:
            return None
        return self.std_dev / self.average * 100


def format_number(value: float) -> str:
    """Two decimals with a K/M/B suffix for large magnitudes."""
    magnitude = abs(value)
    if magnitude >= 1e9:
        return f"{value / 1e9:.2f}B"
    if magnitude >= 1e6:
        return f"{value / 1e6:.2f}M"
    if magnitude >= 1e3:
        return f"{value / 1e3:.2f}K"
    return f"{value:.2f}"


def analyze_trend(
    rows: list[Row],
    value_field: str,
    time_field: Optional[str] = None,
    deadband_pct: float = stats.DEFAULT_DEADBAND_PCT,
) -> TrendAnalysis:
    """
    Percentage change from the first to the last value.

    Args:
        rows: Result rows
        value_field: Numeric field to follow
        time_field: Optional date field to order the rows by
        deadband_pct: Changes smaller than this are "stable"

    Returns:
        TrendAnalysis with the absolute percentage and its direction
    """
    points = [r for r in rows if r.get(value_field) is not None]
    if len(points) < 2:
        return TrendAnalysis("stable", 0.0, "insufficient data")

    if time_field:
        points = sorted(
            points, key=lambda r: parse_date(r.get(time_field)) or parse_date("0001-01-01")
        )

    first = float(points[0][value_field])
    last = float(points[-1][value_field])
    if first == 0:
        return TrendAnalysis("up" if last > 0 else "stable", 0.0, "period")

    change = stats.percentage_change(first, last)
    return TrendAnalysis(
        direction=stats.classify_change(change, deadband_pct),
        percentage=abs(change),
        period=f"{len(points)} data points",
    )


def compare_periods(
    current: list[Row],
    previous: Optional[list[Row]],
    value_field: str,
    deadband_pct: float = stats.DEFAULT_DEADBAND_PCT,
) -> ComparisonResult:
    current_sum = sum(numeric_values(current, value_field))
    if not previous:
        return ComparisonResult(current_sum, None, 0.0, 0.0, "no_change")

    previous_sum = sum(numeric_values(previous, value_field))
    difference = current_sum - previous_sum
    pct = difference / previous_sum * 100 if previous_sum != 0 else 0.0
    return ComparisonResult(
        current=current_sum,
        previous=previous_sum,
        difference=difference,
        percentage_change=pct,
        verdict=stats.classify_change(
            pct, deadband_pct, ("increase", "decrease", "no_change")
        ),
    )


def detect_anomalies(
    rows: list[Row],
    value_field: str,
    threshold: float = stats.DEFAULT_Z_THRESHOLD,
) -> list[AnomalyFinding]:
    """
    Flag rows whose z-score magnitude exceeds the threshold.

    Mean and standard deviation are taken over every row of the result.
    Fewer than three values never produce a finding.
    """
    values = numeric_values(rows, value_field)
    if len(values) < 3:
        return []

    mu = stats.mean(values)
    sigma = stats.std_dev(values, mu)
    if sigma == 0:
        return []

    findings = []
    for i, row in enumerate(rows):
        value = row.get(value_field)
        if value is None or isinstance(value, bool):
            continue
        deviation = abs(stats.z_score(value, mu, sigma))
        if stats.is_anomalous(deviation, threshold):
            findings.append(
                AnomalyFinding(
                    row_index=i,
                    value=value,
                    expected_min=mu - threshold * sigma,
                    expected_max=mu + threshold * sigma,
                    deviation=deviation,
                    description=f"Value {value:,} is {deviation:.1f} standard "
                    "deviations from the mean",
                )
            )
    return findings


def calculate_insights(rows: list[Row], value_field: str) -> DataInsights:
    values = numeric_values(rows, value_field)
    if not values:
        return DataInsights(total=0, average=0, min=0, max=0)

    mu = stats.mean(values)
    return DataInsights(
        total=sum(values),
        average=mu,
        min=min(values),
        max=max(values),
        median=stats.median(values),
        std_dev=stats.std_dev(values, mu),
    )


def _focus_suffix(label: str, focus_areas: list[str]) -> str:
    return f" {label}: {', '.join(focus_areas)}." if focus_areas else ""


def render_trend(trend: TrendAnalysis, focus_areas: list[str], tone: str) -> str:
    pct, period, direction = f"{trend.percentage:.1f}%", trend.period, trend.direction
    match tone:
        case Tone.ACTIONABLE:
            if direction == "up":
                text = (
                    f"Great progress! The metric rose {pct} over {period}. "
                    "Consider capitalizing on this momentum by analyzing what drove the increase."
                )
            elif direction == "down":
                text = (
                    f"Attention needed: The metric declined by {pct} over {period}. "
                    "Investigate the factors contributing to this decrease and develop a recovery plan."
                )
            else:
                text = (
                    f"The metric has remained stable over {period}. "
                    "Look for opportunities to identify growth areas or optimize current processes."
                )
        case Tone.INSIGHTFUL:
            if direction == "up":
                text = (
                    f"Analysis reveals a positive {pct} upward trend across {period}. "
                    "This growth pattern suggests effective strategies or favorable conditions."
                )
            elif direction == "down":
                text = (
                    f"A concerning {pct} downward trend emerges over {period}. "
                    "Understanding the drivers behind this decline could reveal important insights."
                )
            else:
                text = (
                    f"The data shows stability with minimal fluctuation over {period}. "
                    "This consistency may indicate a mature or plateaued state."
                )
        case _:
            movement = "stable" if direction == "stable" else f"{direction}ward"
            article = "an" if movement[0] in "aeiou" else "a"
            text = f"Trend analysis shows {article} {movement} movement of {pct} over {period}."

    return text + _focus_suffix("Key focus areas include", focus_areas)


def render_comparison(
    comparison: ComparisonResult, focus_areas: list[str], tone: str
) -> str:
    current = format_number(comparison.current)
    previous = format_number(comparison.previous or 0)
    pct = f"{abs(comparison.percentage_change):.1f}%"
    verdict = comparison.verdict
    match tone:
        case Tone.ACTIONABLE:
            if verdict == "increase":
                text = (
                    f"Excellent! Current period shows {current} compared to {previous} "
                    f"previously, a {pct} increase. "
                    "Identify the successful factors and replicate them going forward."
                )
            elif verdict == "decrease":
                text = (
                    f"Alert: Current period totals {current} versus {previous}, "
                    f"a {pct} decrease. "
                    "Immediate review recommended to understand and reverse this trend."
                )
            else:
                text = (
                    f"Results are consistent at {current} (previously {previous}). "
                    "Maintain current practices while seeking incremental improvements."
                )
        case Tone.INSIGHTFUL:
            if verdict == "increase":
                text = (
                    f"Comparative analysis reveals a {pct} improvement from {previous} "
                    f"to {current}. "
                    "This suggests effective strategies or favorable conditions."
                )
            elif verdict == "decrease":
                text = (
                    f"A {pct} decline is observed, dropping from {previous} to {current}. "
                    "Root cause analysis would help identify factors contributing to this change."
                )
            else:
                text = (
                    f"Performance remains consistent with {current} against {previous}. "
                    "Current approaches are stable but may benefit from optimization efforts."
                )
        case _:
            label = {"increase": "increase", "decrease": "decrease"}.get(
                verdict, "no change"
            )
            text = (
                f"Period comparison: {current} (current) vs {previous} (previous), "
                f"representing a {pct} {label}."
            )

    return text + _focus_suffix("Focus areas", focus_areas)


def render_anomalies(findings: list[AnomalyFinding], tone: str) -> str:
    if not findings:
        return NO_ANOMALIES_MESSAGE

    lines = []
    match tone:
        case Tone.ACTIONABLE:
            lines.append(
                f"CRITICAL: {len(findings)} significant anomaly(ies) detected "
                "requiring immediate attention:"
            )
            for i, a in enumerate(findings, 1):
                lines.append(f"{i}. Value of {format_number(a.value)}: {a.description}")
                lines.append(
                    f"   Expected range: {format_number(a.expected_min)} - "
                    f"{format_number(a.expected_max)}"
                )
                lines.append("   Recommended action: Investigate the cause of this deviation.")
        case Tone.INSIGHTFUL:
            lines.append(
                f"Analysis identified {len(findings)} notable outlier(s) in the dataset:"
            )
            for i, a in enumerate(findings, 1):
                lines.append(f"{i}. {a.description}")
                lines.append(
                    f"   This value ({format_number(a.value)}) falls outside the typical "
                    f"range of {format_number(a.expected_min)} - {format_number(a.expected_max)}."
                )
            lines.append(
                "These anomalies may indicate unusual events, data quality issues, "
                "or significant changes in underlying patterns."
            )
        case _:
            lines.append(
                f"{len(findings)} data point(s) were identified as statistical outliers:"
            )
            for i, a in enumerate(findings, 1):
                lines.append(
                    f"{i}. Value: {format_number(a.value)}, {a.description} "
                    f"(z-score {a.deviation:.2f})"
                )
            lines.append(
                "These values fall outside the expected range based on statistical analysis."
            )
    return "\n".join(lines)


def render_insights(insights: DataInsights, focus_areas: list[str], tone: str) -> str:
    fmt = format_number
    lines = []
    match tone:
        case Tone.ACTIONABLE:
            lines += [
                "Key metrics overview:",
                f"- Total: {fmt(insights.total)}",
                f"- Average: {fmt(insights.average)}",
                f"- Range: {fmt(insights.min)} - {fmt(insights.max)}",
            ]
            if insights.median is not None:
                lines.append(f"- Median: {fmt(insights.median)}")
            if insights.std_dev is not None:
                lines.append(f"- Variability: {fmt(insights.std_dev)}")
            lines.append("Action items:")
            if insights.std_dev and insights.std_dev > insights.average * 0.5:
                lines.append(
                    "- High variability detected: investigate factors causing fluctuation."
                )
            if focus_areas:
                lines.append(f"- Review: {', '.join(focus_areas)}")
        case Tone.INSIGHTFUL:
            median = insights.median if insights.median is not None else insights.average
            lines.append(
                f"The dataset contains {fmt(insights.total)} in total value, with an "
                f"average of {fmt(insights.average)} per entry. Values range from "
                f"{fmt(insights.min)} to {fmt(insights.max)}, with a median of {fmt(median)}."
            )
            cv = insights.coefficient_of_variation
            if cv is not None:
                level = "low" if cv < 20 else "moderate" if cv < 50 else "high"
                lines.append(
                    f"Coefficient of variation is {cv:.1f}%, indicating {level} "
                    "variability in the data."
                )
        case _:
            lines += [
                "Summary statistics:",
                f"- Total: {fmt(insights.total)}",
                f"- Average: {fmt(insights.average)}",
                f"- Minimum: {fmt(insights.min)}",
                f"- Maximum: {fmt(insights.max)}",
            ]
            if insights.median is not None:
                lines.append(f"- Median: {fmt(insights.median)}")
            if insights.std_dev is not None:
                lines.append(f"- Standard Deviation: {fmt(insights.std_dev)}")
    return "\n".join(lines)


class Summarizer:
    """Turns a QueryResult into a narrative for one summary intent."""

    def __init__(
        self,
        deadband_pct: Optional[float] = None,
        anomaly_threshold: Optional[float] = None,
    ):
        cfg = settings.instance().analysis
        self.deadband_pct = cfg.deadband_pct if deadband_pct is None else deadband_pct
        self.anomaly_threshold = (
            cfg.anomaly_threshold if anomaly_threshold is None else anomaly_threshold
        )

    def primary_field(
        self, rows: list[Row], focus_areas: Optional[list[str]]
    ) -> Optional[str]:
        numeric = numeric_fields(rows)
        if focus_areas and focus_areas[0] in numeric:
            return focus_areas[0]
        return numeric[0] if numeric else None

    def summarize(self, intent: SummaryIntent, result: QueryResult) -> str:
        """
        Render the narrative for a summary intent.

        Args:
            intent: Validated SummaryIntent
            result: Rows produced for the intent's data source

        Returns:
            Narrative text; fixed messages for empty or non-numeric data
        """
        rows = result.data
        if not rows:
            return NO_DATA_MESSAGE

        value_field = self.primary_field(rows, intent.focus_areas)
        if value_field is None:
            return NO_NUMERIC_MESSAGE

        focus_areas = list(intent.focus_areas or [])
        tone = str(intent.tone)
        logger.debug(
            "summarizing",
            summary_type=str(intent.summary_type),
            value_field=value_field,
            rows=len(rows),
        )

        match intent.summary_type:
            case SummaryType.TREND:
                times = [f for f in date_fields(rows) if f != value_field]
                trend = analyze_trend(
                    rows, value_field, times[0] if times else None, self.deadband_pct
                )
                return render_trend(trend, focus_areas, tone)
            case SummaryType.COMPARISON:
                midpoint = len(rows) // 2
                comparison = compare_periods(
                    rows[midpoint:], rows[:midpoint], value_field, self.deadband_pct
                )
                return render_comparison(comparison, focus_areas, tone)
            case SummaryType.ANOMALY:
                findings = detect_anomalies(rows, value_field, self.anomaly_threshold)
                return render_anomalies(findings, tone)
            case _:
                insights = calculate_insights(rows, value_field)
                return render_insights(insights, focus_areas, tone)
