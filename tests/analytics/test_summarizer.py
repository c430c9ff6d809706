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

import math

import pytest

from insightgate.analytics import stats
from insightgate.analytics.intents import SummaryIntent
from insightgate.analytics.results import QueryMetadata, QueryResult
from insightgate.analytics.summarizer import (
    NO_ANOMALIES_MESSAGE,
    NO_DATA_MESSAGE,
    NO_NUMERIC_MESSAGE,
    Summarizer,
    analyze_trend,
    calculate_insights,
    compare_periods,
    detect_anomalies,
    format_number,
)


def _rows(values, name="amount"):
    return [{name: v} for v in values]


def _summary(summary_type, **kw) -> SummaryIntent:
    return SummaryIntent.model_validate(
        {"dataSource": {"resource": "revenue"}, "summaryType": summary_type, **kw}
    )


def _result(rows) -> QueryResult:
    return QueryResult(data=rows, metadata=QueryMetadata(row_count=len(rows)))


class TestStats:
    def test_population_std_dev(self):
        assert stats.std_dev([2, 4, 4, 4, 5, 5, 7, 9]) == 2.0
        assert stats.std_dev([]) == 0.0

    def test_median(self):
        assert stats.median([3, 1, 2]) == 2
        assert stats.median([4, 1, 3, 2]) == 2.5

    def test_z_score_on_flat_baseline(self):
        assert stats.z_score(5, 5, 0) == 0.0
        assert stats.z_score(6, 5, 0) == math.inf
        assert stats.z_score(4, 5, 0) == -math.inf

    def test_percentage_change(self):
        assert stats.percentage_change(100, 150) == 50.0
        assert stats.percentage_change(-100, -50) == 50.0
        assert stats.percentage_change(0, 10) == 0.0

    @pytest.mark.parametrize(
        "pct,label", [(4.9, "stable"), (-4.9, "stable"), (5.0, "up"), (-12, "down")]
    )
    def test_classify_change(self, pct, label):
        assert stats.classify_change(pct) == label

    def test_exponential_smoothing(self):
        assert stats.exponential_smoothing([10, 20, 20], 0.5) == [10, 15, 17.5]
        assert stats.exponential_smoothing([]) == []

    def test_detect_trend_change(self):
        assert stats.detect_trend_change(12, [10, 10], 0.1)
        assert not stats.detect_trend_change(10.5, [10, 10], 0.1)
        assert stats.detect_trend_change(1, [0])
        assert not stats.detect_trend_change(1, [])

    @pytest.mark.parametrize(
        "z,severity",
        [
            (4.1, stats.Severity.CRITICAL),
            (-3.5, stats.Severity.WARNING),
            (2.5, stats.Severity.INFO),
        ],
    )
    def test_severity_for(self, z, severity):
        assert stats.severity_for(z, 2.0) == severity


class TestAnalysis:
    def test_trend_up(self):
        trend = analyze_trend(_rows([100, 100, 100, 150]), "amount")
        assert trend.direction == "up"
        assert trend.percentage == pytest.approx(50.0)
        assert trend.period == "4 data points"

    def test_trend_within_deadband_is_stable(self):
        trend = analyze_trend(_rows([100, 104]), "amount")
        assert trend.direction == "stable"

    def test_trend_orders_by_time_field(self):
        rows = [
            {"date": "2024-03-01", "amount": 50},
            {"date": "2024-01-01", "amount": 100},
        ]
        trend = analyze_trend(rows, "amount", "date")
        assert trend.direction == "down"
        assert trend.percentage == pytest.approx(50.0)

    def test_trend_needs_two_points(self):
        assert analyze_trend(_rows([1]), "amount").period == "insufficient data"

    def test_single_outlier_in_large_series(self):
        values = [1 if i % 2 else -1 for i in range(1000)] + [3]
        findings = detect_anomalies(_rows(values), "amount", threshold=2.0)

        assert len(findings) == 1
        assert findings[0].row_index == 1000
        assert findings[0].value == 3
        assert findings[0].deviation == pytest.approx(3.0, abs=0.05)

    def test_no_anomalies_on_flat_or_short_series(self):
        assert detect_anomalies(_rows([5, 5, 5, 5]), "amount") == []
        assert detect_anomalies(_rows([1, 100]), "amount") == []

    def test_compare_periods(self):
        comparison = compare_periods(_rows([30, 10]), _rows([10, 10]), "amount")
        assert comparison.current == 40
        assert comparison.previous == 20
        assert comparison.percentage_change == pytest.approx(100.0)
        assert comparison.verdict == "increase"

    def test_compare_without_previous(self):
        comparison = compare_periods(_rows([1]), None, "amount")
        assert comparison.previous is None
        assert comparison.verdict == "no_change"

    def test_insights(self):
        insights = calculate_insights(_rows([1, 2, 3, 4]), "amount")
        assert (insights.total, insights.average) == (10, 2.5)
        assert (insights.min, insights.max, insights.median) == (1, 4, 2.5)

    @pytest.mark.parametrize(
        "value,text",
        [(12.5, "12.50"), (1500, "1.50K"), (-2_500_000, "-2.50M"), (3e9, "3.00B")],
    )
    def test_format_number(self, value, text):
        assert format_number(value) == text


class TestSummarizer:
    @pytest.fixture
    def summarizer(self) -> Summarizer:
        return Summarizer()

    def test_empty_result(self, summarizer):
        assert summarizer.summarize(_summary("trend"), _result([])) == NO_DATA_MESSAGE

    def test_non_numeric_result(self, summarizer):
        rows = [{"name": "Alice"}, {"name": "Bob"}]
        assert summarizer.summarize(_summary("summary"), _result(rows)) == NO_NUMERIC_MESSAGE

    def test_neutral_trend(self, summarizer):
        text = summarizer.summarize(
            _summary("trend"), _result(_rows([100, 100, 100, 150]))
        )
        assert text == "Trend analysis shows an upward movement of 50.0% over 4 data points."

    @pytest.mark.parametrize(
        "tone,opening",
        [("actionable", "Great progress!"), ("insightful", "Analysis reveals")],
    )
    def test_trend_tones(self, summarizer, tone, opening):
        text = summarizer.summarize(
            _summary("trend", tone=tone), _result(_rows([100, 150]))
        )
        assert text.startswith(opening)

    def test_focus_areas_pick_field_and_are_listed(self, summarizer):
        rows = [{"amount": 1, "cost": 100}, {"amount": 1, "cost": 50}]
        text = summarizer.summarize(
            _summary("trend", focusAreas=["cost"]), _result(rows)
        )
        assert "downward movement of 50.0%" in text
        assert text.endswith("Key focus areas include: cost.")

    def test_comparison_splits_rows_in_half(self, summarizer):
        text = summarizer.summarize(
            _summary("comparison"), _result(_rows([10, 10, 20, 20]))
        )
        assert text == (
            "Period comparison: 40.00 (current) vs 20.00 (previous), "
            "representing a 100.0% increase."
        )

    def test_anomaly_without_findings(self, summarizer):
        text = summarizer.summarize(_summary("anomaly"), _result(_rows([1, 2, 3])))
        assert text == NO_ANOMALIES_MESSAGE

    def test_anomaly_with_finding(self, summarizer):
        values = [10] * 20 + [100]
        text = summarizer.summarize(
            _summary("anomaly", tone="actionable"), _result(_rows(values))
        )
        assert text.startswith("CRITICAL: 1 significant anomaly(ies)")
        assert "Value of 100.00" in text

    def test_statistics_summary(self, summarizer):
        text = summarizer.summarize(_summary("summary"), _result(_rows([1, 2, 3, 4])))
        assert text.splitlines()[:3] == [
            "Summary statistics:",
            "- Total: 10.00",
            "- Average: 2.50",
        ]

    def test_configured_deadband(self, default_settings):
        default_settings.analysis.deadband_pct = 60.0
        text = Summarizer().summarize(
            _summary("trend"), _result(_rows([100, 150]))
        )
        assert "stable" in text

    def test_neutral_downward_trend(self, summarizer):
        text = summarizer.summarize(_summary("trend"), _result(_rows([200, 100])))
        assert text == "Trend analysis shows a downward movement of 50.0% over 2 data points."


TONES = ["neutral", "insightful", "actionable"]


class TestToneKeepsNumbers:
    """Each tone words the narrative differently around the same computed values"""

    @pytest.mark.parametrize("tone", TONES)
    @pytest.mark.parametrize("values", [[100, 120, 150], [150, 90, 60]])
    def test_trend(self, tone, values):
        rows = _rows(values)
        trend = analyze_trend(rows, "amount")
        text = Summarizer().summarize(_summary("trend", tone=tone), _result(rows))

        assert f"{trend.percentage:.1f}%" in text
        assert trend.period in text

    @pytest.mark.parametrize("tone", TONES)
    @pytest.mark.parametrize("values", [[10, 10, 20, 20], [40, 40, 10, 10]])
    def test_comparison(self, tone, values):
        rows = _rows(values)
        comparison = compare_periods(rows[2:], rows[:2], "amount")
        text = Summarizer().summarize(_summary("comparison", tone=tone), _result(rows))

        assert format_number(comparison.current) in text
        assert format_number(comparison.previous) in text
        assert f"{abs(comparison.percentage_change):.1f}%" in text

    @pytest.mark.parametrize("tone", TONES)
    def test_anomaly(self, tone):
        rows = _rows([10] * 20 + [100])
        (finding,) = detect_anomalies(rows, "amount")
        text = Summarizer().summarize(_summary("anomaly", tone=tone), _result(rows))

        assert format_number(finding.value) in text
        assert finding.description in text

    def test_anomaly_z_score(self):
        rows = _rows([10] * 20 + [100])
        (finding,) = detect_anomalies(rows, "amount")
        text = Summarizer().summarize(_summary("anomaly"), _result(rows))
        assert f"z-score {finding.deviation:.2f}" in text

    @pytest.mark.parametrize("tone", TONES)
    def test_summary(self, tone):
        rows = _rows([1, 2, 3, 10])
        insights = calculate_insights(rows, "amount")
        text = Summarizer().summarize(_summary("summary", tone=tone), _result(rows))

        for value in (
            insights.total,
            insights.average,
            insights.min,
            insights.max,
            insights.median,
        ):
            assert format_number(value) in text

