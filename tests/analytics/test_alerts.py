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

from datetime import datetime, timedelta

import pytest

from insightgate.analytics.alerts import (
    Anomaly,
    AnomalyDetectionEngine,
    DetectionMethod,
    MetricDataPoint,
    ZScoreConfig,
    detect_and_create_alert,
)
from insightgate.analytics.stats import Severity

from conftest import TENANT_A, USER_A

NOW = datetime(2024, 6, 1)


def _history(count=60, days_back=60, values=(99.0, 101.0)):
    """Daily points ending yesterday, alternating between the given values"""
    start = NOW - timedelta(days=days_back)
    return [
        MetricDataPoint(start + timedelta(days=i), values[i % len(values)])
        for i in range(count)
    ]


@pytest.fixture
def engine() -> AnomalyDetectionEngine:
    return AnomalyDetectionEngine()


class TestAnomalyDetectionEngine:
    def test_defaults_come_from_settings(self, default_settings):
        default_settings.analysis.anomaly_threshold = 3.0
        engine = AnomalyDetectionEngine()
        assert engine.zscore.threshold == 3.0
        assert engine.zscore.window_size_days == 90
        assert engine.smoothing.window_size == 10

    def test_normal_value(self, engine):
        assert engine.detect_anomalies(TENANT_A, "revenue", 100.0, _history(), NOW) == []

    def test_spike_raises_both_detectors(self, engine):
        anomalies = engine.detect_anomalies(TENANT_A, "revenue", 130.0, _history(), NOW)

        assert [a.detection_method for a in anomalies] == [
            DetectionMethod.Z_SCORE,
            DetectionMethod.EXPONENTIAL_SMOOTHING,
        ]
        z = anomalies[0]
        assert z.baseline_mean == pytest.approx(100.0)
        assert z.baseline_std_dev == pytest.approx(1.0)
        assert z.z_score == pytest.approx(30.0)
        assert z.severity == Severity.CRITICAL
        assert len(z.data_points) == 60
        assert anomalies[1].severity == Severity.INFO
        assert anomalies[1].z_score == 0.0

    def test_insufficient_history(self, engine):
        assert engine.detect_anomalies(
            TENANT_A, "revenue", 500.0, _history(count=10), NOW
        ) == []

    def test_points_outside_window_are_ignored(self, engine):
        old = _history(count=40, days_back=200)
        recent = _history(count=10, days_back=10)
        assert engine.detect_anomalies(TENANT_A, "revenue", 500.0, old + recent, NOW) == []

    def test_custom_minimum(self):
        engine = AnomalyDetectionEngine(zscore=ZScoreConfig(min_data_points=5))
        anomalies = engine.detect_anomalies(
            TENANT_A, "revenue", 130.0, _history(count=6, days_back=6), NOW
        )
        assert anomalies[0].detection_method == DetectionMethod.Z_SCORE


class TestAlerts:
    def test_spike_alert(self, engine):
        z = engine.detect_anomalies(TENANT_A, "revenue", 130.0, _history(), NOW)[0]
        alert = engine.create_alert_from_anomaly(z, USER_A)

        assert alert.tenant_id == TENANT_A
        assert alert.user_id == USER_A
        assert alert.type == "anomaly"
        assert alert.title == "Unusual spike in revenue"
        assert alert.message == "revenue is 30.0% spike compared to the 90-day baseline."
        assert alert.metadata["detection_method"] == "z_score"
        assert alert.metadata["data_points_count"] == 60

    def test_drop_alert(self, engine):
        alert = detect_and_create_alert(
            TENANT_A, "revenue", 70.0, _history(), now=NOW, engine=engine
        )
        assert alert.title == "Unusual drop in revenue"
        assert alert.severity == Severity.CRITICAL
        assert alert.z_score == pytest.approx(-30.0)

    def test_trend_break_alert_direction_from_baseline(self, engine):
        anomaly = Anomaly(
            tenant_id=TENANT_A,
            metric_name="signups",
            detected_at=NOW,
            current_value=120.0,
            baseline_mean=100.0,
            baseline_std_dev=5.0,
            z_score=0.0,
            detection_method=DetectionMethod.EXPONENTIAL_SMOOTHING,
            window_size=10,
            severity=Severity.INFO,
        )
        alert = engine.create_alert_from_anomaly(anomaly)

        assert alert.title == "Unusual spike in signups"
        assert alert.message == "signups is 20.0% spike compared to the 10-point baseline."
        assert alert.metadata["detection_method"] == "exponential_smoothing"
        assert alert.user_id is None

    def test_no_alert_for_normal_value(self):
        assert detect_and_create_alert(TENANT_A, "revenue", 100.0, _history(), now=NOW) is None

    def test_most_severe_anomaly_wins(self, engine):
        alert = detect_and_create_alert(
            TENANT_A, "revenue", 130.0, _history(), now=NOW, engine=engine
        )
        assert alert.severity == Severity.CRITICAL
        assert alert.metadata["detection_method"] == "z_score"
