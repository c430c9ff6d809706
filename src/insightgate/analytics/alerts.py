"""
Metric Alerting - Anomaly detection over metric time series.

Two detectors run over a metric's history:
- z-score of the current value against a rolling window (default 90 days)
- exponential smoothing of the most recent values to catch trend breaks

They use the same statistics primitives as the summarizer.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any, Optional

import structlog

from insightgate.analytics import stats
from insightgate.config import settings

logger = structlog.get_logger(__name__)


class DetectionMethod(StrEnum):
    Z_SCORE = "z_score"
    EXPONENTIAL_SMOOTHING = "exponential_smoothing"


@dataclass(frozen=True)
class MetricDataPoint:
    timestamp: datetime
    value: float


@dataclass
class ZScoreConfig:
    threshold: float = stats.DEFAULT_Z_THRESHOLD
    window_size_days: int = 90
    min_data_points: int = 30


@dataclass
class SmoothingConfig:
    alpha: float = stats.DEFAULT_SMOOTHING_ALPHA
    window_size: int = 10
    change_threshold: float = stats.DEFAULT_CHANGE_THRESHOLD


@dataclass
class Anomaly:
    tenant_id: str
    metric_name: str
    detected_at: datetime
    current_value: float
    baseline_mean: float
    baseline_std_dev: float
    z_score: float
    detection_method: DetectionMethod
    window_size: int
    severity: stats.Severity
    data_points: list[MetricDataPoint] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class AlertRequest:
    """Alert ready to be persisted or delivered by the caller."""

    tenant_id: str
    severity: stats.Severity
    title: str
    message: str
    metric_name: str
    metric_value: float
    baseline_value: float
    z_score: float
    user_id: Optional[str] = None
    type: str = "anomaly"
    metadata: dict[str, Any] = field(default_factory=dict)


class AnomalyDetectionEngine:
    """
    Statistical anomaly detection for metric monitoring.

    Stateless apart from its configuration, so one instance can serve every
    tenant.
    """

    def __init__(
        self,
        zscore: Optional[ZScoreConfig] = None,
        smoothing: Optional[SmoothingConfig] = None,
    ):
        """
        Initialize the engine.

        Args:
            zscore: Rolling-window z-score settings; defaults from `analysis`
            smoothing: Exponential smoothing settings; defaults from `analysis`
        """
        cfg = settings.instance().analysis
        self.zscore = zscore or ZScoreConfig(
            threshold=cfg.anomaly_threshold,
            window_size_days=cfg.window_size_days,
            min_data_points=cfg.min_data_points,
        )
        self.smoothing = smoothing or SmoothingConfig(
            alpha=cfg.smoothing_alpha,
            window_size=cfg.smoothing_window,
            change_threshold=cfg.change_threshold,
        )

    def detect_anomalies(
        self,
        tenant_id: str,
        metric_name: str,
        current_value: float,
        history: list[MetricDataPoint],
        now: Optional[datetime] = None,
    ) -> list[Anomaly]:
        """
        Check a new metric value against its history.

        Args:
            tenant_id: Tenant that owns the metric
            metric_name: Name of the metric
            current_value: Newly observed value
            history: Earlier observations, oldest first
            now: Timestamp of the observation (defaults to now)

        Returns:
            Zero, one or two anomalies (z-score and/or trend break)
        """
        now = now or datetime.now()
        window_start = now - timedelta(days=self.zscore.window_size_days)
        windowed = [dp for dp in history if window_start <= dp.timestamp <= now]

        if len(windowed) < self.zscore.min_data_points:
            logger.debug(
                "insufficient_data_points",
                metric=metric_name,
                points=len(windowed),
                required=self.zscore.min_data_points,
            )
            return []

        anomalies = []
        values = [dp.value for dp in windowed]
        mu = stats.mean(values)
        sigma = stats.std_dev(values, mu)
        z = stats.z_score(current_value, mu, sigma)

        if stats.is_anomalous(z, self.zscore.threshold):
            anomalies.append(
                Anomaly(
                    tenant_id=tenant_id,
                    metric_name=metric_name,
                    detected_at=now,
                    current_value=current_value,
                    baseline_mean=mu,
                    baseline_std_dev=sigma,
                    z_score=z,
                    detection_method=DetectionMethod.Z_SCORE,
                    window_size=self.zscore.window_size_days,
                    severity=stats.severity_for(z, self.zscore.threshold),
                    data_points=windowed,
                )
            )

        recent = [dp.value for dp in history[-self.smoothing.window_size :]]
        smoothed = stats.exponential_smoothing(recent, self.smoothing.alpha)
        if stats.detect_trend_change(
            current_value, smoothed, self.smoothing.change_threshold
        ):
            anomalies.append(
                Anomaly(
                    tenant_id=tenant_id,
                    metric_name=metric_name,
                    detected_at=now,
                    current_value=current_value,
                    baseline_mean=smoothed[-1] if smoothed else mu,
                    baseline_std_dev=sigma,
                    z_score=0.0,
                    detection_method=DetectionMethod.EXPONENTIAL_SMOOTHING,
                    window_size=self.smoothing.window_size,
                    severity=stats.Severity.INFO,
                    data_points=windowed,
                )
            )

        if anomalies:
            logger.info(
                "metric_anomalies_detected",
                metric=metric_name,
                count=len(anomalies),
                methods=[str(a.detection_method) for a in anomalies],
            )
        return anomalies

    def create_alert_from_anomaly(
        self, anomaly: Anomaly, user_id: Optional[str] = None
    ) -> AlertRequest:
        # trend breaks carry no z-score, so their direction comes from the baseline
        rising = (
            anomaly.z_score > 0
            if anomaly.z_score
            else anomaly.current_value > anomaly.baseline_mean
        )
        direction = "spike" if rising else "drop"
        change = stats.percentage_change(anomaly.baseline_mean, anomaly.current_value)

        unit = "day" if anomaly.detection_method == DetectionMethod.Z_SCORE else "point"
        return AlertRequest(
            tenant_id=anomaly.tenant_id,
            user_id=user_id,
            severity=anomaly.severity,
            title=f"Unusual {direction} in {anomaly.metric_name}",
            message=f"{anomaly.metric_name} is {abs(change):.1f}% {direction} compared "
            f"to the {anomaly.window_size}-{unit} baseline.",
            metric_name=anomaly.metric_name,
            metric_value=anomaly.current_value,
            baseline_value=anomaly.baseline_mean,
            z_score=anomaly.z_score,
            metadata={
                "detection_method": str(anomaly.detection_method),
                "baseline_std_dev": anomaly.baseline_std_dev,
                "window_size": anomaly.window_size,
                "data_points_count": len(anomaly.data_points),
            },
        )


def detect_and_create_alert(
    tenant_id: str,
    metric_name: str,
    current_value: float,
    history: list[MetricDataPoint],
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
    engine: Optional[AnomalyDetectionEngine] = None,
) -> Optional[AlertRequest]:
    """Alert for the most severe anomaly in a new value, or None."""
    engine = engine or AnomalyDetectionEngine()
    anomalies = engine.detect_anomalies(
        tenant_id, metric_name, current_value, history, now
    )
    if not anomalies:
        return None

    worst = min(anomalies, key=lambda a: stats.SEVERITY_ORDER[a.severity])
    return engine.create_alert_from_anomaly(worst, user_id)
