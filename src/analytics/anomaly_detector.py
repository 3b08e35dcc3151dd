"""
Anomaly Detection Module

Two kinds of anomaly surface on the dashboard:

- Suspicious orders: a per-order heuristic (high value, failed payment,
  cancelled). It is a count only and never blocks a write.
- Sales anomalies: statistical outliers in the daily revenue and order-count
  series (Z-score against the window mean, and day-over-day percentage change).
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, List, Sequence

import numpy as np
import structlog

from src.domain.models import Order, OrderStatus, PaymentStatus

logger = structlog.get_logger(__name__)


class AnomalyType(str, Enum):
    """Types of anomalies detected"""
    SPIKE = "spike"  # Sudden increase
    DROP = "drop"  # Sudden decrease


class AnomalySeverity(str, Enum):
    """Severity levels for anomalies"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"


@dataclass
class AnomalyResult:
    """Single anomaly detection result"""
    metric_name: str
    anomaly_type: AnomalyType
    severity: AnomalySeverity
    day: date
    value: float
    expected_value: float
    deviation: float  # Z-score or percentage change
    threshold: float
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_critical(self) -> bool:
        return self.severity in [AnomalySeverity.CRITICAL, AnomalySeverity.HIGH]


# =============================================================================
# ORDER FLAG HEURISTIC
# =============================================================================

def is_suspicious(order: Order, high_value_threshold: float) -> bool:
    return (
        order.final_amount > high_value_threshold
        or order.payment_status == PaymentStatus.FAILED
        or order.status == OrderStatus.CANCELLED
    )


def count_suspicious(orders: Iterable[Order], high_value_threshold: float) -> int:
    return sum(1 for order in orders if is_suspicious(order, high_value_threshold))


# =============================================================================
# SERIES DETECTOR
# =============================================================================

def _severity(magnitude: float, threshold: float) -> AnomalySeverity:
    if magnitude > threshold * 2:
        return AnomalySeverity.CRITICAL
    if magnitude > threshold * 1.5:
        return AnomalySeverity.HIGH
    return AnomalySeverity.MEDIUM


class SeriesAnomalyDetector:
    """
    Anomaly detector for daily sales series.

    Example:
        detector = SeriesAnomalyDetector(z_threshold=3.0)
        detector.add_metric("revenue", days, revenue_values)
        anomalies = detector.detect()
    """

    def __init__(self, z_threshold: float = 3.0, pct_change_threshold: float = 50.0):
        self.z_threshold = z_threshold
        self.pct_change_threshold = pct_change_threshold
        self._metrics: Dict[str, np.ndarray] = {}
        self._days: Dict[str, List[date]] = {}

    def add_metric(self, name: str, days: Sequence[date], values: Sequence[float]) -> "SeriesAnomalyDetector":
        if len(days) != len(values):
            raise ValueError(f"{name}: {len(days)} days but {len(values)} values")
        self._metrics[name] = np.asarray(values, dtype=float)
        self._days[name] = list(days)
        return self

    def _detect_zscore_anomalies(self, name: str, values: np.ndarray) -> List[AnomalyResult]:
        """Values far from the window mean"""
        anomalies: List[AnomalyResult] = []
        if len(values) < 3:
            return anomalies

        mean = float(np.mean(values))
        std = float(np.std(values))
        if std == 0:
            return anomalies

        z_scores = np.abs((values - mean) / std)
        for i, (value, z_score) in enumerate(zip(values, z_scores)):
            if z_score > self.z_threshold:
                anomalies.append(AnomalyResult(
                    metric_name=name,
                    anomaly_type=AnomalyType.SPIKE if value > mean else AnomalyType.DROP,
                    severity=_severity(float(z_score), self.z_threshold),
                    day=self._days[name][i],
                    value=float(value),
                    expected_value=round(mean, 2),
                    deviation=round(float(z_score), 2),
                    threshold=self.z_threshold,
                    message=f"{name} value {value:.2f} is {z_score:.2f} standard deviations from mean {mean:.2f}",
                    details={"index": i, "method": "z-score"},
                ))
        return anomalies

    def _detect_pct_change_anomalies(self, name: str, values: np.ndarray) -> List[AnomalyResult]:
        """Sudden day-over-day spikes and drops"""
        anomalies: List[AnomalyResult] = []
        for i in range(1, len(values)):
            prev_value = values[i - 1]
            curr_value = values[i]
            if prev_value == 0:
                continue

            pct_change = ((curr_value - prev_value) / abs(prev_value)) * 100
            if abs(pct_change) > self.pct_change_threshold:
                anomalies.append(AnomalyResult(
                    metric_name=name,
                    anomaly_type=AnomalyType.SPIKE if pct_change > 0 else AnomalyType.DROP,
                    severity=_severity(abs(float(pct_change)), self.pct_change_threshold),
                    day=self._days[name][i],
                    value=float(curr_value),
                    expected_value=float(prev_value),
                    deviation=round(float(pct_change), 2),
                    threshold=self.pct_change_threshold,
                    message=f"{name} changed by {pct_change:.1f}% from {prev_value:.2f} to {curr_value:.2f}",
                    details={"index": i, "method": "pct_change"},
                ))
        return anomalies

    def detect(self) -> List[AnomalyResult]:
        """
        Run both methods over every metric.

        An (metric, type, day) triple is reported once; the Z-score finding
        wins over the percentage-change one.
        """
        found: List[AnomalyResult] = []
        for name, values in self._metrics.items():
            found.extend(self._detect_zscore_anomalies(name, values))
            found.extend(self._detect_pct_change_anomalies(name, values))

        unique: List[AnomalyResult] = []
        seen = set()
        for anomaly in found:
            key = (anomaly.metric_name, anomaly.anomaly_type, anomaly.day)
            if key not in seen:
                seen.add(key)
                unique.append(anomaly)

        unique.sort(key=lambda a: (a.day, a.metric_name))
        critical = sum(1 for a in unique if a.is_critical)
        if critical:
            logger.warning("Critical sales anomalies detected", critical=critical, total=len(unique))
        else:
            logger.info("Sales anomaly detection complete", total=len(unique))
        return unique
