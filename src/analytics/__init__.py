"""
E-Commerce Back-Office
Analytics Module - KPIs, series, breakdowns, segmentation and anomalies
"""
from .aggregator import MetricsAggregator
from .anomaly_detector import SeriesAnomalyDetector, count_suspicious, is_suspicious
from .calculations import growth_rate
from .counters import CounterService
from .segmentation import recommendations, risk_level, risk_score, segment_for

__all__ = [
    "MetricsAggregator",
    "SeriesAnomalyDetector",
    "count_suspicious",
    "is_suspicious",
    "growth_rate",
    "CounterService",
    "recommendations",
    "risk_level",
    "risk_score",
    "segment_for",
]
