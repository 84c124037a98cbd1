"""
Metrics Module: diagnostics for devices and result delivery.

Every failed device transaction, rejected reading or cached result is
counted against a failure reason code.

Usage:
    from polyfield_core.metrics import get_metrics

    metrics = get_metrics()
    metrics.increment('edm_reads')
    metrics.increment_failure('checksum_mismatch')
    metrics.record_histogram('edm_pair_delta_mm', 1.5)
"""

from .counters import FailureReason, Histogram, HistogramStats, MetricsCollector

# Global singleton for easy access
_global_metrics = None


def get_metrics() -> MetricsCollector:
    """
    Get the global metrics collector singleton.

    Returns:
        MetricsCollector instance
    """
    global _global_metrics
    if _global_metrics is None:
        _global_metrics = MetricsCollector()
    return _global_metrics


def reset_metrics():
    """Reset global metrics (for testing)."""
    global _global_metrics
    _global_metrics = MetricsCollector()


__all__ = [
    'FailureReason',
    'Histogram',
    'HistogramStats',
    'MetricsCollector',
    'get_metrics',
    'reset_metrics',
]
