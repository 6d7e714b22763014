"""
Metrics Module: Diagnostics, counters, histograms.

Counters for inputs received/accepted, drop counters keyed by reason code,
and bounded histograms for residuals and latencies.

Usage:
    from courier_core.metrics import MetricsCollector

    metrics = MetricsCollector()
    metrics.increment('samples_in')
    metrics.increment_drop('jump_detected')
    metrics.record_histogram('anchor_residual_m', 0.42)
"""

from .counters import CounterSnapshot, MetricsCollector

__all__ = ['CounterSnapshot', 'MetricsCollector']
