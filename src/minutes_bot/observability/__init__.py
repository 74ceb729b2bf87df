"""Observability package for processing metrics.

Provides:
- ProcessingMetrics: Process-wide job outcome counters and mean duration
- MetricsSnapshot: Point-in-time copy served by /metrics and /health
"""
