from acmesync.metrics.collector import MetricsCollector

__all__ = ["MetricsCollector"]
