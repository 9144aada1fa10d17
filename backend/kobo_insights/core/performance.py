"""
Performance monitoring and metrics collection.

Every tracked operation (analysis runs, chart renders, Kobo fetches, HTTP
requests) records its duration here; /api/metrics reports the aggregates.
"""
import inspect
import time
import logging
from typing import Dict, Optional, Any, List
from functools import wraps
from collections import defaultdict
import threading

logger = logging.getLogger(__name__)

MAX_SAMPLES_PER_METRIC = 1000

# Thread-safe metrics storage
_metrics_lock = threading.Lock()
_metrics: Dict[str, List[Dict[str, Any]]] = defaultdict(list)


def _percentile(ordered: List[float], fraction: float) -> float:
    if not ordered:
        return 0
    return ordered[min(int(len(ordered) * fraction), len(ordered) - 1)]


class PerformanceMonitor:
    """Monitor and track performance metrics."""

    @staticmethod
    def record_metric(name: str, value: float, metadata: Optional[Dict[str, Any]] = None):
        """
        Record a performance metric.

        Args:
            name: Metric name (e.g., 'analyze_dataset', 'render_chart')
            value: Metric value (usually duration in seconds)
            metadata: Optional metadata (correlation_id, status, error)
        """
        with _metrics_lock:
            samples = _metrics[name]
            samples.append({
                'value': value,
                'timestamp': time.time(),
                'metadata': metadata or {}
            })
            if len(samples) > MAX_SAMPLES_PER_METRIC:
                del samples[:-MAX_SAMPLES_PER_METRIC]

    @staticmethod
    def _stats(samples: List[Dict[str, Any]]) -> Optional[Dict[str, float]]:
        if not samples:
            return None
        values = sorted(s['value'] for s in samples)
        errors = sum(1 for s in samples if s['metadata'].get('status') == 'error')
        return {
            'count': len(values),
            'errors': errors,
            'min': values[0],
            'max': values[-1],
            'mean': sum(values) / len(values),
            'p50': _percentile(values, 0.5),
            'p95': _percentile(values, 0.95),
            'p99': _percentile(values, 0.99),
        }

    @staticmethod
    def get_stats(metric_name: str) -> Optional[Dict[str, float]]:
        """
        Get statistics for a metric.

        Returns:
            Dict with count, errors, min, max, mean and percentiles, or None if no data
        """
        with _metrics_lock:
            return PerformanceMonitor._stats(list(_metrics.get(metric_name, [])))

    @staticmethod
    def get_all_metrics() -> Dict[str, Dict[str, float]]:
        """Get statistics for all metrics."""
        with _metrics_lock:
            snapshot = {name: list(samples) for name, samples in _metrics.items()}
        return {name: PerformanceMonitor._stats(samples) for name, samples in snapshot.items()}

    @staticmethod
    def clear_metrics():
        """Clear all metrics (useful for testing)."""
        with _metrics_lock:
            _metrics.clear()


def _correlation_id(args, kwargs) -> Optional[str]:
    request = kwargs.get('request')
    if request is None and args and hasattr(args[0], 'state'):
        request = args[0]
    if request is None or not hasattr(request, 'state'):
        return None
    return getattr(request.state, 'correlation_id', None)


def _finish(metric_name: str, start_time: float, correlation_id: Optional[str], error: Optional[Exception] = None):
    duration = time.time() - start_time
    metadata = {'correlation_id': correlation_id, 'status': 'error' if error else 'success'}
    if error is not None:
        metadata['error'] = str(error)
    PerformanceMonitor.record_metric(metric_name, duration, metadata)

    if error is None:
        logger.debug(
            f"{metric_name} completed in {duration:.3f}s",
            extra={'metric': metric_name, 'duration': duration}
        )
    else:
        logger.error(
            f"{metric_name} failed after {duration:.3f}s: {error}",
            extra={'metric': metric_name, 'duration': duration},
        )


def track_performance(metric_name: str):
    """
    Decorator to track function execution time.

    Works on plain and async functions; exceptions are recorded and re-raised.

    Usage:
        @track_performance("analyze_dataset")
        def analyze_dataset(...):
            ...
    """
    def decorator(func):
        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                start_time = time.time()
                correlation_id = _correlation_id(args, kwargs)
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _finish(metric_name, start_time, correlation_id, e)
                    raise
                _finish(metric_name, start_time, correlation_id)
                return result

            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            start_time = time.time()
            correlation_id = _correlation_id(args, kwargs)
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _finish(metric_name, start_time, correlation_id, e)
                raise
            _finish(metric_name, start_time, correlation_id)
            return result

        return sync_wrapper

    return decorator
