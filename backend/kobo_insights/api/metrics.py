"""
Metrics endpoint for performance monitoring.
"""
from fastapi import APIRouter
from kobo_insights.core.performance import PerformanceMonitor
from kobo_insights.core.cache import get_analysis_cache

router = APIRouter()


@router.get("/metrics")
async def get_metrics():
    """
    Get performance metrics and cache statistics.

    Covers analysis runs, chart renders, exports, Kobo fetches and
    request durations.
    """
    return {
        'performance': PerformanceMonitor.get_all_metrics(),
        'cache': {'analysis_cache': get_analysis_cache().get_stats()},
    }
