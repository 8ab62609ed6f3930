"""
app/scheduler package marker.
"""

from app.scheduler.dispatcher import ComputationProgress, IntelligenceDispatcher, build_dispatch_scheduler

__all__ = [
    "ComputationProgress",
    "IntelligenceDispatcher",
    "build_dispatch_scheduler",
]
