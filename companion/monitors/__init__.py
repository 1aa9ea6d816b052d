"""Monitoring loop implementations for Desktop Companion.

Modules:
    sensor_loop: Timer-driven collect and publish loop with backoff
    companion: Startup orchestration tying every component together
"""

from .companion import CompanionAgent
from .sensor_loop import LoopStatus, SensorLoop

__all__ = ["CompanionAgent", "LoopStatus", "SensorLoop"]
