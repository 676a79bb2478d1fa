"""Logging and timing helpers shared by the interview core and the roadmap planner."""
from .logger import log_event
from .tracing import span

__all__ = ["log_event", "span"]
