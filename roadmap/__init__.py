"""Deterministic study roadmap planner."""
from .planner import RULE_SET_VERSION, Roadmap, RoadmapPlanner, RoadmapRequest

__all__ = ["RULE_SET_VERSION", "Roadmap", "RoadmapPlanner", "RoadmapRequest"]
