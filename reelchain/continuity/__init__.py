from .planner import ContinuityPlanner, stable_take_id, validate_plan

__all__ = ["ContinuityPlanner", "stable_take_id", "validate_plan"]
