from .config import (
    backoff_from_config,
    constraints_from_config,
    cost_estimator_from_config,
    duration_range_from_config,
    get_default_config,
    load_config,
    require,
)

__all__ = [
    "backoff_from_config",
    "constraints_from_config",
    "cost_estimator_from_config",
    "duration_range_from_config",
    "get_default_config",
    "load_config",
    "require",
]
