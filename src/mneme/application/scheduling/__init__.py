# Application Scheduling Package
from .scheduler import (
    ButtonScaleStrategy,
    QualityScaleStrategy,
    ScaleStrategy,
    compute_next_state,
    get_strategy,
    normalize_state,
    round_half_up,
)

__all__ = [
    "ScaleStrategy",
    "QualityScaleStrategy",
    "ButtonScaleStrategy",
    "compute_next_state",
    "get_strategy",
    "normalize_state",
    "round_half_up",
]
