"""Source quality gating, dish validation and the strategy learning loop."""

from scout.quality.gate import DishValidation, QualityGate, SourceHealth, ValidationReport
from scout.quality.learning import LearningLoop, LearningResult, StrategyInsight

__all__ = [
    "DishValidation",
    "LearningLoop",
    "LearningResult",
    "QualityGate",
    "SourceHealth",
    "StrategyInsight",
    "ValidationReport",
]
