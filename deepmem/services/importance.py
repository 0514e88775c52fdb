"""
Importance scoring for candidate memories.

Weights favor content that is both recurrent and explicitly intentional over merely
long text:

- frequency 30% (saturates at 10 occurrences)
- novelty 25%
- user_intent 30%
- length 15% (saturates at 2000 characters)
"""

import math
from typing import Any, Mapping, Optional


def clamp(value: Any, low: float, high: float) -> float:
    """Clamp a value into [low, high]; non-numeric or non-finite values become low."""
    if isinstance(value, bool):
        value = float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return low
    if not math.isfinite(number):
        return low
    return max(low, min(high, number))


def _field(signals: Any, name: str) -> Any:
    if isinstance(signals, Mapping):
        return signals.get(name)
    return getattr(signals, name, None)


class ImportanceScorer:
    """Pure mapping from raw signals to a normalized importance value."""

    FREQUENCY_WEIGHT = 0.30
    NOVELTY_WEIGHT = 0.25
    USER_INTENT_WEIGHT = 0.30
    LENGTH_WEIGHT = 0.15

    FREQUENCY_SATURATION = 10.0
    LENGTH_SATURATION = 2000.0

    def score(self, signals: Optional[Any]) -> float:
        """Score a set of signals.

        Args:
            signals: Mapping or object with frequency, novelty, user_intent and length;
                missing fields count as 0

        Returns:
            Importance in [0, 1]; 0 when signals is None
        """
        if signals is None:
            return 0.0

        frequency = clamp(_field(signals, 'frequency'), 0.0, 100.0)
        novelty = clamp(_field(signals, 'novelty'), 0.0, 1.0)
        user_intent = clamp(_field(signals, 'user_intent'), 0.0, 1.0)
        length = clamp(_field(signals, 'length'), 0.0, 10000.0)

        frequency_score = min(frequency / self.FREQUENCY_SATURATION, 1.0)
        length_score = min(length / self.LENGTH_SATURATION, 1.0)

        total = (self.FREQUENCY_WEIGHT * frequency_score + self.NOVELTY_WEIGHT * novelty +
                 self.USER_INTENT_WEIGHT * user_intent + self.LENGTH_WEIGHT * length_score)
        return clamp(total, 0.0, 1.0)


_default_scorer = ImportanceScorer()


def compute_importance(signals: Optional[Any]) -> float:
    return _default_scorer.score(signals)
