"""
Confidence policy.

Caps the model's self-reported confidence when required modality evidence
is missing. Both the uncapped and the final value are kept for audit.
"""

import math
from typing import Any

from assessor.models import ConfidencePolicy

DEFAULT_CONFIDENCE = 0.5
MIN_CAP = 0.2
MAX_CAP = 0.95


def normalize_model_confidence(value: Any) -> float:
    """Clamp model confidence into [0, 1], defaulting to 0.5 when not finite."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE
    number = float(value)
    if not math.isfinite(number):
        return DEFAULT_CONFIDENCE
    return max(0.0, min(1.0, number))


def apply_confidence_policy(
    model_confidence: Any, missing_count: int, confidence_cap: float
) -> ConfidencePolicy:
    """
    Compute the final confidence.

    Args:
        model_confidence: Confidence reported by the model.
        missing_count: Number of failing modality compliance rows.
        confidence_cap: Configured cap (clamped to [0.2, 0.95]).

    Returns:
        ConfidencePolicy trace. ``was_capped`` is True exactly when
        evidence is missing and the model confidence exceeded the cap.
    """
    cap = max(MIN_CAP, min(MAX_CAP, float(confidence_cap)))
    confidence = normalize_model_confidence(model_confidence)
    should_cap = missing_count > 0 and confidence > cap

    return ConfidencePolicy(
        model_confidence=confidence,
        confidence_cap=cap,
        missing_count=missing_count,
        final_confidence=cap if should_cap else confidence,
        was_capped=should_cap,
    )
