"""
Evidence Module.

Modality requirement extraction from briefs, evidence detection in
submissions, and compliance between the two.
"""

from assessor.evidence.compliance import evaluate_compliance, found_modalities
from assessor.evidence.detector import detect_evidence
from assessor.evidence.requirements import ModalityRequirementExtractor, normalize_text

__all__ = [
    "ModalityRequirementExtractor",
    "detect_evidence",
    "evaluate_compliance",
    "found_modalities",
    "normalize_text",
]
