"""
Reference Processing Module.

Lock validation, criteria resolution and rubric guidance for locked
briefs and unit specifications.
"""

from assessor.references.criteria import CriteriaResolver, ReferenceIssue, ReferenceValidator
from assessor.references.rubric import RubricGuidance, RubricHintParser

__all__ = [
    "CriteriaResolver",
    "ReferenceIssue",
    "ReferenceValidator",
    "RubricGuidance",
    "RubricHintParser",
]
