"""
Grading Module.

Readiness gate, prompt construction, model invocation, decision
validation, grade and confidence policies, and the orchestrating engine.
"""

from assessor.grading.confidence import apply_confidence_policy
from assessor.grading.engine import GradingEngine, GradingOutcome
from assessor.grading.llm_client import LLMClient, LLMError
from assessor.grading.policy import apply_grade_policy, decision_diff, evidence_density
from assessor.grading.prompt_builder import GradingPrompt, PromptBuilder
from assessor.grading.readiness import ReadinessThresholds, evaluate_readiness
from assessor.grading.scorer import DecisionValidator

__all__ = [
    "DecisionValidator",
    "GradingEngine",
    "GradingOutcome",
    "GradingPrompt",
    "LLMClient",
    "LLMError",
    "PromptBuilder",
    "ReadinessThresholds",
    "apply_confidence_policy",
    "apply_grade_policy",
    "decision_diff",
    "evaluate_readiness",
    "evidence_density",
]
