"""
Brief Assessor - evidence-gated LLM grading for locked assignment briefs.

This package grades student submissions against locked brief and unit
criteria. Every ACHIEVED decision must be backed by page-linked evidence,
confidence is capped when required modalities (charts, tables, equations,
images, percentages) cannot be found, and the submission status machine
never leaves a failed attempt silently stuck.
"""

__version__ = "1.0.0"
__author__ = "Brief Assessor Team"
