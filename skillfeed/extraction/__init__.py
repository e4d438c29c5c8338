"""
SkillFeed Extraction Module
===========================

Skill application on live pages with drift detection, plus the generic
heuristic fallback.
"""

from .agent import DriftTracker, ExtractionAgent, ExtractionResult

__all__ = ["DriftTracker", "ExtractionAgent", "ExtractionResult"]
