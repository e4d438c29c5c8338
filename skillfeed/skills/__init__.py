"""
SkillFeed Skills Module
=======================

Declarative extraction rulesets: application, validation, versioned
storage and LLM-driven generation.
"""

from .generator import SkillGenerator
from .ruleset import apply_ruleset, select_links
from .store import SkillStore
from .validation import ValidationReport, validate_ruleset

__all__ = [
    'SkillGenerator',
    'SkillStore',
    'ValidationReport',
    'apply_ruleset',
    'select_links',
    'validate_ruleset',
]
