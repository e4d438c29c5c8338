"""
Skill Store
===========

Versioned skills keyed by source. Publishing appends a new immutable version
and points the source at it in one synchronous step; older versions stay in
the record store for audit and are never reactivated automatically.
"""

from datetime import datetime
from typing import List, Optional

from ..database.models import Ruleset, Skill, SkillValidation, Source
from ..storage.base import SkillRecords, SourceStore
from ..utils.logging import get_logger_for_component
from ..utils.exceptions import ErrorCode, GenerationError


class SkillStore:
    """Read/write access to published skills."""

    def __init__(self, skills: SkillRecords, sources: SourceStore):
        self.skills = skills
        self.sources = sources
        self.logger = get_logger_for_component("skill_store")

    def get_active(self, source: Source) -> Optional[Skill]:
        """The skill the source currently points at, if any."""
        if source.active_skill_version is None:
            return None
        skill = self.skills.get_skill(source.id, source.active_skill_version)
        if skill is None:
            self.logger.warning(
                f"Active skill v{source.active_skill_version} missing from store",
                extra={"source_id": source.id},
            )
        return skill

    def list_versions(self, source_id: str) -> List[Skill]:
        return self.skills.list_skills(source_id)

    def build(
        self,
        source_id: str,
        ruleset: Ruleset,
        validation: SkillValidation,
        generating_model: str,
        generated_at: datetime,
    ) -> Skill:
        """Create the next skill version for a source without storing it."""
        return Skill(
            source_id=source_id,
            version=self.skills.latest_version(source_id) + 1,
            ruleset=ruleset,
            generated_at=generated_at,
            generating_model=generating_model,
            validation=validation,
        )

    def activate(self, skill: Skill) -> Skill:
        """Store a validated skill and point its source at it.

        Contains no suspension point, so concurrent tasks never observe a
        skill that is stored but not yet active.

        Raises:
            GenerationError: If the source no longer exists
            DatabaseError: If the version was already stored
        """
        source = self.sources.load(skill.source_id)
        if source is None:
            raise GenerationError(
                f"Cannot publish skill for unknown source {skill.source_id}",
                source_id=skill.source_id,
                error_code=ErrorCode.SKILL_NOT_FOUND,
            )

        self.skills.save_skill(skill)
        previous = source.active_skill_version
        source.active_skill_version = skill.version
        self.sources.save(source)

        validation = skill.validation
        self.logger.info(
            f"Published skill v{skill.version} for {skill.source_id} "
            f"({validation.samples_passed}/{validation.samples_total} samples passed)",
            extra={
                "source_id": skill.source_id,
                "skill_version": skill.version,
                "previous_version": previous,
                "generating_model": skill.generating_model,
                "field_coverage": validation.extracted_field_coverage,
            },
        )
        return skill

    def publish(
        self,
        source_id: str,
        ruleset: Ruleset,
        validation: SkillValidation,
        generating_model: str,
        generated_at: datetime,
    ) -> Skill:
        """Build and activate the next version in one step."""
        return self.activate(
            self.build(source_id, ruleset, validation, generating_model, generated_at)
        )
