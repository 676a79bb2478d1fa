"""Skill ontology package."""
from .skill_ontology import (
    BASELINE_TOPICS,
    ONTOLOGY_VERSION,
    JdSkill,
    LearningPath,
    SkillMatch,
    SkillOntology,
    default_ontology,
)

__all__ = [
    "BASELINE_TOPICS",
    "ONTOLOGY_VERSION",
    "JdSkill",
    "LearningPath",
    "SkillMatch",
    "SkillOntology",
    "default_ontology",
]
