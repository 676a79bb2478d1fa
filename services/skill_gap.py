"""Start-of-session skill gap analysis producing the interview plan."""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from agents.types import SEVERITY_RANK, Gap, PlanSkill
from config.settings import settings
from ontology import BASELINE_TOPICS, SkillOntology, default_ontology
from storage.documents import DocumentStore

from services.documents import ParsedJobDescription, ParsedResume

DEFAULT_ROLE = "General Technical Role"
READINESS_KIND = "readiness"


def prior_open_gaps(store: DocumentStore, user_id: str, limit: int = 20) -> List[Gap]:
    """Gaps from the user's latest ``limit`` readiness assessments, oldest first."""

    docs = sorted(
        store.scan_index(READINESS_KIND, "user_id", user_id),
        key=lambda doc: str(doc.get("completed_at") or ""),
    )[-limit:]
    gaps: List[Gap] = []
    for doc in docs:
        for raw in (doc.get("readiness") or {}).get("identified_gaps", []):
            gaps.append(Gap.model_validate(raw))
    return gaps


def _add(plan: Dict[str, PlanSkill], item: PlanSkill) -> None:
    existing = plan.get(item.skill)
    if existing is None:
        plan[item.skill] = item
        return
    if SEVERITY_RANK[item.severity] > SEVERITY_RANK[existing.severity]:
        plan[item.skill] = item


def gap_candidates(
    resume: ParsedResume,
    job_description: Optional[ParsedJobDescription],
    prior_gaps: Iterable[Gap] = (),
    ontology: Optional[SkillOntology] = None,
) -> List[PlanSkill]:
    onto = ontology or default_ontology()
    plan: Dict[str, PlanSkill] = {}
    if job_description is not None and job_description.skills:
        match = onto.semantic_match(resume.skills, job_description.skills)
        for detail in match.detailed:
            category = onto.category_of(detail.jd_skill)
            if detail.match_type == "missing":
                severity, source = ("critical", "jd-missing") if detail.required else ("high", "jd-preferred")
            elif detail.match_type == "transferable":
                severity, source = "medium", "jd-transferable"
            elif not detail.proficiency_match:
                severity, source = "medium", "jd-proficiency"
            else:
                continue
            _add(plan, PlanSkill(skill=detail.jd_skill, severity=severity, category=category, source=source))
    else:
        for skill in resume.skills:
            _add(
                plan,
                PlanSkill(skill=skill.name, severity="medium", category=onto.category_of(skill.name), source="resume-verify"),
            )
    for gap in prior_gaps:
        skill = onto.normalize(gap.skill)
        _add(plan, PlanSkill(skill=skill, severity=gap.severity, category=onto.category_of(skill), source="prior-gap"))
    return list(plan.values())


def derive_plan_skills(
    resume: ParsedResume,
    job_description: Optional[ParsedJobDescription],
    interview_type: str,
    prior_gaps: Iterable[Gap] = (),
    ontology: Optional[SkillOntology] = None,
    top_n: Optional[int] = None,
) -> List[PlanSkill]:
    """Top-N gaps by severity followed by the baseline topics for the interview type."""

    onto = ontology or default_ontology()
    limit = settings.PLAN_TOP_GAPS if top_n is None else top_n
    candidates = gap_candidates(resume, job_description, prior_gaps, onto)
    if interview_type == "behavioral":
        candidates = [c for c in candidates if c.category == "behavioral"]
    elif interview_type in ("technical", "coding"):
        candidates = [c for c in candidates if c.category != "behavioral"]
    ranked = sorted(enumerate(candidates), key=lambda pair: (-SEVERITY_RANK[pair[1].severity], pair[0]))
    plan: List[PlanSkill] = [item for _, item in ranked[:limit]]
    seen = {item.skill for item in plan}
    for topic in BASELINE_TOPICS.get(interview_type, BASELINE_TOPICS["technical"]):
        if topic not in seen:
            plan.append(PlanSkill(skill=topic, severity="low", category=onto.category_of(topic), source="baseline"))
            seen.add(topic)
    return plan


def target_role_for(job_description: Optional[ParsedJobDescription]) -> str:
    if job_description is not None and job_description.title.strip():
        return job_description.title.strip()
    return DEFAULT_ROLE


__all__ = [
    "DEFAULT_ROLE",
    "READINESS_KIND",
    "derive_plan_skills",
    "gap_candidates",
    "prior_open_gaps",
    "target_role_for",
]
