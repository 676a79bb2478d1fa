"""Deterministic roadmap planner with a provenance record.

Every decision (skills, tasks, ordering, schedule, feasibility) comes from
rule tables; the bound chat model may only phrase milestone descriptions
and hints. With ``reproducible=True`` no model is called and placeholders
are used, so two runs on the same inputs produce the same roadmap apart
from ``generated_at``.
"""
from __future__ import annotations

import hashlib
import json
import math
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, model_validator

from config.registry import CHAT_KEY, get_model, is_bound
from llm_gateway import LlmGatewayError, LlmReply
from observability.logger import log_event
from ontology import ONTOLOGY_VERSION, SkillOntology, default_ontology

from .task_library import (
    DEFAULT_ROLE_SKILLS,
    EXPERIENCE_LEVELS,
    EXPERIENCE_RANK,
    PHASES,
    ROLE_SKILLS,
    TaskTemplate,
    seniority_of,
    tasks_for,
)

PLANNER_VERSION = "1.1.0"
RULE_SET_VERSION = f"planner-{PLANNER_VERSION}+ontology-{ONTOLOGY_VERSION}"
BUFFER_PERCENTAGE = 20

ExperienceLevel = Literal["novice", "intermediate", "advanced"]


class RoadmapRequest(BaseModel):
    user_id: str = Field(min_length=1)
    target_role: str = Field(min_length=1)
    jd_text: Optional[str] = None
    target_date: date
    weekly_hours: float = Field(gt=0, le=168)
    experience_level: ExperienceLevel = "novice"
    focus_areas: List[str] = Field(default_factory=list)
    start_date: Optional[date] = None
    reproducible: bool = False

    @model_validator(mode="after")
    def _dates_in_order(self) -> "RoadmapRequest":
        if self.start_date is not None and self.target_date <= self.start_date:
            raise ValueError("target_date must be after start_date")
        return self


class Milestone(BaseModel):
    milestone_id: str
    task_id: str
    title: str
    skill: str
    phase: str
    order: int
    estimated_hours: int
    duration: str
    topics: List[str] = Field(default_factory=list)
    prerequisites: List[str] = Field(default_factory=list)
    week_start: int
    week_end: int
    target_date: date
    within_timeline: bool
    description: str = ""
    hint: str = ""


class Phase(BaseModel):
    phase_id: str
    name: str
    order: int
    total_hours: int
    duration_weeks: int
    confidence: int
    milestone_ids: List[str] = Field(default_factory=list)


class FeasibilityReason(BaseModel):
    rule_name: str
    threshold: Any
    value: Any
    passed: bool


class Feasibility(BaseModel):
    score: int
    reasons: List[FeasibilityReason] = Field(default_factory=list)


class RuleLogEntry(BaseModel):
    rule_name: str
    output_snippet: str
    triggered_value: Any


class PhrasingLogEntry(BaseModel):
    field: str
    prompt_hash: str
    timestamp: datetime
    ok: bool = True


class Provenance(BaseModel):
    rule_set_version: str
    generated_at: datetime
    inputs: Dict[str, Any]
    generator_params: Dict[str, Any]
    deterministic_log: List[RuleLogEntry] = Field(default_factory=list)
    ai_phrasing_log: List[PhrasingLogEntry] = Field(default_factory=list)


class Roadmap(BaseModel):
    roadmap_id: str
    user_id: str
    target_role: str
    phases: List[Phase]
    milestones: List[Milestone]
    feasibility: Feasibility
    summary: Dict[str, Any]
    provenance: Provenance


class _SkillGap(BaseModel):
    skill: str
    current_level: float
    gap: float


def hash_prompt(prompt: str) -> str:
    return hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:16]


def format_duration(hours: int) -> str:
    if hours < 8:
        return f"{hours} hours"
    days = math.ceil(hours / 8)
    if days == 1:
        return "1 day"
    if days < 7:
        return f"{days} days"
    weeks = math.ceil(days / 7)
    return f"{weeks} {'week' if weeks == 1 else 'weeks'}"


# ----------------------------------------------------------------------
# Rules
# ----------------------------------------------------------------------
def extract_required_skills(
    role: str,
    jd_text: Optional[str],
    focus_areas: List[str],
    ontology: SkillOntology,
) -> List[str]:
    skills: List[str] = []
    lower = role.lower()
    for keyword, role_skills in ROLE_SKILLS.items():
        if keyword in lower:
            skills.extend(role_skills)
    if jd_text:
        skills.extend(ontology.skills_in_text(jd_text))
    skills.extend(ontology.normalize(area) for area in focus_areas if area.strip())
    if not skills:
        skills.extend(DEFAULT_ROLE_SKILLS)
    ordered: List[str] = []
    for skill in skills:
        canonical = ontology.normalize(skill)
        if canonical not in ordered:
            ordered.append(canonical)
    return ordered


def compute_skill_gaps(skills: List[str], experience: str) -> List[_SkillGap]:
    current = EXPERIENCE_LEVELS.get(experience, 0.0)
    return [_SkillGap(skill=skill, current_level=current, gap=round(1.0 - current, 2)) for skill in skills]


def map_gaps_to_tasks(gaps: List[_SkillGap]) -> List[Tuple[str, TaskTemplate, int]]:
    """``(skill, template, scaled hours)`` per task, first occurrence of each task id wins."""

    seen: set[str] = set()
    tasks: List[Tuple[str, TaskTemplate, int]] = []
    for gap in gaps:
        for template in tasks_for(gap.skill):
            if template.task_id in seen:
                continue
            seen.add(template.task_id)
            hours = max(2, int(round(template.hours * (0.4 + 0.6 * gap.gap))))
            tasks.append((gap.skill, template, hours))
    return tasks


def build_prerequisite_dag(tasks: List[Tuple[str, TaskTemplate, int]]) -> List[Tuple[str, TaskTemplate, int, List[str]]]:
    """Stable topological order: the earliest-listed ready task always goes next."""

    present = {template.task_id for _, template, _ in tasks}
    deps = {
        template.task_id: [p for p in template.prerequisites if p in present and p != template.task_id]
        for _, template, _ in tasks
    }
    remaining = list(tasks)
    done: set[str] = set()
    ordered: List[Tuple[str, TaskTemplate, int, List[str]]] = []
    while remaining:
        for index, (skill, template, hours) in enumerate(remaining):
            if all(dep in done for dep in deps[template.task_id]):
                break
        else:
            # prerequisite cycle: release the earliest task and keep going
            index = 0
        skill, template, hours = remaining.pop(index)
        done.add(template.task_id)
        ordered.append((skill, template, hours, deps[template.task_id]))
    return ordered


def schedule_weeks(
    ordered: List[Tuple[str, TaskTemplate, int, List[str]]],
    start: date,
    weekly_hours: float,
    weeks_available: int,
) -> List[Milestone]:
    milestones: List[Milestone] = []
    cursor = 0.0
    for order, (skill, template, hours, deps) in enumerate(ordered, start=1):
        week_start = int(cursor // weekly_hours) + 1
        cursor += hours
        week_end = int(math.ceil(cursor / weekly_hours))
        milestones.append(
            Milestone(
                milestone_id=f"m{order:02d}-{template.task_id}",
                task_id=template.task_id,
                title=template.title,
                skill=skill,
                phase=template.phase,
                order=order,
                estimated_hours=hours,
                duration=format_duration(hours),
                topics=list(template.topics),
                prerequisites=list(deps),
                week_start=week_start,
                week_end=week_end,
                target_date=start + timedelta(days=7 * week_end),
                within_timeline=week_end <= weeks_available,
            )
        )
    return milestones


def group_into_phases(milestones: List[Milestone], weekly_hours: float) -> List[Phase]:
    phases: List[Phase] = []
    for index, name in enumerate(PHASES):
        members = [m for m in milestones if m.phase == name]
        if not members:
            continue
        total = sum(m.estimated_hours for m in members)
        phases.append(
            Phase(
                phase_id=f"phase-{index + 1}",
                name=name,
                order=index + 1,
                total_hours=total,
                duration_weeks=int(math.ceil(total / weekly_hours)),
                confidence=85 - index * 10,
                milestone_ids=[m.milestone_id for m in members],
            )
        )
    return phases


def compute_feasibility(
    request: RoadmapRequest,
    milestones: List[Milestone],
    available_days: int,
) -> Feasibility:
    total_hours = sum(m.estimated_hours for m in milestones)
    available_hours = available_days / 7 * request.weekly_hours
    utilisation = round(total_hours / available_hours, 3) if available_hours > 0 else float("inf")
    seniority = seniority_of(request.target_role)
    experience = EXPERIENCE_RANK[request.experience_level]
    rules = [
        ("timeConstraint", 0.8, utilisation, utilisation <= 0.8, 30),
        ("weeklyHoursRealistic", [3, 40], request.weekly_hours, 3 <= request.weekly_hours <= 40, 20),
        ("focusAreaCount", 5, len(request.focus_areas), len(request.focus_areas) <= 5, 10),
        ("experienceVsSeniority", seniority, experience, experience + 1 >= seniority, 15),
        ("timelineLength", 14, available_days, available_days >= 14, 20),
        ("taskCountManageable", 50, len(milestones), len(milestones) <= 50, 15),
    ]
    score = 100
    reasons: List[FeasibilityReason] = []
    for name, threshold, value, passed, penalty in rules:
        if not passed:
            score -= penalty
        if isinstance(value, float) and math.isinf(value):
            value = None
        reasons.append(FeasibilityReason(rule_name=name, threshold=threshold, value=value, passed=passed))
    return Feasibility(score=max(0, min(100, score)), reasons=reasons)


# ----------------------------------------------------------------------
# Planner
# ----------------------------------------------------------------------
class RoadmapPlanner:
    def __init__(
        self,
        ontology: Optional[SkillOntology] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.ontology = ontology or default_ontology()
        self.clock = clock

    def _phrase(
        self,
        milestones: List[Milestone],
        reproducible: bool,
    ) -> List[PhrasingLogEntry]:
        for m in milestones:
            m.description = f"{m.title}: {', '.join(m.topics)}." if m.topics else f"{m.title}."
            m.hint = f"Plan about {m.estimated_hours} hours and finish by {m.target_date.isoformat()}."
        if reproducible or not is_bound(CHAT_KEY):
            return []

        chat_fn = get_model(CHAT_KEY)
        log: List[PhrasingLogEntry] = []
        for m in milestones:
            prompt = (
                f"Write one motivating sentence describing the study milestone '{m.title}' "
                f"covering {', '.join(m.topics) or m.skill}. Do not change scope or duration."
            )
            field = f"milestones[{m.milestone_id}].description"
            try:
                reply: LlmReply = chat_fn(
                    [{"role": "user", "content": prompt}],
                    {"temperature": 0.3, "max_tokens": 80},
                )
            except LlmGatewayError as exc:
                log_event("roadmap_phrasing_failed", None, error=exc.kind, field=field)
                log.append(PhrasingLogEntry(field=field, prompt_hash=hash_prompt(prompt), timestamp=self.clock(), ok=False))
                continue
            text = reply.content.strip()
            if text:
                m.description = text
            log.append(PhrasingLogEntry(field=field, prompt_hash=hash_prompt(prompt), timestamp=self.clock()))
        return log

    def generate(self, request: RoadmapRequest) -> Roadmap:
        now = self.clock()
        start = request.start_date or now.date()
        if request.target_date <= start:
            raise ValueError("target_date must be after start_date")
        resolved = request.model_copy(update={"start_date": start})
        available_days = (request.target_date - start).days
        weeks_available = int(math.ceil(available_days / 7))
        rule_log: List[RuleLogEntry] = []

        skills = extract_required_skills(request.target_role, request.jd_text, request.focus_areas, self.ontology)
        rule_log.append(
            RuleLogEntry(rule_name="extractRequiredSkills", output_snippet=", ".join(skills[:5]), triggered_value=len(skills))
        )
        gaps = compute_skill_gaps(skills, request.experience_level)
        rule_log.append(
            RuleLogEntry(
                rule_name="computeSkillGaps",
                output_snippet=f"{len(gaps)} gaps identified",
                triggered_value=[g.skill for g in gaps],
            )
        )
        tasks = map_gaps_to_tasks(gaps)
        rule_log.append(
            RuleLogEntry(rule_name="mapGapsToTasks", output_snippet=f"{len(tasks)} tasks selected", triggered_value=len(tasks))
        )
        ordered = build_prerequisite_dag(tasks)
        rule_log.append(
            RuleLogEntry(
                rule_name="buildPrerequisiteDAG",
                output_snippet=f"DAG with {len(ordered)} nodes",
                triggered_value=[template.task_id for _, template, _, _ in ordered],
            )
        )
        milestones = schedule_weeks(ordered, start, request.weekly_hours, weeks_available)
        last_week = max((m.week_end for m in milestones), default=0)
        rule_log.append(
            RuleLogEntry(
                rule_name="scheduleWeeks",
                output_snippet=f"{last_week} of {weeks_available} weeks used",
                triggered_value=last_week,
            )
        )
        phases = group_into_phases(milestones, request.weekly_hours)
        rule_log.append(
            RuleLogEntry(
                rule_name="groupIntoPhases",
                output_snippet=f"{len(phases)} phases created",
                triggered_value=[p.name for p in phases],
            )
        )
        feasibility = compute_feasibility(request, milestones, available_days)
        rule_log.append(
            RuleLogEntry(
                rule_name="computeFeasibility",
                output_snippet=f"Score: {feasibility.score}",
                triggered_value=feasibility.score,
            )
        )

        phrasing_log = self._phrase(milestones, request.reproducible)
        inputs = resolved.model_dump(mode="json")
        roadmap_id = "rm-" + hashlib.sha256(
            json.dumps({"inputs": inputs, "rules": RULE_SET_VERSION}, sort_keys=True).encode("utf-8")
        ).hexdigest()[:12]
        total_hours = sum(m.estimated_hours for m in milestones)
        roadmap = Roadmap(
            roadmap_id=roadmap_id,
            user_id=request.user_id,
            target_role=request.target_role,
            phases=phases,
            milestones=milestones,
            feasibility=feasibility,
            summary={
                "total_hours": total_hours,
                "total_tasks": len(milestones),
                "duration_days": available_days,
                "weeks_available": weeks_available,
                "weeks_needed": last_week,
            },
            provenance=Provenance(
                rule_set_version=RULE_SET_VERSION,
                generated_at=now,
                inputs=inputs,
                generator_params={
                    "required_skills": skills,
                    "skill_gaps": [g.skill for g in gaps],
                    "task_selection_criteria": "prerequisite-based",
                    "scheduling_algorithm": "greedy-weekly-fit",
                    "buffer_percentage": BUFFER_PERCENTAGE,
                },
                deterministic_log=rule_log,
                ai_phrasing_log=phrasing_log,
            ),
        )
        log_event(
            "roadmap_generated",
            None,
            score=feasibility.score,
            user_id=request.user_id,
            milestones=len(milestones),
            reproducible=request.reproducible,
        )
        return roadmap


__all__ = [
    "PLANNER_VERSION",
    "RULE_SET_VERSION",
    "Feasibility",
    "Milestone",
    "Phase",
    "Provenance",
    "Roadmap",
    "RoadmapPlanner",
    "RoadmapRequest",
    "build_prerequisite_dag",
    "compute_feasibility",
    "compute_skill_gaps",
    "extract_required_skills",
    "format_duration",
    "hash_prompt",
    "map_gaps_to_tasks",
]
