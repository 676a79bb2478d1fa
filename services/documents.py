"""Resume / job-description collaborator seam."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from ontology import JdSkill, SkillOntology, default_ontology
from storage.documents import DocumentStore

RESUME_KIND = "resume"
JD_KIND = "jobDescription"


class ResumeSkill(BaseModel):
    name: str
    proficiency: str = "intermediate"


class ParsedResume(BaseModel):
    resume_id: str
    user_id: Optional[str] = None
    skills: List[ResumeSkill] = Field(default_factory=list)
    summary: str = ""


class ParsedJobDescription(BaseModel):
    job_description_id: str
    title: str = ""
    text: str = ""
    skills: List[JdSkill] = Field(default_factory=list)

    @property
    def required(self) -> List[JdSkill]:
        return [skill for skill in self.skills if skill.required]

    @property
    def preferred(self) -> List[JdSkill]:
        return [skill for skill in self.skills if not skill.required]


class DocumentParser(Protocol):
    def load_resume(self, ref: str) -> Optional[ParsedResume]: ...

    def load_job_description(self, ref: str) -> Optional[ParsedJobDescription]: ...


def _coerce_skill(entry: Any) -> Dict[str, Any]:
    if isinstance(entry, str):
        return {"name": entry}
    return dict(entry)


class StoredDocumentParser:
    """Reads already-parsed resume / JD documents from the store.

    Resume documents carry ``skills`` (names or ``{name, proficiency}``) and
    optional free ``text``; JD documents carry ``title`` plus either
    ``skills`` or raw ``text``, which is scanned with the ontology.
    """

    def __init__(self, store: DocumentStore, ontology: Optional[SkillOntology] = None) -> None:
        self._store = store
        self._ontology = ontology or default_ontology()

    def load_resume(self, ref: str) -> Optional[ParsedResume]:
        doc = self._store.get(RESUME_KIND, ref)
        if doc is None:
            return None
        text = str(doc.get("text") or doc.get("summary") or "")
        raw_skills = [_coerce_skill(entry) for entry in doc.get("skills") or []]
        if not raw_skills and text:
            level = self._ontology.extract_proficiency(text)
            raw_skills = [{"name": name, "proficiency": level} for name in self._ontology.skills_in_text(text)]
        skills: List[ResumeSkill] = []
        seen = set()
        for entry in raw_skills:
            name = self._ontology.normalize(str(entry.get("name", "")))
            if not name or name in seen:
                continue
            seen.add(name)
            skills.append(ResumeSkill(name=name, proficiency=entry.get("proficiency") or "intermediate"))
        return ParsedResume(resume_id=ref, user_id=doc.get("user_id"), skills=skills, summary=text[:500])

    def load_job_description(self, ref: str) -> Optional[ParsedJobDescription]:
        doc = self._store.get(JD_KIND, ref)
        if doc is None:
            return None
        text = str(doc.get("text") or "")
        if doc.get("skills"):
            skills = []
            for entry in doc["skills"]:
                data = _coerce_skill(entry)
                data["name"] = self._ontology.normalize(str(data.get("name", "")))
                if data["name"]:
                    skills.append(JdSkill.model_validate(data))
        else:
            skills = self._ontology.parse_jd_skills(text)
        return ParsedJobDescription(
            job_description_id=ref,
            title=str(doc.get("title") or ""),
            text=text,
            skills=skills,
        )


__all__ = [
    "DocumentParser",
    "JD_KIND",
    "ParsedJobDescription",
    "ParsedResume",
    "RESUME_KIND",
    "ResumeSkill",
    "StoredDocumentParser",
]
