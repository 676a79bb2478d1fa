"""Rule-based skill ontology: synonyms, categories and transferability.

The table is static and versioned. Everything downstream (evaluator
concept matching, start-of-session skill gaps, roadmap planning) folds
skill names through :meth:`SkillOntology.normalize` so the same canonical
form is used everywhere. ``ONTOLOGY_VERSION`` is recorded in roadmap
provenance.
"""
from __future__ import annotations

import re
from functools import lru_cache
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

ONTOLOGY_VERSION = "2024.2"

PROFICIENCY_LEVELS: Tuple[str, ...] = ("beginner", "intermediate", "advanced", "expert")

SYNONYMS: Dict[str, List[str]] = {
    # frontend
    "react": ["react.js", "reactjs", "react js"],
    "angular": ["angular.js", "angularjs", "angular 2+"],
    "vue": ["vue.js", "vuejs", "vue js"],
    "next.js": ["nextjs"],
    "nuxt.js": ["nuxtjs", "nuxt"],
    # backend
    "node.js": ["nodejs", "node js"],
    "express": ["express.js", "expressjs"],
    "fastify": ["fastify.js"],
    "spring": ["spring framework", "spring boot", "springboot"],
    "django": ["django framework"],
    "flask": ["flask framework"],
    "fastapi": ["fast api"],
    # databases
    "mongodb": ["mongo", "mongo db"],
    "postgresql": ["postgres", "psql", "postgre sql"],
    "mysql": ["my sql"],
    "redis": ["redis cache"],
    "sql": ["structured query language"],
    # cloud
    "aws": ["amazon web services", "amazon aws"],
    "azure": ["microsoft azure"],
    "gcp": ["google cloud", "google cloud platform"],
    # devops
    "docker": ["docker container", "containers"],
    "kubernetes": ["k8s", "kube"],
    "jenkins": ["jenkins ci", "jenkins ci/cd"],
    "github actions": ["github action", "gh actions"],
    # languages
    "javascript": ["js", "ecmascript", "es6", "es2015"],
    "typescript": ["ts"],
    "python": ["python3", "python 3"],
    "java": ["java se", "java ee"],
    "c++": ["cpp", "c plus plus"],
    "c#": ["csharp", "c sharp"],
    # data structures and algorithms
    "arrays": ["array", "dynamic array"],
    "hash tables": ["hash table", "hashmap", "hash map", "hashing", "dictionary"],
    "linked lists": ["linked list"],
    "trees": ["tree", "binary tree", "binary search tree", "bst"],
    "graphs": ["graph"],
    "heaps": ["heap", "priority queue"],
    "stacks and queues": ["stack", "queue", "stacks", "queues"],
    "dynamic programming": ["dp", "memoization", "tabulation"],
    "binary search": ["bisection"],
    "sorting": ["sorting algorithms", "merge sort", "quicksort", "quick sort"],
    "recursion": ["recursive"],
    "graph traversal": ["bfs", "dfs", "breadth-first search", "depth-first search"],
    # system design and web
    "system design": ["distributed systems", "distributed system"],
    "caching": ["cache", "caches", "cached"],
    "load balancing": ["load balancer", "load balancers"],
    "message queues": ["message queue", "message broker", "pub/sub"],
    "scalability": ["scaling", "horizontal scaling", "vertical scaling"],
    "rest apis": ["rest", "rest api", "restful", "http api"],
    "authentication": ["oauth", "jwt", "auth"],
    "concurrency": ["multithreading", "threads", "threading", "parallelism"],
    "machine learning": ["ml"],
    # behavioral
    "teamwork": ["collaboration", "team work", "collaborated"],
    "conflict resolution": ["conflict", "disagreement", "disagreed"],
    "leadership": ["mentoring", "mentored", "leading a team"],
    "ownership": ["accountability", "took ownership"],
    "failure and learning": ["failure", "mistake", "lessons learned"],
    "communication": ["communicated", "stakeholders"],
}

HIERARCHY: Dict[str, Dict[str, Any]] = {
    "frontend-frameworks": {"children": ["react", "angular", "vue", "svelte", "solid"], "transferability": 0.7},
    "backend-frameworks": {"children": ["express", "fastify", "koa", "hapi", "nest.js", "node.js"], "transferability": 0.6},
    "java-backend": {"children": ["spring", "hibernate", "struts"], "transferability": 0.75},
    "python-backend": {"children": ["django", "flask", "fastapi", "tornado"], "transferability": 0.65},
    "sql-databases": {"children": ["postgresql", "mysql", "mssql", "oracle", "sqlite", "sql"], "transferability": 0.8},
    "nosql-databases": {"children": ["mongodb", "cassandra", "couchdb", "dynamodb", "redis"], "transferability": 0.5},
    "cloud-platforms": {"children": ["aws", "azure", "gcp", "digital ocean", "heroku"], "transferability": 0.6},
    "containerization": {"children": ["docker", "kubernetes", "docker compose", "containerd"], "transferability": 0.75},
    "ci-cd": {"children": ["jenkins", "github actions", "gitlab ci", "circle ci", "travis ci"], "transferability": 0.7},
    "testing-frameworks": {"children": ["jest", "mocha", "jasmine", "pytest", "junit"], "transferability": 0.65},
    "state-management": {"children": ["redux", "mobx", "zustand", "recoil", "vuex", "pinia"], "transferability": 0.6},
    "programming-languages": {
        "children": ["python", "javascript", "typescript", "java", "c++", "c#"],
        "transferability": 0.4,
    },
    "data-structures": {
        "children": ["arrays", "hash tables", "linked lists", "trees", "graphs", "heaps", "stacks and queues"],
        "transferability": 0.5,
    },
    "algorithms": {
        "children": ["sorting", "binary search", "dynamic programming", "recursion", "graph traversal"],
        "transferability": 0.5,
    },
    "system-architecture": {
        "children": ["system design", "caching", "load balancing", "message queues", "scalability"],
        "transferability": 0.6,
    },
    "web-fundamentals": {"children": ["rest apis", "authentication", "graphql", "websockets"], "transferability": 0.55},
    "computer-science": {"children": ["concurrency", "operating systems", "networking"], "transferability": 0.4},
    "behavioral": {
        "children": ["teamwork", "conflict resolution", "leadership", "ownership", "failure and learning", "communication"],
        "transferability": 0.6,
    },
    "data-science": {"children": ["machine learning", "statistics", "pandas", "numpy"], "transferability": 0.5},
}

PROFICIENCY_KEYWORDS: Dict[str, List[str]] = {
    "expert": ["expert", "advanced", "senior", "lead", "architect", "5+ years", "7+ years"],
    "advanced": ["proficient", "strong", "extensive", "3+ years", "4+ years"],
    "intermediate": ["working knowledge", "familiar", "comfortable", "1-2 years", "2+ years"],
    "beginner": ["basic", "learning", "exposure", "coursework", "< 1 year"],
}

BASELINE_TOPICS: Dict[str, List[str]] = {
    "technical": [
        "arrays",
        "hash tables",
        "trees",
        "graphs",
        "dynamic programming",
        "system design",
        "rest apis",
        "concurrency",
        "caching",
        "sql",
    ],
    "coding": [
        "arrays",
        "hash tables",
        "linked lists",
        "trees",
        "graphs",
        "dynamic programming",
        "binary search",
        "sorting",
        "heaps",
        "recursion",
    ],
    "behavioral": [
        "teamwork",
        "conflict resolution",
        "leadership",
        "ownership",
        "failure and learning",
        "communication",
    ],
    "mixed": [
        "arrays",
        "teamwork",
        "system design",
        "hash tables",
        "conflict resolution",
        "trees",
        "ownership",
        "rest apis",
        "leadership",
        "caching",
    ],
}

_YEARS_RE = re.compile(r"(\d+)\s*\+?\s*years?")
TERM_PATTERN_CACHE = 512
_REQUIRED_RE = re.compile(r"required|must have|essential", re.IGNORECASE)


class SkillMatchDetail(BaseModel):
    jd_skill: str
    required: bool = True
    min_proficiency: str = "intermediate"
    match_type: str = "missing"
    match_score: float = 0.0
    resume_skill: Optional[str] = None
    resume_proficiency: Optional[str] = None
    proficiency_match: bool = False
    category: Optional[str] = None


class SkillMatch(BaseModel):
    exact: List[SkillMatchDetail] = Field(default_factory=list)
    synonym: List[SkillMatchDetail] = Field(default_factory=list)
    transferable: List[SkillMatchDetail] = Field(default_factory=list)
    missing: List[SkillMatchDetail] = Field(default_factory=list)
    detailed: List[SkillMatchDetail] = Field(default_factory=list)
    match_score: int = 0


class JdSkill(BaseModel):
    name: str
    proficiency: str = "intermediate"
    required: bool = True
    context: str = ""


class LearningPath(BaseModel):
    missing_skill: str
    category: Optional[str]
    difficulty: str
    estimated_time: str
    related_skills: List[str] = Field(default_factory=list)
    reason: str
    prerequisites: List[str] = Field(default_factory=list)


@lru_cache(maxsize=TERM_PATTERN_CACHE)
def _term_pattern(term: str) -> re.Pattern[str]:
    forms = {term}
    if term.endswith("s") and len(term) > 3:
        forms.add(term[:-1])
    elif term[-1:].isalpha():
        forms.add(term + "s")
    alternation = "|".join(re.escape(form) for form in sorted(forms, key=len, reverse=True))
    return re.compile(rf"(?<![a-z0-9])(?:{alternation})(?![a-z0-9])")


def _skill_name(entry: Any) -> str:
    if isinstance(entry, str):
        return entry
    if isinstance(entry, dict):
        return str(entry.get("name", ""))
    return str(getattr(entry, "name", ""))


def _skill_attr(entry: Any, key: str, default: Any) -> Any:
    if isinstance(entry, dict):
        return entry.get(key, default)
    if isinstance(entry, str):
        return default
    return getattr(entry, key, default)


class SkillOntology:
    """Immutable lookup table over synonyms, hierarchy and proficiency keywords."""

    def __init__(
        self,
        synonyms: Mapping[str, Sequence[str]] = SYNONYMS,
        hierarchy: Mapping[str, Mapping[str, Any]] = HIERARCHY,
        proficiency_keywords: Mapping[str, Sequence[str]] = PROFICIENCY_KEYWORDS,
        version: str = ONTOLOGY_VERSION,
    ) -> None:
        self.version = version
        self._synonyms = MappingProxyType({k: tuple(v) for k, v in synonyms.items()})
        self._hierarchy = MappingProxyType(
            {k: (tuple(v["children"]), float(v["transferability"])) for k, v in hierarchy.items()}
        )
        self._proficiency = MappingProxyType({k: tuple(v) for k, v in proficiency_keywords.items()})
        variant_to_canonical: Dict[str, str] = {}
        for canonical, variants in self._synonyms.items():
            variant_to_canonical.setdefault(canonical, canonical)
            for variant in variants:
                variant_to_canonical.setdefault(variant, canonical)
        self._variants = MappingProxyType(variant_to_canonical)
        category_of: Dict[str, str] = {}
        for category, (children, _) in self._hierarchy.items():
            for child in children:
                category_of.setdefault(child, category)
        self._category_of = MappingProxyType(category_of)
        vocabulary: List[str] = []
        for canonical in list(self._synonyms) + list(category_of):
            if canonical not in vocabulary:
                vocabulary.append(canonical)
        self._vocabulary = tuple(vocabulary)
        self._patterns: Mapping[str, re.Pattern[str]] = MappingProxyType(
            {term: _term_pattern(term) for canonical in self._vocabulary for term in self.variants_of(canonical)}
        )

    # ------------------------------------------------------------------
    # Core lookups
    # ------------------------------------------------------------------
    def normalize(self, raw: str) -> str:
        normalized = (raw or "").strip().lower()
        return self._variants.get(normalized, normalized)

    def category_of(self, canonical: str) -> Optional[str]:
        return self._category_of.get(canonical)

    def category_transferability(self, category: str) -> float:
        return self._hierarchy[category][1] if category in self._hierarchy else 0.0

    def transferability(self, a: str, b: str) -> float:
        if a == b:
            return 1.0
        if b in self._synonyms.get(a, ()) or a in self._synonyms.get(b, ()):
            return 1.0
        if self.normalize(a) == self.normalize(b):
            return 1.0
        cat_a = self.category_of(self.normalize(a))
        cat_b = self.category_of(self.normalize(b))
        if cat_a and cat_a == cat_b:
            return self._hierarchy[cat_a][1]
        return 0.0

    def extract_proficiency(self, context: str) -> str:
        lower = (context or "").lower()
        for level in ("expert", "advanced", "intermediate", "beginner"):
            for keyword in self._proficiency.get(level, ()):
                if keyword in lower:
                    return level
        match = _YEARS_RE.search(lower)
        if match:
            years = int(match.group(1))
            if years >= 5:
                return "expert"
            if years >= 3:
                return "advanced"
            if years >= 1:
                return "intermediate"
            return "beginner"
        return "intermediate"

    # ------------------------------------------------------------------
    # Text matching
    # ------------------------------------------------------------------
    def variants_of(self, canonical: str) -> Tuple[str, ...]:
        return (canonical,) + self._synonyms.get(canonical, ())

    def mentions(self, text: str, skill: str) -> bool:
        """True when ``skill`` (or any of its variants) appears as a whole term."""

        lower = (text or "").lower()
        if not lower:
            return False
        canonical = self.normalize(skill)
        for term in self.variants_of(canonical):
            pattern = self._patterns.get(term) or _term_pattern(term)
            if pattern.search(lower):
                return True
        return False

    def skills_in_text(self, text: str) -> List[str]:
        return [skill for skill in self._vocabulary if self.mentions(text, skill)]

    # ------------------------------------------------------------------
    # Resume / JD matching
    # ------------------------------------------------------------------
    def semantic_match(self, resume_skills: Iterable[Any], jd_skills: Iterable[Any]) -> SkillMatch:
        resume = [
            {
                "original": _skill_name(s),
                "canonical": self.normalize(_skill_name(s)),
                "proficiency": _skill_attr(s, "proficiency", "intermediate") or "intermediate",
            }
            for s in resume_skills
            if _skill_name(s)
        ]
        result = SkillMatch()
        jd_list = [s for s in jd_skills if _skill_name(s)]
        for jd in jd_list:
            canonical = self.normalize(_skill_name(jd))
            best: Optional[Dict[str, str]] = None
            best_score = 0.0
            match_type = "missing"
            for candidate in resume:
                score = self.transferability(candidate["canonical"], canonical)
                if score > best_score:
                    best_score = score
                    best = candidate
                    if score == 1.0:
                        match_type = "exact" if candidate["canonical"] == canonical else "synonym"
                    elif score >= 0.6:
                        match_type = "transferable"
                    else:
                        match_type = "missing"
            min_proficiency = _skill_attr(jd, "proficiency", "intermediate") or "intermediate"
            detail = SkillMatchDetail(
                jd_skill=canonical,
                required=bool(_skill_attr(jd, "required", True)),
                min_proficiency=min_proficiency,
                match_type=match_type,
                match_score=best_score,
                resume_skill=best["canonical"] if best else None,
                resume_proficiency=best["proficiency"] if best else None,
                proficiency_match=bool(best) and self.proficiency_meets(best["proficiency"], min_proficiency),
                category=self.category_of(canonical),
            )
            result.detailed.append(detail)
            getattr(result, match_type).append(detail)

        if jd_list:
            weighted = len(result.exact) + len(result.synonym) + 0.7 * len(result.transferable)
            result.match_score = round(weighted / len(jd_list) * 100)
        return result

    @staticmethod
    def proficiency_meets(candidate: str, required: str) -> bool:
        try:
            return PROFICIENCY_LEVELS.index(candidate) >= PROFICIENCY_LEVELS.index(required)
        except ValueError:
            return False

    def parse_jd_skills(self, jd_text: str) -> List[JdSkill]:
        """Known skills mentioned in a JD with proficiency and required flag from nearby text."""

        skills: List[JdSkill] = []
        lower = (jd_text or "").lower()
        for skill in self._vocabulary:
            hit = None
            for term in self.variants_of(skill):
                pattern = self._patterns[term]
                hit = pattern.search(lower)
                if hit:
                    break
            if not hit:
                continue
            start = max(0, hit.start() - 100)
            end = min(len(jd_text), hit.end() + 100)
            context = jd_text[start:end]
            skills.append(
                JdSkill(
                    name=skill,
                    proficiency=self.extract_proficiency(context),
                    required=bool(_REQUIRED_RE.search(context)),
                    context=context.strip(),
                )
            )
        return skills

    def suggest_learning_path(self, missing_skill: str, existing_skills: Iterable[Any]) -> LearningPath:
        missing = self.normalize(missing_skill)
        category = self.category_of(missing)
        related: List[str] = []
        if category:
            children = self._hierarchy[category][0]
            for skill in existing_skills:
                canonical = self.normalize(_skill_name(skill))
                if canonical in children and canonical != missing and canonical not in related:
                    related.append(canonical)
        if related:
            pct = round(self.category_transferability(category or "") * 100)
            reason = f"You already know {', '.join(related)} which are {pct}% transferable"
        else:
            reason = "This is a new skill area for you"
        return LearningPath(
            missing_skill=missing,
            category=category,
            difficulty="easy" if related else "medium",
            estimated_time="2-4 weeks" if related else "6-12 weeks",
            related_skills=related,
            reason=reason,
            prerequisites=[] if related else ["Basic programming knowledge"],
        )

    def cluster_by_category(self, skills: Iterable[Any]) -> Dict[str, List[str]]:
        clustered: Dict[str, List[str]] = {}
        uncategorized: List[str] = []
        for skill in skills:
            canonical = self.normalize(_skill_name(skill))
            category = self.category_of(canonical)
            if category:
                clustered.setdefault(category, []).append(canonical)
            else:
                uncategorized.append(canonical)
        if uncategorized:
            clustered["other"] = uncategorized
        return clustered


@lru_cache(maxsize=1)
def default_ontology() -> SkillOntology:
    return SkillOntology()


__all__ = [
    "BASELINE_TOPICS",
    "ONTOLOGY_VERSION",
    "JdSkill",
    "LearningPath",
    "SkillMatch",
    "SkillMatchDetail",
    "SkillOntology",
    "default_ontology",
]
