"""Static tables behind the roadmap planner."""
from __future__ import annotations

from typing import Dict, List, Tuple

from pydantic import BaseModel, Field

PHASES: Tuple[str, ...] = ("Foundation", "Intermediate", "Advanced", "Mastery")


class TaskTemplate(BaseModel):
    task_id: str
    title: str
    hours: int
    phase: str
    topics: List[str] = Field(default_factory=list)
    prerequisites: List[str] = Field(default_factory=list)


def _t(task_id: str, title: str, hours: int, phase: str, topics: List[str], prerequisites: List[str] | None = None) -> TaskTemplate:
    return TaskTemplate(
        task_id=task_id,
        title=title,
        hours=hours,
        phase=phase,
        topics=topics,
        prerequisites=prerequisites or [],
    )


TASK_LIBRARY: Dict[str, List[TaskTemplate]] = {
    "python": [
        _t("python-basics", "Python Fundamentals", 20, "Foundation", ["Data types", "Control flow", "Functions"]),
        _t("python-oop", "Object-Oriented Python", 15, "Intermediate", ["Classes", "Inheritance", "Protocols"], ["python-basics"]),
    ],
    "javascript": [
        _t("js-basics", "JavaScript Fundamentals", 20, "Foundation", ["ES6+", "DOM", "Events"]),
        _t("js-async", "Asynchronous JavaScript", 15, "Intermediate", ["Promises", "Async/await"], ["js-basics"]),
    ],
    "typescript": [
        _t("ts-basics", "TypeScript Essentials", 12, "Intermediate", ["Types", "Generics", "Narrowing"], ["js-basics"]),
    ],
    "react": [
        _t("react-basics", "React Fundamentals", 25, "Intermediate", ["Components", "Props", "State"], ["js-basics"]),
        _t("react-hooks", "React Hooks", 15, "Advanced", ["useState", "useEffect", "Custom hooks"], ["react-basics"]),
    ],
    "node.js": [
        _t("node-basics", "Node.js Services", 20, "Intermediate", ["Event loop", "Modules", "Express"], ["js-basics"]),
    ],
    "rest apis": [
        _t("api-design", "REST API Design", 12, "Intermediate", ["Resources", "Status codes", "Versioning"]),
    ],
    "sql": [
        _t("sql-basics", "SQL Fundamentals", 15, "Foundation", ["Joins", "Aggregation", "Indexes"]),
        _t("sql-tuning", "Query Tuning", 10, "Advanced", ["Query plans", "Index design"], ["sql-basics"]),
    ],
    "machine learning": [
        _t("ml-basics", "Machine Learning Basics", 30, "Foundation", ["Supervised learning", "Model training"]),
        _t("ml-algorithms", "ML Algorithms", 40, "Intermediate", ["Decision trees", "Neural networks"], ["ml-basics"]),
    ],
    "arrays": [
        _t("dsa-arrays", "Arrays & Strings", 20, "Foundation", ["Two pointers", "Sliding window", "Prefix sums"]),
    ],
    "hash tables": [
        _t("dsa-hashing", "Hashing Patterns", 10, "Foundation", ["Frequency maps", "Collision handling"], ["dsa-arrays"]),
    ],
    "linked lists": [
        _t("dsa-linkedlists", "Linked Lists", 15, "Foundation", ["Singly linked list", "Fast and slow pointers"]),
    ],
    "trees": [
        _t("dsa-trees", "Trees", 20, "Intermediate", ["Binary trees", "BST operations", "Traversals"], ["dsa-arrays"]),
    ],
    "graphs": [
        _t("dsa-graphs", "Graphs", 25, "Intermediate", ["BFS", "DFS", "Shortest paths"], ["dsa-trees"]),
    ],
    "dynamic programming": [
        _t("dsa-dp", "Dynamic Programming", 30, "Advanced", ["Memoization", "Tabulation", "Knapsack"], ["dsa-arrays"]),
    ],
    "system design": [
        _t("sd-basics", "System Design Fundamentals", 20, "Advanced", ["Scalability", "CAP theorem"]),
        _t("sd-patterns", "Distributed Design Patterns", 25, "Mastery", ["Microservices", "Load balancing"], ["sd-basics"]),
    ],
    "caching": [
        _t("sd-caching", "Caching Strategies", 10, "Advanced", ["Eviction", "Invalidation"], ["sd-basics"]),
    ],
    "concurrency": [
        _t("cs-concurrency", "Concurrency", 15, "Advanced", ["Threads", "Locks", "Async I/O"]),
    ],
    "docker": [
        _t("devops-docker", "Containers with Docker", 10, "Intermediate", ["Images", "Compose"]),
    ],
    "communication": [
        _t("soft-star", "Structured Interview Answers", 6, "Foundation", ["STAR method", "Concise storytelling"]),
    ],
}

ROLE_SKILLS: Dict[str, List[str]] = {
    "frontend": ["javascript", "typescript", "react", "arrays", "rest apis"],
    "backend": ["python", "sql", "rest apis", "arrays", "hash tables", "system design"],
    "full stack": ["javascript", "react", "node.js", "sql", "arrays"],
    "data scientist": ["python", "machine learning", "sql"],
    "ml engineer": ["python", "machine learning", "docker"],
    "software engineer": ["arrays", "hash tables", "trees", "graphs", "dynamic programming", "system design"],
}
DEFAULT_ROLE_SKILLS: List[str] = ROLE_SKILLS["software engineer"]

EXPERIENCE_LEVELS: Dict[str, float] = {"novice": 0.0, "intermediate": 0.5, "advanced": 0.8}
EXPERIENCE_RANK: Dict[str, int] = {"novice": 1, "intermediate": 2, "advanced": 3}
SENIORITY_KEYWORDS: Tuple[Tuple[str, int], ...] = (
    ("principal", 4),
    ("staff", 4),
    ("lead", 3),
    ("senior", 3),
    ("junior", 1),
    ("intern", 1),
    ("entry", 1),
)
DEFAULT_SENIORITY = 2


def seniority_of(role: str) -> int:
    lower = role.lower()
    for keyword, rank in SENIORITY_KEYWORDS:
        if keyword in lower:
            return rank
    return DEFAULT_SENIORITY


def generic_tasks(skill: str) -> List[TaskTemplate]:
    """Fallback pair of tasks for skills missing from the library."""

    slug = "-".join(part for part in "".join(c if c.isalnum() else " " for c in skill.lower()).split())
    title = skill.title()
    return [
        _t(f"{slug}-fundamentals", f"{title} Fundamentals", 15, "Foundation", [title]),
        _t(f"{slug}-practice", f"Applied {title}", 15, "Intermediate", [title], [f"{slug}-fundamentals"]),
    ]


def tasks_for(skill: str) -> List[TaskTemplate]:
    return TASK_LIBRARY.get(skill) or generic_tasks(skill)


__all__ = [
    "DEFAULT_ROLE_SKILLS",
    "EXPERIENCE_LEVELS",
    "EXPERIENCE_RANK",
    "PHASES",
    "ROLE_SKILLS",
    "TASK_LIBRARY",
    "TaskTemplate",
    "generic_tasks",
    "seniority_of",
    "tasks_for",
]
