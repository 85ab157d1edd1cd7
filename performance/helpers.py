"""
Helper utilities for the performance scenarios.

Provides the building blocks every scenario relies on: tolerant JSON
access, collision-free identities, randomised payload factories, and
human think-time pacing.  Keeping these in a shared module avoids
duplication across scenario files and makes it easy to adjust
data-generation strategies in one place.

Key Concepts Demonstrated:
- Collision-free identity generation using timestamp + random suffix
- Randomised payloads to defeat server-side caching and exercise
  varied code paths
- Parse failures degrade to empty values instead of exceptions
"""

from __future__ import annotations

import random
import string
import time
from typing import Any

from faker import Faker

fake = Faker()

QUESTION_CATEGORIES = ["backend", "frontend", "devops", "system-design", "behavioral"]
STAT_CATEGORIES = ["Java", "Spring", "Database", "Algorithm", "System Design"]
SEARCH_KEYWORDS = ["java", "spring", "kubernetes", "react", "python", "aws", "docker"]
INTERVIEW_KEYWORDS = [
    "Spring",
    "Java",
    "REST API",
    "Database",
    "Algorithm",
    "React",
    "Docker",
    "Kubernetes",
    "Microservices",
    "SQL",
]
SKILL_SETS = [
    ["Java", "Spring Boot", "microservices"],
    ["Python", "TensorFlow", "machine learning"],
    ["React", "TypeScript", "frontend"],
    ["Kubernetes", "Docker", "DevOps"],
    ["PostgreSQL", "Redis", "database"],
    ["AWS", "GCP", "cloud"],
]

JOB_DESCRIPTIONS: list[dict[str, Any]] = [
    {
        "title": "Senior Backend Developer",
        "company": "Tech Corp",
        "description": (
            "We are looking for a Senior Backend Developer to design and implement "
            "scalable microservices using Java and Spring Boot. Experience with "
            "Kubernetes and AWS or GCP is required, along with strong knowledge of "
            "RESTful API design, database optimisation and distributed systems."
        ),
        "requirements": ["Java", "Spring Boot", "PostgreSQL", "Redis", "Kubernetes", "AWS"],
    },
    {
        "title": "ML Platform Engineer",
        "company": "AI Startup",
        "description": (
            "Join our ML Platform team to build infrastructure for machine learning "
            "workloads: model serving, feature stores and MLOps pipelines. Strong "
            "Python skills and experience with ML frameworks are essential."
        ),
        "requirements": ["Python", "TensorFlow", "Kubernetes", "Apache Spark", "MLflow"],
    },
    {
        "title": "Full Stack Developer",
        "company": "E-commerce Inc",
        "description": (
            "Build features across our e-commerce platform using React, Node.js and "
            "PostgreSQL. Experience with payment systems and high-traffic "
            "applications is a plus."
        ),
        "requirements": ["React", "Node.js", "TypeScript", "PostgreSQL", "Redis"],
    },
    {
        "title": "DevOps/SRE Engineer",
        "company": "Cloud Services",
        "description": (
            "Improve our deployment pipelines and system reliability: manage "
            "Kubernetes clusters, implement monitoring and automate infrastructure "
            "with Terraform."
        ),
        "requirements": ["Kubernetes", "Terraform", "Prometheus", "AWS", "Python", "Go"],
    },
]

SAMPLE_ANSWERS: list[dict[str, Any]] = [
    {
        "questionId": 1,
        "content": (
            "Java garbage collection reclaims heap objects that are no longer "
            "reachable. The JVM splits the heap into young and old generations; "
            "minor collections run in the young generation and major collections "
            "in the old one. G1, the default since Java 9, works on regions to keep "
            "pause times predictable."
        ),
    },
    {
        "questionId": 2,
        "content": (
            "Microservices communicate synchronously over REST or gRPC and "
            "asynchronously through message brokers such as Kafka or RabbitMQ. "
            "Service discovery and an API gateway centralise routing, and circuit "
            "breakers stop failures from cascading."
        ),
    },
    {
        "questionId": 3,
        "content": (
            "Database indexes are usually B-trees or hash structures. B-tree "
            "indexes suit range queries and column order matters for composite "
            "indexes. Too many indexes slow down inserts and updates, so they need "
            "to be chosen from real query patterns."
        ),
    },
]


def safe_json(response: Any) -> dict[str, Any]:
    """
    Return response JSON as dict, or an empty dict if parsing fails.

    Responses may contain non-JSON bodies (e.g. on 5xx errors, gateway
    timeouts, or a connection that never completed).  Using this wrapper
    prevents ``ValueError`` from propagating into task methods where it
    would abort the virtual user.

    Args:
        response: A Locust/requests ``Response`` object.

    Returns:
        The parsed JSON body as a dictionary, or ``{}`` if parsing fails
        or the top-level value is not a dict.
    """
    try:
        data = response.json()
    except ValueError:
        return {}

    if isinstance(data, dict):
        return data
    return {}


def json_items(response: Any, key: str = "content") -> list[Any]:
    """
    Return a list payload from either ``{key: [...]}`` or a bare ``[...]`` body.

    Paginated endpoints wrap results in ``content`` while some return a
    plain array; anything else yields ``[]``.
    """
    try:
        data = response.json()
    except ValueError:
        return []

    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get(key), list):
        return data[key]
    return []


def think(low: float, high: float | None = None) -> None:
    """Pause for a uniformly random ``low..high`` seconds to emulate human pacing."""
    duration = low if high is None else random.uniform(low, high)
    if duration > 0:
        time.sleep(duration)


def unique_user_identity() -> tuple[str, str, str]:
    """
    Generate unique credentials to avoid collisions across runs.

    Combines a millisecond timestamp with a short random suffix so that
    parallel Locust workers (or back-to-back CI runs) never produce
    duplicate emails.

    Returns:
        A ``(email, password, name)`` tuple.  The password is a fixed
        string; security of test accounts is not a concern.
    """
    ts = int(time.time() * 1000)
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=8))
    email = f"loadtest_{suffix}_{ts}@test.com"
    return email, "Test1234!", fake.name()


def random_job_description() -> dict[str, Any]:
    """Pick one of the canned job descriptions."""
    return random.choice(JOB_DESCRIPTIONS)


def random_answer() -> dict[str, Any]:
    """Pick one of the canned interview answers."""
    return random.choice(SAMPLE_ANSWERS)


def record_answer_payload(category: str | None = None, score: int | None = None) -> dict[str, Any]:
    """
    Build a statistics-record payload.

    Scores of 60 and above count as correct; lower scores carry a weak
    point so the backend exercises its weakness aggregation path.
    """
    category = category or random.choice(STAT_CATEGORIES)
    score = random.randint(0, 99) if score is None else score
    return {
        "skillCategory": category,
        "isCorrect": score >= 60,
        "score": score,
        "weakPoint": f"{category} fundamentals" if score < 60 else None,
    }


def session_payload() -> dict[str, Any]:
    """Build a create-interview-session payload."""
    return {
        "title": f"Load Test Session {int(time.time() * 1000)}",
        "type": "TECHNICAL",
        "duration": 30,
    }
