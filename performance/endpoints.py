"""
URL catalogue for the backend surface under test.

The backend is a black box with a documented set of endpoints spread
over four services.  Centralising the URLs here keeps scenario code
focused on traffic shape and lets a single environment variable
re-point a whole service.
"""

from __future__ import annotations

from performance.config import ServiceUrls, settings


class Endpoints:
    """Absolute URLs for every endpoint the scenarios call."""

    def __init__(self, services: ServiceUrls):
        self.services = services

    def service_url(self, service: str) -> str:
        """Return the base URL of ``service`` (``user``, ``question``, ...)."""
        try:
            return getattr(self.services, service)
        except AttributeError:
            raise KeyError(f"Unknown service: {service}") from None

    # ---- user service ---------------------------------------------------

    def login(self) -> str:
        return f"{self.services.user}/api/v1/auth/login"

    def refresh(self) -> str:
        return f"{self.services.user}/api/v1/auth/refresh"

    def register(self) -> str:
        return f"{self.services.user}/api/v1/auth/register"

    def profile(self) -> str:
        return f"{self.services.user}/api/v1/users/me"

    # ---- gateway / actuator ---------------------------------------------

    def health(self) -> str:
        return f"{self.services.gateway}/actuator/health"

    def actuator_metric(self, service: str, metric: str) -> str:
        return f"{self.service_url(service)}/actuator/metrics/{metric}"

    # ---- question service -----------------------------------------------

    def questions(self) -> str:
        return f"{self.services.question}/api/v1/questions"

    def question(self, question_id: int | str) -> str:
        return f"{self.services.question}/api/v1/questions/{question_id}"

    def question_search(self) -> str:
        return f"{self.services.question}/api/v1/questions/search"

    def similar_questions(self) -> str:
        return f"{self.services.question}/api/v1/questions/similar"

    def analyze_jd(self) -> str:
        return f"{self.services.question}/api/v1/jd/analyze"

    def job_descriptions(self) -> str:
        return f"{self.services.question}/api/v1/jd"

    # ---- interview service ----------------------------------------------

    def sessions(self) -> str:
        return f"{self.services.interview}/api/v1/sessions"

    def session(self, session_id: int | str) -> str:
        return f"{self.services.interview}/api/v1/sessions/{session_id}"

    def session_questions(self, session_id: int | str) -> str:
        return f"{self.services.interview}/api/v1/sessions/{session_id}/questions"

    def interviews(self) -> str:
        return f"{self.services.interview}/api/v1/interviews"

    def interview_search(self) -> str:
        return f"{self.services.interview}/api/v1/interviews/search"

    def answers(self) -> str:
        return f"{self.services.interview}/api/v1/answers"

    # ---- feedback service -----------------------------------------------

    def feedback_list(self) -> str:
        return f"{self.services.feedback}/api/v1/feedback"

    def feedback(self, feedback_id: int | str) -> str:
        return f"{self.services.feedback}/api/v1/feedback/{feedback_id}"

    def feedback_stream(self, answer_id: int | str) -> str:
        return f"{self.services.feedback}/api/v1/feedback/stream/{answer_id}"

    def statistics(self) -> str:
        return f"{self.services.feedback}/api/v1/statistics"

    def user_statistics(self) -> str:
        return f"{self.services.feedback}/api/v1/statistics/user"

    def category_statistics(self, category: str) -> str:
        return f"{self.services.feedback}/api/v1/statistics/category/{category}"

    def timeline_statistics(self) -> str:
        return f"{self.services.feedback}/api/v1/statistics/timeline"

    def record_statistics(self) -> str:
        return f"{self.services.feedback}/api/v1/statistics/record"


endpoints = Endpoints(settings.services)
