import logging
from typing import Any, Optional, Protocol

import httpx

from .errors import CollaboratorUnavailable, NotFound, Unauthorized

logger = logging.getLogger(__name__)


class CourseDirectory(Protocol):
    def course_owner(self, course_id: int) -> Optional[int]:
        """Owning instructor's user id, or None when the course does not exist."""
        ...

    def has_active_enrollment(self, user_id: int, course_id: int) -> bool:
        ...

    def mark_lesson_passed(self, user_id: int, course_id: int, lesson_id: int, score: int) -> None:
        """Record the lesson as completed with the passing quiz score."""
        ...


class HttpCourseDirectory:
    """
    Talks to course-service.
      GET /courses/{id}                               -> {"id": .., "owner_id": ..}
      GET /enrollments/check?user_id=..&course_id=..  -> {"active": true|false}
      POST /progress/lessons/{lesson_id}/complete     <- {"user_id", "course_id", "quiz_score"}
    """

    def __init__(self, base_url: str, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                return client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            logger.error("Timeout calling course-service: %s", url)
            raise CollaboratorUnavailable("Course service timeout", timeout=True)
        except httpx.RequestError as e:
            logger.error("Error calling course-service: %s (%s)", url, e)
            raise CollaboratorUnavailable("Course service unavailable")

    def course_owner(self, course_id: int) -> Optional[int]:
        r = self._request("GET", f"/courses/{course_id}")
        if r.status_code == 404:
            return None
        if r.status_code != 200:
            logger.error("course-service returned %s for course %s", r.status_code, course_id)
            raise CollaboratorUnavailable("Course service error")

        data = r.json()
        owner = data.get("owner_id") or data.get("tutor_id")
        return int(owner) if owner is not None else None

    def has_active_enrollment(self, user_id: int, course_id: int) -> bool:
        r = self._request("GET", "/enrollments/check", params={"user_id": user_id, "course_id": course_id})
        if r.status_code == 404:
            return False
        if r.status_code != 200:
            logger.error("course-service returned %s for enrollment check", r.status_code)
            raise CollaboratorUnavailable("Enrollment check failed")
        return bool(r.json().get("active"))

    def mark_lesson_passed(self, user_id: int, course_id: int, lesson_id: int, score: int) -> None:
        r = self._request(
            "POST",
            f"/progress/lessons/{lesson_id}/complete",
            json={"user_id": user_id, "course_id": course_id, "quiz_score": score},
        )
        if r.status_code not in (200, 201, 204):
            logger.error("course-service returned %s for lesson %s progress", r.status_code, lesson_id)
            raise CollaboratorUnavailable("Progress update failed")


def require_course_owner(courses: CourseDirectory, course_id: int, user_id: int) -> None:
    owner = courses.course_owner(course_id)
    if owner is None:
        raise NotFound("Course not found")
    if owner != user_id:
        raise Unauthorized("Not authorized to manage assessments for this course")
