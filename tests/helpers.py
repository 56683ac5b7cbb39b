from datetime import datetime, timezone

from assessment_service import crud
from assessment_service.models import STATUS_PUBLISHED
from assessment_service.question_gen import QuestionGenerator
from assessment_service.schemas import AssessmentIn

OWNER = 1
STUDENTS = (2, 3, 4)
OUTSIDER = 5
COURSE = 10


class FakeCourseDirectory:
    def __init__(self):
        self.owners = {COURSE: OWNER, 11: 99}
        self.enrolled = {(uid, COURSE) for uid in STUDENTS}
        self.completed_lessons = []

    def course_owner(self, course_id):
        return self.owners.get(course_id)

    def has_active_enrollment(self, user_id, course_id):
        return (user_id, course_id) in self.enrolled

    def mark_lesson_passed(self, user_id, course_id, lesson_id, score):
        self.completed_lessons.append((user_id, course_id, lesson_id, score))


class CannedGenerator(QuestionGenerator):
    """Returns a fixed model reply instead of calling a provider."""

    def __init__(self, reply="", api_key="test-key"):
        super().__init__(api_key=api_key, base_url="http://llm.invalid/v1", model="test-model")
        self.reply = reply
        self.prompts = []

    def complete(self, prompt):
        if not self.api_key:
            return super().complete(prompt)
        self.prompts.append(prompt)
        return self.reply


def headers(uid):
    return {"X-User-ID": str(uid)}


def now_utc():
    return datetime.now(timezone.utc)


def question(text, correct=0, points=1, n_options=4, explanation="Because."):
    return {
        "text": text,
        "options": [{"text": f"{text} option {i}", "is_correct": i == correct} for i in range(n_options)],
        "points": points,
        "explanation": explanation,
    }


def exam_payload(**overrides):
    body = {
        "kind": "exam",
        "course_id": COURSE,
        "title": "Midterm",
        "duration": 30,
        "passing_marks": 1,
        "questions": [question("Q1", correct=0), question("Q2", correct=1)],
    }
    body.update(overrides)
    return body


def quiz_payload(**overrides):
    body = {
        "kind": "lesson_quiz",
        "course_id": COURSE,
        "lesson_id": 500,
        "title": "Lesson 1 quiz",
        "duration": 10,
        "questions": [question("L1", correct=2), question("L2", correct=3)],
    }
    body.update(overrides)
    return body


class Api:
    def __init__(self, client):
        self.client = client

    def create(self, payload, uid=OWNER):
        r = self.client.post("/assessments", json=payload, headers=headers(uid))
        assert r.status_code == 200, r.text
        return r.json()

    def publish(self, assessment_id, uid=OWNER):
        r = self.client.post(f"/assessments/{assessment_id}/publish", headers=headers(uid))
        assert r.status_code == 200, r.text
        return r.json()

    def published(self, payload):
        a = self.create(payload)
        self.publish(a["id"])
        return a

    def start(self, assessment_id, uid):
        return self.client.post(f"/assessments/{assessment_id}/attempts/start", headers=headers(uid))

    def submit(self, attempt_id, uid, answers, time_spent=0):
        return self.client.post(
            f"/attempts/{attempt_id}/submit",
            json={"answers": answers, "time_spent": time_spent},
            headers=headers(uid),
        )

    def take(self, assessment_id, uid, answers):
        r = self.start(assessment_id, uid)
        assert r.status_code == 200, r.text
        attempt_id = r.json()["attempt_id"]
        r = self.submit(attempt_id, uid, answers)
        assert r.status_code == 200, r.text
        return r.json()


def answers_by_index(assessment, picks):
    """picks[i] is the option index chosen for question i, -1 for unanswered."""
    return [
        {"question_id": q["id"], "selected_option": pick}
        for q, pick in zip(assessment["questions"], picks)
    ]


def seed_exam(db, **overrides):
    """Create and publish an exam directly through the service layer."""
    a = crud.create_assessment(db, OWNER, AssessmentIn(**exam_payload(**overrides)))
    return crud.set_status(db, a, STATUS_PUBLISHED)
