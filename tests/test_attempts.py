import pytest
from sqlalchemy.exc import SQLAlchemyError

from assessment_service import attempts as attempt_ops
from assessment_service.attempt_models import Attempt
from assessment_service.errors import CollaboratorUnavailable
from assessment_service.models import Assessment
from assessment_service.schemas import SubmitAttemptIn
from helpers import (
    COURSE,
    OUTSIDER,
    OWNER,
    FakeCourseDirectory,
    answers_by_index,
    exam_payload,
    headers,
    question,
    quiz_payload,
    seed_exam,
)


def test_two_question_exam_full_marks(api):
    a = api.published(exam_payload(passing_marks=1))
    result = api.take(a["id"], 2, answers_by_index(a, [0, 1]))
    assert result["score"] == 2
    assert result["percentage"] == 100
    assert result["is_passed"] is True
    assert result["correct_count"] == 2
    # first submission: nobody scored lower
    assert result["percentile"] == 0
    assert result["can_retake"] is False


def test_negative_marking_never_goes_below_zero(api):
    a = api.published(exam_payload(negative_marking=True))
    result = api.take(a["id"], 2, answers_by_index(a, [3, 3]))
    assert result["score"] == 0
    assert result["percentage"] == 0
    assert result["is_passed"] is False
    assert result["incorrect_count"] == 2


def test_answers_by_option_id(api):
    a = api.published(exam_payload())
    correct_ids = [next(o["id"] for o in q["options"] if o["is_correct"]) for q in a["questions"]]
    answers = [
        {"question_id": q["id"], "selected_option_id": oid}
        for q, oid in zip(a["questions"], correct_ids)
    ]
    assert api.take(a["id"], 2, answers)["score"] == 2


def test_unknown_and_missing_answers_are_tolerated(api):
    a = api.published(exam_payload())
    answers = [
        {"question_id": a["questions"][0]["id"], "selected_option": 0},
        {"question_id": 99999, "selected_option": 0},
    ]
    result = api.take(a["id"], 2, answers)
    assert result["score"] == 1
    assert result["incorrect_count"] == 1
    # the second real question got no answer at all
    assert result["unanswered_count"] == 1


def test_resubmission_is_rejected(api):
    a = api.published(exam_payload())
    attempt_id = api.start(a["id"], 2).json()["attempt_id"]
    assert api.submit(attempt_id, 2, answers_by_index(a, [0, 0])).status_code == 200

    r = api.submit(attempt_id, 2, answers_by_index(a, [0, 1]))
    assert r.status_code == 409
    assert r.json()["reason"] == "already_submitted"

    report = api.client.get(f"/attempts/{attempt_id}", headers=headers(2)).json()
    assert report["score"] == 1


def test_only_the_attempt_holder_submits(api):
    a = api.published(exam_payload())
    attempt_id = api.start(a["id"], 2).json()["attempt_id"]
    r = api.submit(attempt_id, 3, answers_by_index(a, [0, 1]))
    assert r.status_code == 403


def test_second_start_without_retake(api):
    a = api.published(exam_payload(allow_retake=False))
    api.take(a["id"], 2, answers_by_index(a, [0, 1]))
    r = api.start(a["id"], 2)
    assert r.status_code == 409
    assert r.json()["reason"] == "already_attempted"


def test_max_attempts_reached(api):
    a = api.published(exam_payload(allow_retake=True, max_attempts=2))
    first = api.take(a["id"], 2, answers_by_index(a, [1, 0]))
    assert first["can_retake"] is True

    second = api.take(a["id"], 2, answers_by_index(a, [0, 1]))
    assert second["can_retake"] is False

    r = api.start(a["id"], 2)
    assert r.status_code == 409
    assert r.json()["reason"] == "max_attempts_reached"


def test_unlimited_attempts(api):
    a = api.published(exam_payload(allow_retake=True, max_attempts=None))
    assert a["max_attempts"] is None
    for n in range(1, 5):
        r = api.start(a["id"], 2)
        assert r.status_code == 200
        assert r.json()["attempt_number"] == n


def test_in_progress_attempt_counts_toward_the_limit(api):
    a = api.published(exam_payload(allow_retake=False))
    assert api.start(a["id"], 2).status_code == 200
    r = api.start(a["id"], 2)
    assert r.status_code == 409


def test_exam_not_yet_open(api, future):
    a = api.published(exam_payload(start_date=future.isoformat()))
    r = api.start(a["id"], 2)
    assert r.status_code == 403
    assert r.json()["reason"] == "not_yet_open"


def test_unpublished_and_unenrolled_starts(api):
    draft = api.create(exam_payload())
    r = api.start(draft["id"], 2)
    assert r.status_code == 403
    assert r.json()["reason"] == "not_published"

    a = api.published(exam_payload(title="Other"))
    r = api.start(a["id"], OUTSIDER)
    assert r.status_code == 403
    assert r.json()["reason"] == "not_enrolled"


def test_eligibility_report(api):
    a = api.published(exam_payload(allow_retake=True, max_attempts=1))
    r = api.client.get(f"/assessments/{a['id']}/eligibility", headers=headers(2))
    assert r.json() == {
        "can_attempt": True,
        "existing_attempts": 0,
        "max_attempts": 1,
        "reason": None,
        "message": "You can start this assessment",
    }

    api.take(a["id"], 2, answers_by_index(a, [0, 1]))
    body = api.client.get(f"/assessments/{a['id']}/eligibility", headers=headers(2)).json()
    assert body["can_attempt"] is False
    assert body["existing_attempts"] == 1
    assert body["reason"] == "max_attempts_reached"


def test_percentile_and_statistics(api):
    a = api.published(exam_payload(passing_marks=2))
    low = api.take(a["id"], 2, answers_by_index(a, [3, 3]))
    mid = api.take(a["id"], 3, answers_by_index(a, [0, 3]))
    high = api.take(a["id"], 4, answers_by_index(a, [0, 1]))

    assert low["percentile"] == 0
    assert mid["percentile"] == 50
    assert high["percentile"] == 67
    for result in (low, mid, high):
        assert 0 <= result["percentile"] <= 100

    full = api.client.get(f"/assessments/{a['id']}/full", headers=headers(OWNER)).json()
    assert full["attempt_count"] == 3
    assert full["average_score"] == 1

    stats = api.client.get(f"/assessments/{a['id']}/stats", headers=headers(OWNER)).json()
    assert stats["attempt_count"] == 3
    assert stats["highest_score"] == 2
    assert stats["lowest_score"] == 0
    assert stats["pass_rate"] == 33.33

    r = api.client.get(f"/assessments/{a['id']}/stats", headers=headers(2))
    assert r.status_code == 403


def test_in_progress_attempts_do_not_move_statistics(api):
    a = api.published(exam_payload())
    api.take(a["id"], 2, answers_by_index(a, [0, 1]))
    api.start(a["id"], 3)
    full = api.client.get(f"/assessments/{a['id']}/full", headers=headers(OWNER)).json()
    assert full["attempt_count"] == 1
    assert full["average_score"] == 2


def test_review_on_submit_follows_visibility_flags(api):
    hidden = api.published(exam_payload(title="Hidden"))
    result = api.take(hidden["id"], 2, answers_by_index(hidden, [0, 0]))
    assert result["review"] is None

    shown = api.published(exam_payload(title="Shown", show_result_immediately=True))
    result = api.take(shown["id"], 2, answers_by_index(shown, [0, 0]))
    review = result["review"]
    assert [item["correct_option"] for item in review] == [0, 1]
    assert review[1]["is_correct"] is False
    assert review[1]["explanation"] == "Because."


def test_attempt_report_visibility(api):
    a = api.published(exam_payload(show_correct_answers=False))
    attempt_id = api.start(a["id"], 2).json()["attempt_id"]
    api.submit(attempt_id, 2, answers_by_index(a, [0, 0]), time_spent=95)

    mine = api.client.get(f"/attempts/{attempt_id}", headers=headers(2)).json()
    assert mine["time_spent"] == 95
    assert mine["tab_switch_count"] is None
    assert mine["integrity_events"] is None
    assert all(item["correct_option"] is None for item in mine["review"])

    owner = api.client.get(f"/attempts/{attempt_id}", headers=headers(OWNER)).json()
    assert owner["tab_switch_count"] == 0
    assert owner["review"][1]["correct_option"] == 1

    r = api.client.get(f"/attempts/{attempt_id}", headers=headers(3))
    assert r.status_code == 403


def test_exam_review_survives_question_edits(api):
    a = api.published(exam_payload())
    attempt_id = api.start(a["id"], 2).json()["attempt_id"]
    api.submit(attempt_id, 2, answers_by_index(a, [0, 1]))

    api.client.post(f"/assessments/{a['id']}/unpublish", headers=headers(OWNER))
    qid = a["questions"][0]["id"]
    r = api.client.put(
        f"/assessments/{a['id']}/questions/{qid}", json=question("Rewritten", correct=3), headers=headers(OWNER)
    )
    assert r.status_code == 200

    report = api.client.get(f"/attempts/{attempt_id}", headers=headers(OWNER)).json()
    assert report["review"][0]["question"] == "Q1"
    assert report["review"][0]["correct_option"] == 0
    assert report["score"] == 2


def test_attempt_listing(api):
    a = api.published(exam_payload())
    api.take(a["id"], 2, answers_by_index(a, [0, 1]))
    api.take(a["id"], 3, answers_by_index(a, [0, 0]))

    owner_view = api.client.get(f"/assessments/{a['id']}/attempts", headers=headers(OWNER)).json()
    assert {at["user_id"] for at in owner_view} == {2, 3}

    own = api.client.get(f"/assessments/{a['id']}/attempts", headers=headers(2)).json()
    assert [at["user_id"] for at in own] == [2]

    catalog = api.client.get("/assessments/published", headers=headers(2)).json()
    assert catalog[0]["is_completed"] is True
    assert catalog[0]["last_attempt"]["score"] == 2


def test_catalog_completion_follows_latest_attempt(api):
    a = api.published(exam_payload(allow_retake=True, max_attempts=None))
    api.take(a["id"], 4, answers_by_index(a, [1, 0]))

    catalog = api.client.get("/assessments/published", headers=headers(4)).json()
    assert catalog[0]["last_attempt"]["status"] == "submitted"
    assert catalog[0]["is_completed"] is False

    api.take(a["id"], 4, answers_by_index(a, [0, 1]))
    catalog = api.client.get("/assessments/published", headers=headers(4)).json()
    assert catalog[0]["is_completed"] is True


def test_delete_cascades_to_attempts(api):
    a = api.published(exam_payload())
    attempt_id = api.start(a["id"], 2).json()["attempt_id"]
    api.client.post(f"/attempts/{attempt_id}/integrity-events", json={}, headers=headers(2))
    api.submit(attempt_id, 2, answers_by_index(a, [0, 1]))

    r = api.client.delete(f"/assessments/{a['id']}", headers=headers(OWNER))
    assert r.status_code == 200
    assert api.client.get(f"/attempts/{attempt_id}", headers=headers(2)).status_code == 404
    assert api.client.get(f"/assessments/{a['id']}/full", headers=headers(OWNER)).status_code == 404


# -------------------------
# Lesson quizzes
# -------------------------

def test_quiz_start_hands_out_safe_questions(api):
    a = api.published(quiz_payload())
    r = api.start(a["id"], 2)
    assert r.status_code == 200
    payload = r.json()["assessment"]
    assert payload["id"] == a["id"]
    assert payload["attempts_used"] == 1
    for q in payload["questions"]:
        assert "explanation" not in q
        for opt in q["options"]:
            assert "is_correct" not in opt


def test_quiz_passes_on_percentage(api):
    a = api.published(quiz_payload(allow_retake=True, max_attempts=3))
    half = api.take(a["id"], 2, answers_by_index(a, [2, 0]))
    assert half["percentage"] == 50
    assert half["is_passed"] is False
    assert half["percentile"] is None
    # lesson quizzes reveal answers on submit whenever correct answers are shown
    assert half["review"][1]["correct_option"] == 3

    full = api.take(a["id"], 2, answers_by_index(a, [2, 3]))
    assert full["is_passed"] is True
    assert full["can_retake"] is True


def test_free_quiz_needs_no_enrollment(api):
    a = api.published(quiz_payload(is_free=True))
    assert api.start(a["id"], OUTSIDER).status_code == 200


def test_quiz_ignores_scheduling_window(api, future):
    a = api.published(quiz_payload(start_date=future.isoformat()))
    assert a["start_date"] is None
    assert api.start(a["id"], 2).status_code == 200


def test_passing_quiz_completes_the_lesson(api, courses):
    a = api.published(quiz_payload(allow_retake=True, max_attempts=None))
    api.take(a["id"], 2, answers_by_index(a, [2, 0]))
    assert courses.completed_lessons == []

    api.take(a["id"], 2, answers_by_index(a, [2, 3]))
    assert courses.completed_lessons == [(2, COURSE, 500, 100)]


def test_passing_exam_leaves_lesson_progress_alone(api, courses):
    a = api.published(exam_payload())
    assert api.take(a["id"], 2, answers_by_index(a, [0, 1]))["is_passed"] is True
    assert courses.completed_lessons == []


def test_progress_outage_does_not_fail_the_submission(api, courses):
    def down(user_id, course_id, lesson_id, score):
        raise CollaboratorUnavailable("Progress update failed")

    courses.mark_lesson_passed = down
    a = api.published(quiz_payload())
    result = api.take(a["id"], 2, answers_by_index(a, [2, 3]))
    assert result["is_passed"] is True

    report = api.client.get(f"/attempts/{result['attempt_id']}", headers=headers(2)).json()
    assert report["status"] == "submitted"


# -------------------------
# Failed submissions
# -------------------------

def test_failed_submit_keeps_the_attempt_open(session_factory, monkeypatch):
    db = session_factory()
    a = seed_exam(db, passing_marks=1)
    attempt_id = attempt_ops.start_attempt(db, FakeCourseDirectory(), a, 2).attempt_id
    payload = SubmitAttemptIn(
        answers=[{"question_id": q.id, "selected_option": pick} for q, pick in zip(a.questions, [0, 1])]
    )

    def broken(db, a):
        raise SQLAlchemyError("stats table locked")

    monkeypatch.setattr(attempt_ops, "refresh_assessment_stats", broken)
    with pytest.raises(SQLAlchemyError):
        attempt_ops.submit_attempt(db, FakeCourseDirectory(), attempt_ops.get_attempt(db, attempt_id), 2, payload)

    check = session_factory()
    stored = check.get(Attempt, attempt_id)
    assert stored.status == "in_progress"
    assert stored.submitted_at is None
    assert stored.answers == []
    assert check.get(Assessment, a.id).attempt_count == 0
    check.close()

    monkeypatch.undo()
    result = attempt_ops.submit_attempt(
        db, FakeCourseDirectory(), attempt_ops.get_attempt(db, attempt_id), 2, payload
    )
    assert result.score == 2
    assert result.is_passed is True
