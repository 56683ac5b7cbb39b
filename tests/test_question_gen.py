import json

import pytest

from assessment_service.errors import GenerationFailed
from assessment_service.question_gen import build_prompt, parse_generated_questions
from assessment_service.schemas import GenerateQuestionsIn
from helpers import OWNER, exam_payload, headers

REPLY = """Sure! Here are your questions:
[
  {
    "question": "What is the capital of France?",
    "options": ["London", "Berlin", "Paris", "Madrid"],
    "correctAnswer": "Paris",
    "explanation": "Paris is the capital of France.",
    "difficulty": "Easy"
  },
  {
    "question": "2 + 2 = ?",
    "options": ["3", "4", "5", "22"],
    "correctAnswer": "four",
    "difficulty": "impossible"
  }
]
Let me know if you need more."""


def test_parse_extracts_array_from_chatter():
    drafts = parse_generated_questions(REPLY, difficulty="hard")
    assert len(drafts) == 2

    first = drafts[0]
    assert first.text == "What is the capital of France?"
    assert [o.is_correct for o in first.options] == [False, False, True, False]
    assert first.difficulty == "easy"
    assert first.points == 1

    second = drafts[1]
    # unmatched answer falls back to the first option
    assert [o.is_correct for o in second.options] == [True, False, False, False]
    assert second.difficulty == "hard"
    assert second.explanation == ""


@pytest.mark.parametrize(
    "raw",
    [
        "no json here",
        "[not json]",
        "[]",
        json.dumps([{"question": "Q", "options": ["a", "b", "c"], "correctAnswer": "a"}]),
        json.dumps([{"options": ["a", "b", "c", "d"], "correctAnswer": "a"}]),
        json.dumps(["just a string"]),
    ],
)
def test_parse_rejects_malformed_replies(raw):
    with pytest.raises(GenerationFailed):
        parse_generated_questions(raw)


def test_prompt_carries_request_details():
    req = GenerateQuestionsIn(topic="Photosynthesis", count=7, difficulty="easy", lesson_description="Plants 101")
    prompt = build_prompt(req)
    assert "Generate 7 multiple-choice questions" in prompt
    assert '"Photosynthesis"' in prompt
    assert "Plants 101" in prompt


def test_count_is_bounded(client):
    r = client.post(
        "/assessments/generate-questions", json={"topic": "x", "count": 21}, headers=headers(OWNER)
    )
    assert r.status_code == 422


def test_generate_endpoint_returns_usable_drafts(client, generator, api):
    generator.reply = REPLY
    r = client.post(
        "/assessments/generate-questions",
        json={"topic": "Geography", "count": 2},
        headers=headers(OWNER),
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["count"] == 2
    assert "Geography" in generator.prompts[0]

    a = api.create(exam_payload(questions=body["questions"], is_ai_generated=True, ai_prompt="Geography"))
    assert a["total_questions"] == 2
    assert a["is_ai_generated"] is True


def test_generate_endpoint_bad_reply(client, generator):
    generator.reply = "I cannot help with that."
    r = client.post("/assessments/generate-questions", json={"topic": "x"}, headers=headers(OWNER))
    assert r.status_code == 502
    assert r.json()["reason"] == "generation_failed"


def test_generate_without_api_key_is_unavailable(client, generator):
    generator.api_key = ""
    r = client.post("/assessments/generate-questions", json={"topic": "x"}, headers=headers(OWNER))
    assert r.status_code == 503
