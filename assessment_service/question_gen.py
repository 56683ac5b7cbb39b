"""Draft multiple-choice questions from an OpenAI-compatible chat model.

The model is an untrusted producer: whatever it returns is parsed and
validated into ``QuestionIn`` drafts, which an author then saves through the
normal question bank routes.
"""

import json
import logging
import random
import time
from typing import Optional

from openai import OpenAI, OpenAIError, RateLimitError
from pydantic import ValidationError

from .errors import CollaboratorUnavailable, GenerationFailed
from .schemas import GenerateQuestionsIn, OptionIn, QuestionIn

logger = logging.getLogger(__name__)

OPTIONS_PER_QUESTION = 4
DIFFICULTIES = ("easy", "medium", "hard")


def call_with_backoff(fn, max_retries: int = 5):
    base = 0.5
    for attempt in range(max_retries):
        try:
            return fn()
        except RateLimitError:
            if attempt == max_retries - 1:
                raise
            time.sleep(min(15.0, base * (2 ** attempt)) + random.uniform(0, 0.25))


def build_prompt(req: GenerateQuestionsIn) -> str:
    context = ""
    if req.lesson_description:
        context += f"\nLesson context:\n{req.lesson_description}\n"
    if req.custom_instructions:
        context += f"\nAdditional instructions:\n{req.custom_instructions}\n"

    return f"""
You are an expert exam question generator for educational purposes.

Generate {req.count} multiple-choice questions about: "{req.topic}".
{context}
Each question must have:
- "question": a clear, specific question
- "options": exactly {OPTIONS_PER_QUESTION} distinct options
- "correctAnswer": the correct option text, matching one option exactly
- "explanation": one or two sentences on why the answer is correct
- "difficulty": "{req.difficulty}"

Return ONLY a JSON array with no additional text:
[
  {{
    "question": "What is the capital of France?",
    "options": ["London", "Berlin", "Paris", "Madrid"],
    "correctAnswer": "Paris",
    "explanation": "Paris is the capital and largest city of France.",
    "difficulty": "easy"
  }}
]
"""


def parse_generated_questions(raw: str, difficulty: str = "medium") -> list[QuestionIn]:
    start = raw.find("[")
    end = raw.rfind("]") + 1
    if start == -1 or end == 0 or end <= start:
        raise GenerationFailed("Generator returned no JSON array")

    try:
        items = json.loads(raw[start:end])
    except json.JSONDecodeError:
        raise GenerationFailed("Generator returned invalid JSON")
    if not isinstance(items, list) or not items:
        raise GenerationFailed("Generator returned no questions")

    drafts: list[QuestionIn] = []
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise GenerationFailed(f"Invalid question format at index {i}")
        text = str(item.get("question") or "").strip()
        options = item.get("options")
        if not text or not isinstance(options, list) or len(options) != OPTIONS_PER_QUESTION:
            raise GenerationFailed(f"Invalid question format at index {i}")

        option_texts = [str(o).strip() for o in options]
        answer = str(item.get("correctAnswer") or option_texts[0]).strip()
        # an answer that matches no option falls back to the first one
        correct = option_texts.index(answer) if answer in option_texts else 0

        level = str(item.get("difficulty") or difficulty).strip().lower()
        if level not in DIFFICULTIES:
            level = difficulty

        try:
            drafts.append(
                QuestionIn(
                    text=text,
                    options=[
                        OptionIn(text=t, is_correct=(idx == correct))
                        for idx, t in enumerate(option_texts)
                    ],
                    explanation=str(item.get("explanation") or "").strip(),
                    difficulty=level,
                )
            )
        except ValidationError:
            raise GenerationFailed(f"Invalid question content at index {i}")
    return drafts


class QuestionGenerator:
    def __init__(self, api_key: Optional[str], base_url: str, model: str, timeout: float = 60.0):
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.timeout = timeout

    def _client(self) -> OpenAI:
        if not self.api_key:
            raise CollaboratorUnavailable("Question generator is not configured")
        return OpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout)

    def complete(self, prompt: str) -> str:
        client = self._client()
        try:
            resp = call_with_backoff(lambda: client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=2000,
                temperature=0.5,
            ))
        except RateLimitError:
            raise GenerationFailed("Rate limited. Please retry in a few seconds.", rate_limited=True)
        except OpenAIError as e:
            logger.error("Question generator error: %s", type(e).__name__)
            raise GenerationFailed(f"LLM provider error: {type(e).__name__}")
        return resp.choices[0].message.content or ""

    def generate(self, req: GenerateQuestionsIn) -> list[QuestionIn]:
        raw = self.complete(build_prompt(req))
        drafts = parse_generated_questions(raw, req.difficulty)
        logger.info("Generated %s question drafts on %r", len(drafts), req.topic)
        return drafts
