import json
import logging
from typing import Mapping, Optional, Sequence

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from app.core.config import settings
from app.domain.checkin import Answer, CheckInRecord, Question, QuestionKind
from app.domain.errors import GeneratorError
from app.services.questions import QuestionGenerator, TemplateQuestionGenerator

log = logging.getLogger(__name__)

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
MAX_QUESTIONS = 5

SYSTEM = (
  "You are a gentle wellness coach running a short check-in, one question at a time.\n"
  "Given the check-in category, recent wellness levels and the questions answered so far, you will:\n"
  "1) Decide whether enough has been asked (at most 5 questions in total).\n"
  "2) Otherwise write the single next question.\n"
  "3) Return JSON: {\"done\": false, \"question\": {\"text\":\"...\",\"kind\":\"text|scale|choice|multi_choice\","
  "\"options\":[...],\"min\":1,\"max\":10}} or {\"done\": true}\n"
  "Rules:\n"
  "- choice/multi_choice need 2-6 options, listed from most positive to least positive.\n"
  "- scale questions use min 1 and max 10, where 10 is the best outcome.\n"
  "- keep questions short, warm and non-clinical.\n"
)


def _parse_question(data: dict, question_id: str) -> Question:
    try:
        kind = QuestionKind(data.get("kind") or "text")
        text = str(data["text"]).strip()
        options = tuple(str(o) for o in data.get("options") or ())
    except (KeyError, ValueError, TypeError) as e:
        raise GeneratorError(f"Malformed question from model: {e}") from e
    if not text:
        raise GeneratorError("Model returned an empty question")
    if kind in (QuestionKind.CHOICE, QuestionKind.MULTI_CHOICE) and len(options) < 2:
        raise GeneratorError("Model returned a choice question without options")
    q_min = q_max = None
    if kind is QuestionKind.SCALE:
        try:
            q_min = float(data.get("min", 1))
            q_max = float(data.get("max", 10))
        except (TypeError, ValueError) as e:
            raise GeneratorError(f"Malformed scale bounds from model: {e}") from e
        if q_max <= q_min:
            raise GeneratorError("Model returned an empty scale")
    return Question(id=question_id, text=text, kind=kind, options=options, min=q_min, max=q_max)


def _history(questions: Sequence[Question], answers: Mapping[str, Answer]) -> list[dict]:
    out = []
    for q in questions:
        a = answers.get(q.id)
        out.append({
            "question": q.text,
            "kind": q.kind.value,
            "answer": a.value if a else None,
            "explanation": a.explanation if a else None,
        })
    return out


class OpenAIQuestionGenerator:
    """
    Asks the chat-completions API for each next question. Failures raise
    GeneratorError; nothing is made up in their place.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        # tests pass an httpx.MockTransport
        self.transport = transport

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_fixed(1),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, req: dict) -> dict:
        headers = {"Authorization": f"Bearer {settings.OPENAI_API_KEY}"}
        timeout_config = httpx.Timeout(connect=10.0, read=60.0, write=10.0, pool=60.0)
        async with httpx.AsyncClient(timeout=timeout_config, transport=self.transport) as client:
            r = await client.post(OPENAI_URL, json=req, headers=headers)
            r.raise_for_status()
            return r.json()

    async def _ask(self, context: dict) -> dict:
        if not settings.OPENAI_API_KEY:
            raise GeneratorError("OPENAI_API_KEY is not configured")
        req = {
          "model": settings.OPENAI_MODEL,
          "messages": [
            {"role": "system", "content": SYSTEM},
            {"role": "user", "content": f"Context:\n{json.dumps(context)}\nReturn ONLY JSON."},
          ],
          "temperature": settings.OPENAI_TEMPERATURE,
          "response_format": {"type": "json_object"},
        }
        try:
            data = await self._post(req)
            parsed = json.loads(data["choices"][0]["message"]["content"])
        except httpx.HTTPStatusError as e:
            log.warning("OpenAI API HTTP error: %s", e.response.status_code)
            raise GeneratorError(f"Question service returned {e.response.status_code}") from e
        except httpx.RequestError as e:
            log.warning("OpenAI API request failed: %s", e)
            raise GeneratorError("Question service unreachable") from e
        except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
            log.warning("OpenAI API response parsing error: %s", e)
            raise GeneratorError("Question service returned an unreadable response") from e
        if not isinstance(parsed, dict):
            log.warning("OpenAI API returned %s instead of an object", type(parsed).__name__)
            raise GeneratorError("Question service returned an unreadable response")
        return parsed

    async def first(self, category_id: Optional[str], prior_completed: Sequence[CheckInRecord]) -> Question:
        context = {
            "category": category_id or "general",
            "recent_wellness_levels": [c.result.wellness_level for c in prior_completed if c.result],
            "answered": [],
        }
        parsed = await self._ask(context)
        if not isinstance(parsed.get("question"), dict):
            raise GeneratorError("Model did not return a first question")
        return _parse_question(parsed["question"], "q1")

    async def next(
        self, category_id: Optional[str], questions: Sequence[Question], answers: Mapping[str, Answer]
    ) -> Optional[Question]:
        if len(questions) >= MAX_QUESTIONS:
            return None
        parsed = await self._ask({
            "category": category_id or "general",
            "answered": _history(questions, answers),
        })
        if parsed.get("done"):
            return None
        if not isinstance(parsed.get("question"), dict):
            raise GeneratorError("Model returned neither a question nor done")
        return _parse_question(parsed["question"], f"q{len(questions) + 1}")

    async def missing(
        self, category_id: Optional[str], questions: Sequence[Question], answers: Mapping[str, Answer]
    ) -> list[str]:
        return [q.id for q in questions if q.required and q.id not in answers]


def build_question_generator() -> QuestionGenerator:
    if settings.QUESTION_GENERATOR == "openai":
        return OpenAIQuestionGenerator()
    return TemplateQuestionGenerator()
