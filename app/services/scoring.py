"""
Wellness scoring for a finished check-in.

`score` is a pure function of the issued questions and the answers: no clock,
no randomness, and answers are visited in question-id order so the result
does not depend on the order they were given in.
"""
from __future__ import annotations

import re
from statistics import fmean
from typing import Mapping, Optional, Sequence

from app.domain.checkin import Answer, Question, QuestionKind, ScoreResult

NEUTRAL_LEVEL = 50.0
SENTIMENT_STEP = 5
DETAIL_BONUS = 2
DETAIL_LENGTH = 50
THOUGHTFUL_LENGTH = 30

POSITIVE = re.compile(r"\b(good|great|better|fine|okay|well|calm|happy|rested|energized)\b", re.IGNORECASE)
NEGATIVE = re.compile(r"\b(bad|awful|terrible|stressed|anxious|sad|tired|exhausted|overwhelmed)\b", re.IGNORECASE)


def category_label(category_id: Optional[str]) -> str:
    if not category_id:
        return "general wellness"
    return category_id.replace("-", " ").replace("_", " ")


def _clamp(value: float) -> int:
    return int(max(0, min(100, round(value))))


def _scale_signal(question: Question, raw: str) -> float:
    low = question.min if question.min is not None else 0.0
    high = question.max if question.max is not None else 10.0
    if high <= low:
        return NEUTRAL_LEVEL
    position = (min(max(float(raw), low), high) - low) / (high - low)
    if question.reverse:
        position = 1.0 - position
    return position * 100.0


def _choice_signal(question: Question, value: str) -> float:
    # options run best -> worst
    n = len(question.options)
    if n < 2:
        return NEUTRAL_LEVEL
    return (n - 1 - question.options.index(value)) * 100.0 / (n - 1)


def _sentiment(text: str) -> int:
    adjust = 0
    if POSITIVE.search(text):
        adjust += SENTIMENT_STEP
    if NEGATIVE.search(text):
        adjust -= SENTIMENT_STEP
    if len(text) > DETAIL_LENGTH:
        adjust += DETAIL_BONUS
    return adjust


def _free_text(question: Question, answer: Answer) -> str:
    parts = []
    if question.kind is QuestionKind.TEXT and isinstance(answer.value, str):
        parts.append(answer.value)
    if answer.explanation:
        parts.append(answer.explanation)
    return " ".join(parts)


def wellness_level(questions: Sequence[Question], answers: Mapping[str, Answer]) -> int:
    by_id = {q.id: q for q in questions}
    signals: list[float] = []
    adjust = 0
    for question_id in sorted(answers):
        question = by_id.get(question_id)
        if question is None:
            continue
        answer = answers[question_id]
        if question.kind is QuestionKind.SCALE and isinstance(answer.value, str):
            signals.append(_scale_signal(question, answer.value))
        elif question.kind is QuestionKind.CHOICE and answer.value in question.options:
            signals.append(_choice_signal(question, answer.value))
        text = _free_text(question, answer)
        if text:
            adjust += _sentiment(text)
    base = fmean(signals) if signals else NEUTRAL_LEVEL
    return _clamp(base + adjust)


def score(category_id: Optional[str], questions: Sequence[Question], answers: Mapping[str, Answer]) -> ScoreResult:
    level = wellness_level(questions, answers)
    label = category_label(category_id)

    if level >= 70:
        brief = "Doing well"
        insight = f"You're doing well in {label}. Your responses show positive patterns."
    elif level >= 40:
        brief = "Room for growth"
        insight = f"There's room for growth in {label}. Small steps can make a big difference."
    else:
        brief = "Needs attention"
        insight = f"{label.capitalize()} needs some extra attention right now. That's completely okay and normal."

    if any(len(_free_text(q, answers[q.id])) > THOUGHTFUL_LENGTH for q in questions if q.id in answers):
        insight += " Your thoughtful responses show good self-awareness."

    momentum = "positive momentum" if level >= 60 else "areas that could benefit from attention"
    summary = (
        f"Based on your {label} check-in, your current wellness level is {level}/100. "
        f"Your responses indicate {momentum}. "
        "Remember that every check-in is a step toward greater self-awareness and wellbeing."
    )
    return ScoreResult(wellness_level=level, summary=summary, insight=insight, brief=brief)
