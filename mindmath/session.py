"""
Session state machine for the MindMath quiz.

Sessions move through setup -> playing -> finished -> (reset) -> setup.
``reduce`` applies one event to an immutable SessionState and returns the
next state; timers live outside and feed Tick and SpeedRoundTimeout events in.
"""
import math
import re
from dataclasses import dataclass, replace
from typing import Callable, Optional

from .models import (
    FinishReason,
    Question,
    SessionConfig,
    SessionPhase,
    SessionState,
    SessionSummary,
)
from .question_generator import generate

ANSWER_TOLERANCE = 0.01

_NUMBER_PREFIX = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

QuestionFactory = Callable[[SessionConfig], Question]


class InvalidTransitionError(ValueError):
    """Raised when an event is not valid in the session's current phase."""

    def __init__(self, event, phase: SessionPhase):
        self.event = event
        self.phase = phase
        super().__init__(f"{type(event).__name__} is not allowed while {phase.value}")


# Events

@dataclass(frozen=True)
class Configure:
    config: SessionConfig


@dataclass(frozen=True)
class Start:
    pass


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class Submit:
    text: str


@dataclass(frozen=True)
class SpeedRoundTimeout:
    question_number: int


@dataclass(frozen=True)
class Quit:
    pass


@dataclass(frozen=True)
class Reset:
    pass


def parse_answer(text: Optional[str]) -> float:
    """
    Read the leading number from typed answer text.

    Returns NaN when no number can be read; NaN never matches an answer.
    """
    if text is None:
        return math.nan
    match = _NUMBER_PREFIX.match(text.strip())
    if not match:
        return math.nan
    return float(match.group(0))


def is_correct(expected: float, value: float) -> bool:
    return abs(value - expected) < ANSWER_TOLERANCE


def accuracy(score: int, answered: int) -> Optional[float]:
    """Percentage of correct answers, or None when nothing was answered."""
    if answered == 0:
        return None
    return score / answered * 100


def format_accuracy(value: Optional[float]) -> str:
    if value is None:
        return "N/A"
    return f"{value:.2f}%"


def summarize(state: SessionState) -> SessionSummary:
    value = accuracy(state.score, state.answered)
    return SessionSummary(
        score=state.score,
        answered=state.answered,
        question_count=state.config.question_count,
        accuracy=value,
        accuracy_text=format_accuracy(value),
        finish_reason=state.finish_reason,
    )


def _finish(state: SessionState, reason: FinishReason) -> SessionState:
    return replace(state, phase=SessionPhase.FINISHED, current_question=None, finish_reason=reason)


def _answer(state: SessionState, text: Optional[str], next_question: QuestionFactory) -> SessionState:
    correct = is_correct(state.current_question.answer, parse_answer(text))
    score = state.score + 1 if correct else state.score
    answered = state.answered + 1
    state = replace(state, score=score, answered=answered)

    if answered >= state.config.question_count:
        return _finish(state, FinishReason.COMPLETED)

    return replace(
        state,
        current_question=next_question(state.config),
        question_number=state.question_number + 1,
    )


def reduce(state: SessionState, event, next_question: QuestionFactory = generate) -> SessionState:
    """
    Apply one event to a session state.

    Args:
        state: Current session snapshot
        event: One of Configure, Start, Tick, Submit, SpeedRoundTimeout, Quit, Reset
        next_question: Factory producing the next question for a config

    Returns:
        The next session snapshot (the same object when the event is ignored)

    Raises:
        InvalidTransitionError: If the event is not allowed in the current phase
    """
    phase = state.phase

    if isinstance(event, Configure):
        if phase is not SessionPhase.SETUP:
            raise InvalidTransitionError(event, phase)
        return replace(SessionState.initial(event.config), question_number=state.question_number)

    if isinstance(event, Start):
        if phase is not SessionPhase.SETUP:
            raise InvalidTransitionError(event, phase)
        return SessionState(
            phase=SessionPhase.PLAYING,
            config=state.config,
            current_question=next_question(state.config),
            score=0,
            answered=0,
            time_remaining=state.config.time_limit_seconds,
            question_number=state.question_number + 1,
        )

    if isinstance(event, Tick):
        # Ticks that arrive after the countdown stopped are stale
        if phase is not SessionPhase.PLAYING or state.time_remaining <= 0:
            return state
        remaining = state.time_remaining - 1
        state = replace(state, time_remaining=remaining)
        if remaining == 0:
            return _finish(state, FinishReason.TIME_UP)
        return state

    if isinstance(event, Submit):
        if phase is not SessionPhase.PLAYING:
            raise InvalidTransitionError(event, phase)
        return _answer(state, event.text, next_question)

    if isinstance(event, SpeedRoundTimeout):
        if phase is not SessionPhase.PLAYING or event.question_number != state.question_number:
            return state
        return _answer(state, "", next_question)

    if isinstance(event, Quit):
        if phase is not SessionPhase.PLAYING:
            raise InvalidTransitionError(event, phase)
        return _finish(state, FinishReason.QUIT)

    if isinstance(event, Reset):
        if phase is not SessionPhase.FINISHED:
            raise InvalidTransitionError(event, phase)
        return replace(SessionState.initial(state.config), question_number=state.question_number)

    raise TypeError(f"Unknown session event: {event!r}")
