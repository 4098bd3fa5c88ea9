"""
Core data models for the MindMath quiz.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional, Tuple


class Difficulty(Enum):
    """Difficulty tiers, each bounding operand magnitude."""
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    OLYMPIAD = "olympiad"

    @property
    def max_magnitude(self) -> int:
        return TIER_MAGNITUDES[self]


TIER_MAGNITUDES = {
    Difficulty.EASY: 10,
    Difficulty.MEDIUM: 50,
    Difficulty.HARD: 100,
    Difficulty.OLYMPIAD: 1000,
}


class Operation(Enum):
    """Question operations, valued by name and carrying a display symbol."""
    ADD = ("add", "+")
    SUB = ("sub", "-")
    MUL = ("mul", "×")
    DIV = ("div", "÷")
    POW = ("pow", "^")
    SQRT = ("sqrt", "√")
    LOG = ("log", "log")
    SIN = ("sin", "sin")
    COS = ("cos", "cos")
    TAN = ("tan", "tan")
    PERMUTATION = ("permutation", "P")
    COMBINATION = ("combination", "C")

    def __init__(self, key: str, symbol: str):
        self.key = key
        self.symbol = symbol

    @classmethod
    def parse(cls, text: str) -> "Operation":
        """
        Look up an operation by name or display symbol.

        Accepts "add", "ADD", "+", "*" and "/" (ASCII forms of × and ÷).

        Raises:
            ValueError: If the text names no operation
        """
        token = text.strip()
        aliases = {"*": cls.MUL, "x": cls.MUL, "/": cls.DIV}
        if token in aliases:
            return aliases[token]
        for op in cls:
            if token.lower() == op.key or token == op.symbol:
                return op
        raise ValueError(f"Unknown operation: {text!r}")


DEFAULT_OPERATIONS = frozenset({Operation.ADD, Operation.SUB, Operation.MUL, Operation.DIV})
DEFAULT_SPEED_ROUND_SECONDS = 5


def _is_count(value) -> bool:
    # bool is an int subclass
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class Question:
    """A single generated question and its expected answer."""
    prompt: str
    answer: float
    operation: Optional[Operation] = None
    operands: Tuple[float, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SessionConfig:
    """Settings chosen at setup for one practice session."""
    difficulty: Difficulty = Difficulty.MEDIUM
    operations: FrozenSet[Operation] = DEFAULT_OPERATIONS
    question_count: int = 10
    time_limit_seconds: int = 60
    allow_negatives: bool = False
    allow_decimals: bool = False
    speed_round_seconds: Optional[int] = None

    def __post_init__(self):
        # Normalise any iterable of operations to a frozenset
        object.__setattr__(self, "operations", frozenset(self.operations))
        if not self.operations:
            raise ValueError("At least one operation must be selected")
        unknown = [op for op in self.operations if not isinstance(op, Operation)]
        if unknown:
            raise ValueError(f"Operations must be Operation members, got {unknown!r}")
        if not _is_count(self.question_count) or self.question_count < 1:
            raise ValueError(f"Question count must be an integer >= 1, got {self.question_count!r}")
        if not _is_count(self.time_limit_seconds) or self.time_limit_seconds < 1:
            raise ValueError(f"Time limit must be an integer >= 1, got {self.time_limit_seconds!r}")
        if self.speed_round_seconds is not None and (
            not _is_count(self.speed_round_seconds) or self.speed_round_seconds < 1
        ):
            raise ValueError(f"Speed round delay must be an integer >= 1, got {self.speed_round_seconds!r}")

    @property
    def speed_round(self) -> bool:
        return self.speed_round_seconds is not None

    @property
    def ordered_operations(self) -> Tuple[Operation, ...]:
        """Selected operations in declaration order."""
        return tuple(op for op in Operation if op in self.operations)


class SessionPhase(Enum):
    """Phases of a practice session."""
    SETUP = "setup"
    PLAYING = "playing"
    FINISHED = "finished"


class FinishReason(Enum):
    """Why a session reached the finished phase."""
    COMPLETED = "completed"
    TIME_UP = "time_up"
    QUIT = "quit"


@dataclass(frozen=True)
class SessionState:
    """Snapshot of a session. Transitions produce new snapshots."""
    phase: SessionPhase
    config: SessionConfig
    current_question: Optional[Question] = None
    score: int = 0
    answered: int = 0
    time_remaining: int = 0
    question_number: int = 0
    finish_reason: Optional[FinishReason] = None

    @classmethod
    def initial(cls, config: SessionConfig) -> "SessionState":
        return cls(phase=SessionPhase.SETUP, config=config, time_remaining=config.time_limit_seconds)


@dataclass(frozen=True)
class SessionSummary:
    """Final result of a session."""
    score: int
    answered: int
    question_count: int
    accuracy: Optional[float]
    accuracy_text: str
    finish_reason: Optional[FinishReason] = None
