"""
Question generation for the MindMath quiz.
Draws operands by difficulty tier and builds a question/answer pair for one
randomly chosen operation.
"""
import logging
import math
import random
from typing import Optional

from .models import Operation, Question, SessionConfig

logger = logging.getLogger(__name__)

# Largest n for which n! is still representable as a float
FACTORIAL_LIMIT = 170

ANSWER_PRECISION = 4
OPERAND_PRECISION = 2

DIVISOR_RANGE = (1, 10)
EXPONENT_RANGE = (2, 6)

_default_rng = random.Random()


class QuestionGenerationError(Exception):
    """Base exception for question generation errors."""
    pass


class FactorialOverflowError(QuestionGenerationError, OverflowError):
    """Raised when a factorial argument exceeds FACTORIAL_LIMIT."""
    pass


def factorial(n: int) -> int:
    """
    Iterative factorial on arbitrary precision integers.

    Raises:
        ValueError: If n is negative or not integral
        FactorialOverflowError: If n exceeds FACTORIAL_LIMIT
    """
    if isinstance(n, float):
        if not n.is_integer():
            raise ValueError(f"Factorial is only defined for integers, got {n}")
        n = int(n)
    if n < 0:
        raise ValueError(f"Factorial is not defined for negative numbers, got {n}")
    if n > FACTORIAL_LIMIT:
        raise FactorialOverflowError(f"Factorial argument {n} exceeds limit of {FACTORIAL_LIMIT}")

    result = 1
    for i in range(2, n + 1):
        result *= i
    return result


def permutations(n: int, k: int) -> int:
    """P(n, k) = n! / (n - k)!"""
    return factorial(n) // factorial(n - k)


def combinations(n: int, k: int) -> int:
    """C(n, k) = n! / (k! (n - k)!)"""
    return factorial(n) // (factorial(k) * factorial(n - k))


def draw(max_magnitude: int, allow_negatives: bool = False, allow_decimals: bool = False,
         rng: Optional[random.Random] = None) -> float:
    """
    Draw an operand bounded by max_magnitude.

    A uniform integer in [1, max_magnitude], negated with probability 0.5 when
    negatives are allowed, offset by a uniform fraction in [0, 1) when
    decimals are allowed, then rounded to two places.
    """
    rng = rng or _default_rng
    num = rng.randint(1, max_magnitude)
    if allow_negatives and rng.random() < 0.5:
        num = -num
    if allow_decimals:
        num += rng.random()
    return round(float(num), OPERAND_PRECISION)


def format_number(value: float) -> str:
    """Render an operand without trailing zeros ("7", "3.5", "-0.25")."""
    text = f"{round(value, OPERAND_PRECISION):.{OPERAND_PRECISION}f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def _magnitude(value: float) -> float:
    # sqrt and log need a positive argument
    return abs(value) or 1.0


def generate(config: SessionConfig, rng: Optional[random.Random] = None) -> Question:
    """
    Generate one question for the given session configuration.

    Args:
        config: Session configuration (difficulty, operations, number options)
        rng: Optional random source; the same seed yields the same question

    Returns:
        Question with its answer rounded to four decimal places
    """
    rng = rng or _default_rng
    operation = rng.choice(config.ordered_operations)
    max_magnitude = config.difficulty.max_magnitude

    num1 = draw(max_magnitude, config.allow_negatives, config.allow_decimals, rng)
    num2 = draw(max_magnitude, config.allow_negatives, config.allow_decimals, rng)

    if operation is Operation.ADD:
        answer = num1 + num2
        prompt = f"{format_number(num1)} + {format_number(num2)}"
        operands = (num1, num2)

    elif operation is Operation.SUB:
        answer = num1 - num2
        prompt = f"{format_number(num1)} - {format_number(num2)}"
        operands = (num1, num2)

    elif operation is Operation.MUL:
        answer = num1 * num2
        prompt = f"{format_number(num1)} × {format_number(num2)}"
        operands = (num1, num2)

    elif operation is Operation.DIV:
        # The first operand is the quotient; the dividend is rebuilt from it
        answer = num1
        divisor = rng.randint(*DIVISOR_RANGE)
        dividend = round(answer * divisor, OPERAND_PRECISION)
        prompt = f"{format_number(dividend)} ÷ {divisor}"
        operands = (dividend, float(divisor))

    elif operation is Operation.POW:
        exponent = rng.randint(*EXPONENT_RANGE)
        answer = num1 ** exponent
        prompt = f"{format_number(num1)}^{exponent}"
        operands = (num1, float(exponent))

    elif operation is Operation.SQRT:
        radicand = _magnitude(num1)
        answer = math.sqrt(radicand)
        prompt = f"√{format_number(radicand)}"
        operands = (radicand,)

    elif operation is Operation.LOG:
        value = _magnitude(num1)
        base = _magnitude(num2)
        if base == 1:
            base = 2.0
        answer = math.log(value) / math.log(base)
        prompt = f"log{format_number(base)}({format_number(value)})"
        operands = (value, base)

    elif operation in (Operation.SIN, Operation.COS, Operation.TAN):
        func = {Operation.SIN: math.sin, Operation.COS: math.cos, Operation.TAN: math.tan}[operation]
        answer = func(math.radians(num1))
        prompt = f"{operation.key}({format_number(num1)}°)"
        operands = (num1,)

    else:
        # Permutation and combination draw plain integers within the factorial limit
        bound = min(max_magnitude, FACTORIAL_LIMIT)
        n = rng.randint(1, bound)
        k = min(rng.randint(1, bound), n)
        if operation is Operation.PERMUTATION:
            answer = permutations(n, k)
        else:
            answer = combinations(n, k)
        prompt = f"{operation.symbol}({n}, {k})"
        operands = (float(n), float(k))

    question = Question(
        prompt=prompt,
        answer=round(float(answer), ANSWER_PRECISION),
        operation=operation,
        operands=operands,
    )
    logger.debug(
        f"Generated question '{question.prompt}' = {question.answer}",
        extra={
            'event_type': 'question_generated',
            'operation': operation.key,
            'difficulty': config.difficulty.value,
        }
    )
    return question
