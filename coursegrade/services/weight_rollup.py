"""
Weight Roll-up Aggregator

Topic weight = sum of its lecture weights + sum of its exam weights.
Course check = sum of topic weights against 100.

Pure functions; callers persist the results.
"""
import logging
from decimal import Decimal
from typing import Iterable, Optional

from coursegrade.config.weight_settings import get_weight_settings
from coursegrade.exceptions import InconsistentStateError
from coursegrade.schemas.weights import CourseBalance
from coursegrade.services.weight_distribution import Number, to_decimal

logger = logging.getLogger(__name__)

COURSE_TOTAL = Decimal("100")


def sum_weights(values: Iterable[Number]) -> Decimal:
    return sum((to_decimal(v) for v in values), Decimal("0"))


def compute_topic_weight(
    lecture_weights: Iterable[Number],
    exam_weights: Iterable[Number],
) -> Decimal:
    """Topic weight is the lecture subtotal plus the exam subtotal."""
    return sum_weights(lecture_weights) + sum_weights(exam_weights)


def course_weight_check(
    topic_weights: Iterable[Number],
    epsilon: Optional[Decimal] = None,
) -> CourseBalance:
    """
    Diagnostic check that a course's topic weights add up to 100.

    A course without topics is vacuously balanced.
    """
    if epsilon is None:
        epsilon = get_weight_settings().epsilon

    weights = [to_decimal(w) for w in topic_weights]
    total = sum_weights(weights)
    if not weights:
        return CourseBalance(balanced=True, total=total)
    return CourseBalance(balanced=abs(total - COURSE_TOTAL) < epsilon, total=total)


def verify_allocation(
    course_id: int,
    actual_total: Number,
    expected_total: Number,
    epsilon: Optional[Decimal] = None,
) -> None:
    """
    Raise InconsistentStateError when the rolled-up topic total of a course
    differs from the total its allocation handed out.
    """
    if epsilon is None:
        epsilon = get_weight_settings().epsilon

    actual = to_decimal(actual_total)
    expected = to_decimal(expected_total)
    if abs(actual - expected) > epsilon:
        logger.error(
            "Course %s weights inconsistent after recalculation: topics total %s, allocated %s",
            course_id, actual, expected,
        )
        raise InconsistentStateError(
            f"Course {course_id} topic weights total {actual}, expected {expected}",
            expected=expected,
            actual=actual,
        )
