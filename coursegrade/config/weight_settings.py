"""
Weight Allocation Settings

Centralized configuration for the weight allocation engine.
All settings are loaded from environment variables (a local .env file is
honoured through python-dotenv).
"""
import os
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

# Weight columns are stored as Numeric(12, 9)
MAX_ROUNDING_PRECISION = 9


class TopicSharePolicy(str, Enum):
    """How a course's lecture/exam pools are divided between its topics."""
    BASIS = "basis"   # proportional to each topic's total duration / marks
    EQUAL = "equal"   # every topic receives pool / number_of_topics


def quantizer_for(precision: int) -> Decimal:
    """Smallest step at the given number of decimal places."""
    return Decimal(1).scaleb(-precision)


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


def get_int_env(key: str, default: int) -> int:
    """Get an integer value from environment variable."""
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {value!r}")


def get_decimal_env(key: str, default: str) -> Decimal:
    """Get a Decimal value from environment variable."""
    value = os.getenv(key, default)
    try:
        return Decimal(value.strip())
    except InvalidOperation:
        raise ValueError(f"{key} must be numeric, got {value!r}")


class WeightSettings:
    """
    Settings for weight distribution and recalculation.

    rounding_precision: decimal places every non-last item is truncated to
    epsilon: tolerance used by sum-equality checks
    topic_share_policy: see TopicSharePolicy
    verify_course_balance: run VERIFY_COURSE steps after cascades
    default_lecture_weight: lecture_weight assigned to new courses
    """

    def __init__(
        self,
        rounding_precision: int = 6,
        epsilon: Decimal = Decimal("1e-9"),
        topic_share_policy: TopicSharePolicy = TopicSharePolicy.BASIS,
        verify_course_balance: bool = True,
        default_lecture_weight: Decimal = Decimal("50"),
    ):
        if not 0 <= rounding_precision <= MAX_ROUNDING_PRECISION:
            raise ValueError(
                f"rounding_precision must be between 0 and {MAX_ROUNDING_PRECISION}"
            )
        if epsilon < 0:
            raise ValueError("epsilon must be non-negative")
        if not Decimal("0") <= Decimal(default_lecture_weight) <= Decimal("100"):
            raise ValueError("default_lecture_weight must be between 0 and 100")

        self.rounding_precision = rounding_precision
        self.epsilon = Decimal(epsilon)
        self.topic_share_policy = TopicSharePolicy(topic_share_policy)
        self.verify_course_balance = verify_course_balance
        self.default_lecture_weight = Decimal(default_lecture_weight)

    @property
    def quantizer(self) -> Decimal:
        """Decimal exponent matching rounding_precision (e.g. 0.000001)."""
        return quantizer_for(self.rounding_precision)

    @classmethod
    def from_env(cls) -> "WeightSettings":
        return cls(
            rounding_precision=get_int_env('WEIGHT_ROUNDING_PRECISION', 6),
            epsilon=get_decimal_env('WEIGHT_SUM_EPSILON', '1e-9'),
            topic_share_policy=TopicSharePolicy(
                os.getenv('WEIGHT_TOPIC_SHARE_POLICY', TopicSharePolicy.BASIS.value).lower()
            ),
            verify_course_balance=get_bool_env('FEATURE_VERIFY_COURSE_BALANCE', True),
            default_lecture_weight=get_decimal_env('DEFAULT_LECTURE_WEIGHT', '50'),
        )


_settings: Optional[WeightSettings] = None


def get_weight_settings() -> WeightSettings:
    """Process-wide settings, loaded from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = WeightSettings.from_env()
    return _settings
