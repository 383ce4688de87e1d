"""
coursegrade/exceptions.py
Typed exceptions for the weight allocation engine

Provides:
- Validation failures (negative budgets, out-of-range splits)
- Missing course tree rows
- Allocation / roll-up inconsistencies detected after a cascade
"""


class CourseGradeException(Exception):
    """Base exception for coursegrade"""
    status_code: int = 500

    def __init__(self, message: str, status_code: int = None):
        self.message = message
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)


class InvalidInputError(CourseGradeException):
    """
    Raised when a caller passes values the engine cannot allocate.

    Examples:
    - Negative budget or negative basis given to the distribution calculator
    - lecture_weight outside 0-100
    - Negative lecture duration or exam marks
    """
    status_code = 400

    def __init__(self, message: str = "Invalid input"):
        super().__init__(message, self.status_code)


class NotFoundError(CourseGradeException):
    """
    Raised when requested resource doesn't exist.
    """
    status_code = 404

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, self.status_code)


class InconsistentStateError(CourseGradeException):
    """
    Raised when a course's rolled-up topic weights do not match the totals
    its allocation assigned after a full recalculation cascade.

    Indicates a missed recalculation step or a sequencing bug. Never
    auto-corrected.
    """
    status_code = 500

    def __init__(self, message: str = "Course weights are inconsistent", expected=None, actual=None):
        self.expected = expected
        self.actual = actual
        super().__init__(message, self.status_code)
