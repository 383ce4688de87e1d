from .base import Base

# Course tree
from .course import Course
from .topic import Topic
from .lecture import Lecture
from .exam import Exam
from .question import Question

# Student progress
from .enrollment import Enrollment, LectureProgress, ExamAttempt, ExamAttemptStatus

__all__ = [
    "Base",
    "Course",
    "Topic",
    "Lecture",
    "Exam",
    "Question",
    "Enrollment",
    "LectureProgress",
    "ExamAttempt",
    "ExamAttemptStatus",
]
