"""
coursegrade/orm/enrollment.py
Student enrollment and progress against weighted lectures/exams
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Column, Integer, Boolean, DateTime, Numeric, String, ForeignKey, UniqueConstraint
)

from coursegrade.orm.base import BaseModel, weight_column


class ExamAttemptStatus:
    PASSED = "passed"
    FAILED = "failed"


class Enrollment(BaseModel):
    """
    progress = sum of weights of completed lectures and passed exams,
    i.e. the percentage of the course grade the student has earned.
    """
    __tablename__ = "enrollments"

    student_id = Column(Integer, nullable=False, index=True)

    course_id = Column(
        Integer,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    progress = weight_column("Earned percentage of the course grade")

    __table_args__ = (
        UniqueConstraint('student_id', 'course_id', name='uq_enrollment_student_course'),
    )


class LectureProgress(BaseModel):
    __tablename__ = "lecture_progress"

    student_id = Column(Integer, nullable=False, index=True)

    lecture_id = Column(
        Integer,
        ForeignKey("lectures.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    progress = Column(
        Numeric(5, 2, asdecimal=True),
        nullable=False,
        default=Decimal("0"),
        comment="Watched percentage 0-100, never decreases"
    )

    position_seconds = Column(Integer, nullable=False, default=0, comment="Playback position")

    completed = Column(Boolean, nullable=False, default=False)

    last_watched = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('student_id', 'lecture_id', name='uq_lecture_progress_student_lecture'),
    )


class ExamAttempt(BaseModel):
    __tablename__ = "exam_attempts"

    student_id = Column(Integer, nullable=False, index=True)

    exam_id = Column(
        Integer,
        ForeignKey("exams.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    score = Column(Numeric(10, 2, asdecimal=True), nullable=False)

    status = Column(String(16), nullable=False)
