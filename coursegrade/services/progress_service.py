"""
Student Progress Service

A student's course progress is the sum of the weights they have earned:
completed lectures plus exams with at least one passed attempt. Because
a balanced course's weights add up to 100, progress reads as a percentage.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursegrade.exceptions import InvalidInputError, NotFoundError
from coursegrade.orm.course import Course
from coursegrade.orm.enrollment import Enrollment, ExamAttempt, ExamAttemptStatus, LectureProgress
from coursegrade.orm.exam import Exam
from coursegrade.orm.lecture import Lecture
from coursegrade.orm.topic import Topic
from coursegrade.services.weight_distribution import Number, to_decimal
from coursegrade.services.weight_rollup import sum_weights

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


async def enroll(db: AsyncSession, student_id: int, course_id: int) -> Enrollment:
    """Enroll a student. Idempotent."""
    try:
        if await db.get(Course, course_id) is None:
            raise NotFoundError(f"Course {course_id} not found")

        result = await db.execute(
            select(Enrollment).where(
                Enrollment.student_id == student_id,
                Enrollment.course_id == course_id,
            )
        )
        enrollment = result.scalar_one_or_none()
        if enrollment is None:
            enrollment = Enrollment(student_id=student_id, course_id=course_id, progress=Decimal("0"))
            db.add(enrollment)
            await db.flush()
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return enrollment


async def _course_of_lecture(db: AsyncSession, lecture_id: int) -> int:
    result = await db.execute(
        select(Topic.course_id)
        .join(Lecture, Lecture.topic_id == Topic.id)
        .where(Lecture.id == lecture_id)
    )
    course_id = result.scalar_one_or_none()
    if course_id is None:
        raise NotFoundError(f"Lecture {lecture_id} not found")
    return course_id


async def record_lecture_progress(
    db: AsyncSession,
    student_id: int,
    lecture_id: int,
    progress: Number,
    completed: bool = False,
    position_seconds: int = 0,
) -> LectureProgress:
    """
    Upsert a student's progress on a lecture.

    Watched percentage never decreases and completion is sticky. When the
    lecture is completed the enrollment's course progress is recomputed.
    """
    progress = to_decimal(progress)
    if not Decimal("0") <= progress <= HUNDRED:
        raise InvalidInputError("progress must be between 0 and 100")

    try:
        course_id = await _course_of_lecture(db, lecture_id)
        result = await db.execute(
            select(LectureProgress).where(
                LectureProgress.student_id == student_id,
                LectureProgress.lecture_id == lecture_id,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            record = LectureProgress(
                student_id=student_id,
                lecture_id=lecture_id,
                progress=progress,
                position_seconds=position_seconds,
                completed=completed,
            )
            db.add(record)
        else:
            record.progress = max(Decimal(record.progress), progress)
            record.position_seconds = position_seconds
            record.completed = record.completed or completed
            record.last_watched = datetime.utcnow()
        await db.flush()

        if record.completed:
            await _refresh_enrollment(db, student_id, course_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return record


async def record_exam_attempt(
    db: AsyncSession,
    student_id: int,
    exam_id: int,
    score: Number,
) -> ExamAttempt:
    """Store an attempt; passed when score reaches pass_pct of the exam's marks."""
    score = to_decimal(score)
    if score < 0:
        raise InvalidInputError("score must be non-negative")

    try:
        exam = await db.get(Exam, exam_id)
        if exam is None:
            raise NotFoundError(f"Exam {exam_id} not found")
        topic = await db.get(Topic, exam.topic_id)

        threshold = Decimal(exam.marks) * Decimal(exam.pass_pct) / HUNDRED
        status = ExamAttemptStatus.PASSED if score >= threshold else ExamAttemptStatus.FAILED
        attempt = ExamAttempt(student_id=student_id, exam_id=exam_id, score=score, status=status)
        db.add(attempt)
        await db.flush()

        if status == ExamAttemptStatus.PASSED:
            await _refresh_enrollment(db, student_id, topic.course_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Student %s scored %s on exam %s (%s)", student_id, score, exam_id, status)
    return attempt


async def compute_course_progress(db: AsyncSession, student_id: int, course_id: int) -> Decimal:
    """Sum of weights of completed lectures and passed exams in the course."""
    lecture_weights = (await db.execute(
        select(Lecture.weight)
        .join(Topic, Lecture.topic_id == Topic.id)
        .join(LectureProgress, LectureProgress.lecture_id == Lecture.id)
        .where(
            Topic.course_id == course_id,
            LectureProgress.student_id == student_id,
            LectureProgress.completed.is_(True),
        )
    )).scalars().all()

    passed_exam_ids = (
        select(ExamAttempt.exam_id)
        .where(
            ExamAttempt.student_id == student_id,
            ExamAttempt.status == ExamAttemptStatus.PASSED,
        )
    )
    exam_weights = (await db.execute(
        select(Exam.weight)
        .join(Topic, Exam.topic_id == Topic.id)
        .where(Topic.course_id == course_id, Exam.id.in_(passed_exam_ids))
    )).scalars().all()

    return sum_weights(lecture_weights) + sum_weights(exam_weights)


async def _refresh_enrollment(db: AsyncSession, student_id: int, course_id: int) -> Optional[Enrollment]:
    result = await db.execute(
        select(Enrollment).where(
            Enrollment.student_id == student_id,
            Enrollment.course_id == course_id,
        )
    )
    enrollment = result.scalar_one_or_none()
    if enrollment is None:
        return None
    enrollment.progress = await compute_course_progress(db, student_id, course_id)
    await db.flush()
    return enrollment


async def refresh_course_progress(db: AsyncSession, course_id: int) -> int:
    """
    Recompute stored progress for every enrollment in a course.

    Flushes but does not commit; called by the weight engine inside the
    mutation's transaction. Returns the number of enrollments refreshed.
    """
    result = await db.execute(
        select(Enrollment)
        .where(Enrollment.course_id == course_id)
        .order_by(Enrollment.id)
    )
    enrollments = result.scalars().all()
    for enrollment in enrollments:
        enrollment.progress = await compute_course_progress(db, enrollment.student_id, course_id)
    await db.flush()
    return len(enrollments)
