"""
Course Content Service

Mutating operations on the course tree. Every operation that can move a
weight runs the weight engine inside the same transaction:

    validate -> write row -> flush -> engine.handle_mutation -> commit

Any failure rolls the whole operation back, so siblings are never left
with weights that do not add up.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursegrade.config.weight_settings import WeightSettings, get_weight_settings
from coursegrade.exceptions import InvalidInputError, NotFoundError
from coursegrade.orm.course import Course
from coursegrade.orm.enrollment import Enrollment, ExamAttempt, LectureProgress
from coursegrade.orm.exam import DEFAULT_PASS_PCT, Exam
from coursegrade.orm.lecture import Lecture
from coursegrade.orm.question import Question
from coursegrade.orm.topic import Topic
from coursegrade.schemas.weights import (
    CourseWeightsOut,
    ExamWeightOut,
    LectureWeightOut,
    TopicWeightOut,
)
from coursegrade.services.recalc_planner import EntityType, MutationType
from coursegrade.services.weight_distribution import Number, to_decimal
from coursegrade.services.weight_engine_service import WeightEngine
from coursegrade.services.weight_rollup import course_weight_check

logger = logging.getLogger(__name__)

LECTURE_FIELDS = frozenset({"title", "description", "video_url", "serial", "duration", "topic_id"})
EXAM_FIELDS = frozenset({"marks", "duration", "question_count", "pass_pct", "topic_id"})
QUESTION_FIELDS = frozenset({
    "description", "option_a", "option_b", "option_c", "option_d", "right_ans", "marks"
})
VALID_ANSWERS = ("1", "2", "3", "4")


# =============================================================================
# Validation helpers
# =============================================================================

def _validate_lecture_weight(value: Number) -> Decimal:
    weight = to_decimal(value)
    if not Decimal("0") <= weight <= Decimal("100"):
        raise InvalidInputError(f"lecture_weight must be between 0 and 100, got {weight}")
    return weight


def _validate_non_negative(name: str, value: Number) -> Decimal:
    number = to_decimal(value)
    if number < 0:
        raise InvalidInputError(f"{name} must be non-negative, got {number}")
    return number


def _validate_right_ans(value: Any) -> str:
    answer = str(value)
    if answer not in VALID_ANSWERS:
        raise InvalidInputError("Correct answer must be 1, 2, 3, or 4")
    return answer


def _reject_unknown(fields: Dict[str, Any], allowed: frozenset) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise InvalidInputError(f"Unknown fields: {', '.join(sorted(unknown))}")


def _engine(db: AsyncSession, engine: Optional[WeightEngine], settings: Optional[WeightSettings]) -> WeightEngine:
    return engine or WeightEngine(db, settings=settings)


async def _get_or_404(db: AsyncSession, model, obj_id: int, label: str):
    obj = await db.get(model, obj_id)
    if obj is None:
        raise NotFoundError(f"{label} {obj_id} not found")
    return obj


async def _next_serial(db: AsyncSession, column, parent_column, parent_id: int) -> int:
    result = await db.execute(
        select(func.coalesce(func.max(column), 0)).where(parent_column == parent_id)
    )
    return int(result.scalar_one()) + 1


# =============================================================================
# Courses
# =============================================================================

async def create_course(
    db: AsyncSession,
    title: str,
    lecture_weight: Optional[Number] = None,
    description: Optional[str] = None,
    instructor_id: Optional[int] = None,
    settings: Optional[WeightSettings] = None,
) -> Course:
    """Create a course. A new course has no topics, so nothing to allocate."""
    settings = settings or get_weight_settings()
    if not title or not title.strip():
        raise InvalidInputError("Course title is required")
    weight = _validate_lecture_weight(
        settings.default_lecture_weight if lecture_weight is None else lecture_weight
    )

    try:
        course = Course(
            title=title.strip(),
            description=description,
            instructor_id=instructor_id,
            lecture_weight=weight,
        )
        db.add(course)
        await db.flush()
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Created course %s (lecture_weight=%s)", course.id, weight)
    return course


async def update_course_split(
    db: AsyncSession,
    course_id: int,
    lecture_weight: Number,
    engine: Optional[WeightEngine] = None,
    settings: Optional[WeightSettings] = None,
) -> Course:
    """Change the lecture/exam split and recompute every weight in the course."""
    weight = _validate_lecture_weight(lecture_weight)
    engine = _engine(db, engine, settings)

    try:
        course = await _get_or_404(db, Course, course_id, "Course")
        changed = Decimal(course.lecture_weight) != weight
        course.lecture_weight = weight
        await db.flush()

        if changed:
            await engine.handle_mutation(
                EntityType.COURSE,
                MutationType.UPDATE,
                course_id,
                changed_fields={"lecture_weight"},
            )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return course


async def delete_course(db: AsyncSession, course_id: int) -> None:
    """Delete a course and everything beneath it."""
    try:
        course = await _get_or_404(db, Course, course_id, "Course")
        topic_ids = select(Topic.id).where(Topic.course_id == course_id)
        await _delete_topic_content(db, topic_ids)
        await db.execute(delete(Topic).where(Topic.course_id == course_id))
        await db.execute(delete(Enrollment).where(Enrollment.course_id == course_id))
        await db.delete(course)
        await db.flush()
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Deleted course %s", course_id)


# =============================================================================
# Topics
# =============================================================================

async def create_topic(
    db: AsyncSession,
    course_id: int,
    name: str,
    description: Optional[str] = None,
    serial: Optional[int] = None,
    engine: Optional[WeightEngine] = None,
    settings: Optional[WeightSettings] = None,
) -> Topic:
    if not name or not name.strip():
        raise InvalidInputError("Topic name is required")
    engine = _engine(db, engine, settings)

    try:
        await _get_or_404(db, Course, course_id, "Course")
        if serial is None:
            serial = await _next_serial(db, Topic.serial, Topic.course_id, course_id)

        topic = Topic(
            course_id=course_id,
            name=name.strip(),
            description=description,
            serial=serial,
            weight=Decimal("0"),
        )
        db.add(topic)
        await db.flush()

        await engine.handle_mutation(EntityType.TOPIC, MutationType.CREATE, course_id, topic_id=topic.id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return topic


async def update_topic(
    db: AsyncSession,
    topic_id: int,
    name: Optional[str] = None,
    description: Optional[str] = None,
    serial: Optional[int] = None,
    engine: Optional[WeightEngine] = None,
    settings: Optional[WeightSettings] = None,
) -> Topic:
    """
    Rename / reorder a topic. Reordering can move the pool remainder to a
    different topic, so a serial change re-allocates the course.
    """
    engine = _engine(db, engine, settings)

    try:
        topic = await _get_or_404(db, Topic, topic_id, "Topic")
        changed = set()
        if name is not None:
            if not name.strip():
                raise InvalidInputError("Topic name cannot be empty")
            topic.name = name.strip()
            changed.add("name")
        if description is not None:
            topic.description = description
            changed.add("description")
        if serial is not None and serial != topic.serial:
            topic.serial = serial
            changed.add("serial")
        await db.flush()

        await engine.handle_mutation(
            EntityType.TOPIC,
            MutationType.UPDATE,
            topic.course_id,
            topic_id=topic.id,
            changed_fields=changed,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return topic


async def delete_topic(
    db: AsyncSession,
    topic_id: int,
    engine: Optional[WeightEngine] = None,
    settings: Optional[WeightSettings] = None,
) -> None:
    """Delete a topic with its lectures and exams, then re-allocate the course."""
    engine = _engine(db, engine, settings)

    try:
        topic = await _get_or_404(db, Topic, topic_id, "Topic")
        course_id = topic.course_id

        await _delete_topic_content(db, select(Topic.id).where(Topic.id == topic_id))
        await db.delete(topic)
        await db.flush()

        await engine.handle_mutation(EntityType.TOPIC, MutationType.DELETE, course_id, topic_id=topic_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Deleted topic %s of course %s", topic_id, course_id)


async def _delete_topic_content(db: AsyncSession, topic_ids) -> None:
    """Delete lectures, exams and their dependants for the selected topics."""
    lecture_ids = select(Lecture.id).where(Lecture.topic_id.in_(topic_ids))
    exam_ids = select(Exam.id).where(Exam.topic_id.in_(topic_ids))

    await db.execute(delete(LectureProgress).where(LectureProgress.lecture_id.in_(lecture_ids)))
    await db.execute(delete(ExamAttempt).where(ExamAttempt.exam_id.in_(exam_ids)))
    await db.execute(delete(Question).where(Question.exam_id.in_(exam_ids)))
    await db.execute(delete(Lecture).where(Lecture.topic_id.in_(topic_ids)))
    await db.execute(delete(Exam).where(Exam.topic_id.in_(topic_ids)))


# =============================================================================
# Lectures
# =============================================================================

async def add_lecture(
    db: AsyncSession,
    topic_id: int,
    title: Optional[str] = None,
    duration: Number = 0,
    description: Optional[str] = None,
    video_url: Optional[str] = None,
    serial: Optional[int] = None,
    engine: Optional[WeightEngine] = None,
    settings: Optional[WeightSettings] = None,
) -> Lecture:
    duration = _validate_non_negative("duration", duration)
    engine = _engine(db, engine, settings)

    try:
        topic = await _get_or_404(db, Topic, topic_id, "Topic")
        if serial is None:
            serial = await _next_serial(db, Lecture.serial, Lecture.topic_id, topic_id)

        lecture = Lecture(
            topic_id=topic_id,
            title=title,
            description=description,
            video_url=video_url,
            serial=serial,
            duration=duration,
            weight=Decimal("0"),
        )
        db.add(lecture)
        await db.flush()

        await engine.handle_mutation(
            EntityType.LECTURE, MutationType.CREATE, topic.course_id, topic_id=topic_id
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return lecture


async def update_lecture(
    db: AsyncSession,
    lecture_id: int,
    engine: Optional[WeightEngine] = None,
    settings: Optional[WeightSettings] = None,
    **fields: Any,
) -> Lecture:
    """
    Update lecture fields. Weights are recomputed only when duration,
    topic or serial actually changed.
    """
    _reject_unknown(fields, LECTURE_FIELDS)
    if fields.get("duration") is not None:
        fields["duration"] = _validate_non_negative("duration", fields["duration"])
    engine = _engine(db, engine, settings)

    try:
        lecture = await _get_or_404(db, Lecture, lecture_id, "Lecture")
        old_topic = await _get_or_404(db, Topic, lecture.topic_id, "Topic")

        new_topic_id = fields.get("topic_id")
        if new_topic_id is not None and new_topic_id != lecture.topic_id:
            new_topic = await _get_or_404(db, Topic, new_topic_id, "Topic")
            if new_topic.course_id != old_topic.course_id:
                raise InvalidInputError("A lecture can only move between topics of the same course")

        changed = set()
        for name, value in fields.items():
            if value is None:
                continue
            current = getattr(lecture, name)
            if name == "duration":
                differs = current is None or Decimal(current) != value
            else:
                differs = current != value
            if differs:
                setattr(lecture, name, value)
                changed.add(name)
        await db.flush()

        await engine.handle_mutation(
            EntityType.LECTURE,
            MutationType.UPDATE,
            old_topic.course_id,
            topic_id=lecture.topic_id,
            previous_topic_id=old_topic.id if "topic_id" in changed else None,
            changed_fields=changed,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return lecture


async def delete_lecture(
    db: AsyncSession,
    lecture_id: int,
    engine: Optional[WeightEngine] = None,
    settings: Optional[WeightSettings] = None,
) -> None:
    engine = _engine(db, engine, settings)

    try:
        lecture = await _get_or_404(db, Lecture, lecture_id, "Lecture")
        topic = await _get_or_404(db, Topic, lecture.topic_id, "Topic")

        await db.execute(delete(LectureProgress).where(LectureProgress.lecture_id == lecture_id))
        await db.delete(lecture)
        await db.flush()

        await engine.handle_mutation(
            EntityType.LECTURE, MutationType.DELETE, topic.course_id, topic_id=topic.id
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise


# =============================================================================
# Exams
# =============================================================================

async def add_exam(
    db: AsyncSession,
    topic_id: int,
    marks: Number,
    duration: int = 0,
    question_count: int = 0,
    pass_pct: int = DEFAULT_PASS_PCT,
    engine: Optional[WeightEngine] = None,
    settings: Optional[WeightSettings] = None,
) -> Exam:
    marks = _validate_non_negative("marks", marks)
    if not 0 <= pass_pct <= 100:
        raise InvalidInputError("pass_pct must be between 0 and 100")
    engine = _engine(db, engine, settings)

    try:
        topic = await _get_or_404(db, Topic, topic_id, "Topic")
        exam = Exam(
            topic_id=topic_id,
            marks=marks,
            duration=duration,
            question_count=question_count,
            pass_pct=pass_pct,
            weight=Decimal("0"),
        )
        db.add(exam)
        await db.flush()

        await engine.handle_mutation(
            EntityType.EXAM, MutationType.CREATE, topic.course_id, topic_id=topic_id
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return exam


async def update_exam(
    db: AsyncSession,
    exam_id: int,
    engine: Optional[WeightEngine] = None,
    settings: Optional[WeightSettings] = None,
    **fields: Any,
) -> Exam:
    _reject_unknown(fields, EXAM_FIELDS)
    if fields.get("marks") is not None:
        fields["marks"] = _validate_non_negative("marks", fields["marks"])
    if fields.get("pass_pct") is not None and not 0 <= fields["pass_pct"] <= 100:
        raise InvalidInputError("pass_pct must be between 0 and 100")
    engine = _engine(db, engine, settings)

    try:
        exam = await _get_or_404(db, Exam, exam_id, "Exam")
        old_topic = await _get_or_404(db, Topic, exam.topic_id, "Topic")

        new_topic_id = fields.get("topic_id")
        if new_topic_id is not None and new_topic_id != exam.topic_id:
            new_topic = await _get_or_404(db, Topic, new_topic_id, "Topic")
            if new_topic.course_id != old_topic.course_id:
                raise InvalidInputError("An exam can only move between topics of the same course")

        changed = set()
        for name, value in fields.items():
            if value is None:
                continue
            current = getattr(exam, name)
            if name == "marks":
                differs = current is None or Decimal(current) != value
            else:
                differs = current != value
            if differs:
                setattr(exam, name, value)
                changed.add(name)
        await db.flush()

        await engine.handle_mutation(
            EntityType.EXAM,
            MutationType.UPDATE,
            old_topic.course_id,
            topic_id=exam.topic_id,
            previous_topic_id=old_topic.id if "topic_id" in changed else None,
            changed_fields=changed,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return exam


async def delete_exam(
    db: AsyncSession,
    exam_id: int,
    engine: Optional[WeightEngine] = None,
    settings: Optional[WeightSettings] = None,
) -> None:
    engine = _engine(db, engine, settings)

    try:
        exam = await _get_or_404(db, Exam, exam_id, "Exam")
        topic = await _get_or_404(db, Topic, exam.topic_id, "Topic")

        await db.execute(delete(ExamAttempt).where(ExamAttempt.exam_id == exam_id))
        await db.execute(delete(Question).where(Question.exam_id == exam_id))
        await db.delete(exam)
        await db.flush()

        await engine.handle_mutation(
            EntityType.EXAM, MutationType.DELETE, topic.course_id, topic_id=topic.id
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise


# =============================================================================
# Questions (never weighted)
# =============================================================================

async def add_question(
    db: AsyncSession,
    exam_id: int,
    description: str,
    right_ans: Any,
    marks: int = 1,
    option_a: Optional[str] = None,
    option_b: Optional[str] = None,
    option_c: Optional[str] = None,
    option_d: Optional[str] = None,
) -> Question:
    if not description:
        raise InvalidInputError("Question description is required")
    right_ans = _validate_right_ans(right_ans)
    _validate_non_negative("marks", marks)

    try:
        await _get_or_404(db, Exam, exam_id, "Exam")
        serial = await _next_serial(db, Question.serial, Question.exam_id, exam_id)
        question = Question(
            exam_id=exam_id,
            description=description,
            option_a=option_a,
            option_b=option_b,
            option_c=option_c,
            option_d=option_d,
            right_ans=right_ans,
            marks=marks,
            serial=serial,
        )
        db.add(question)
        await db.flush()
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return question


async def update_question(db: AsyncSession, question_id: int, **fields: Any) -> Question:
    _reject_unknown(fields, QUESTION_FIELDS)
    if fields.get("right_ans") is not None:
        fields["right_ans"] = _validate_right_ans(fields["right_ans"])

    try:
        question = await _get_or_404(db, Question, question_id, "Question")
        for name, value in fields.items():
            if value is not None:
                setattr(question, name, value)
        await db.flush()
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return question


async def delete_question(db: AsyncSession, question_id: int) -> None:
    try:
        question = await _get_or_404(db, Question, question_id, "Question")
        await db.delete(question)
        await db.flush()
        await db.commit()
    except Exception:
        await db.rollback()
        raise


# =============================================================================
# Read model
# =============================================================================

async def get_course_weights(
    db: AsyncSession,
    course_id: int,
    settings: Optional[WeightSettings] = None,
) -> CourseWeightsOut:
    """Persisted weight tree of a course, with per-topic budgets."""
    engine = WeightEngine(db, settings=settings)
    course = await _get_or_404(db, Course, course_id, "Course")
    allocation = await engine.compute_allocation(course)

    topics = (await db.execute(
        select(Topic).where(Topic.course_id == course_id).order_by(Topic.serial, Topic.id)
    )).scalars().all()
    topic_ids = [t.id for t in topics]

    lectures_by_topic: Dict[int, list] = {}
    exams_by_topic: Dict[int, list] = {}
    if topic_ids:
        lectures = (await db.execute(
            select(Lecture).where(Lecture.topic_id.in_(topic_ids)).order_by(Lecture.serial, Lecture.id)
        )).scalars().all()
        for lecture in lectures:
            lectures_by_topic.setdefault(lecture.topic_id, []).append(
                LectureWeightOut(
                    id=lecture.id,
                    title=lecture.title,
                    serial=lecture.serial,
                    duration=lecture.duration,
                    weight=lecture.weight,
                )
            )
        exams = (await db.execute(
            select(Exam).where(Exam.topic_id.in_(topic_ids)).order_by(Exam.id)
        )).scalars().all()
        for exam in exams:
            exams_by_topic.setdefault(exam.topic_id, []).append(
                ExamWeightOut(id=exam.id, marks=exam.marks, weight=exam.weight)
            )

    topic_out = []
    for topic in topics:
        alloc = allocation.for_topic(topic.id)
        topic_out.append(TopicWeightOut(
            id=topic.id,
            name=topic.name,
            serial=topic.serial,
            weight=topic.weight,
            lecture_allocation=alloc.lecture_budget if alloc.lecture_count else Decimal("0"),
            exam_allocation=alloc.exam_budget if alloc.exam_count else Decimal("0"),
            lectures=lectures_by_topic.get(topic.id, []),
            exams=exams_by_topic.get(topic.id, []),
        ))

    balance = course_weight_check([t.weight for t in topics], epsilon=engine.settings.epsilon)
    return CourseWeightsOut(
        id=course.id,
        title=course.title,
        lecture_weight=course.lecture_weight,
        exam_weight=course.exam_weight,
        total=balance.total,
        balanced=balance.balanced,
        topics=topic_out,
    )
