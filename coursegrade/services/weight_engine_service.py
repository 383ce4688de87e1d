"""
Weight Allocation Engine Service

Executes RecalcPlans against the database:

1. Lock the course row (SELECT ... FOR UPDATE)
2. Compute the course allocation: each topic's lecture and exam budget
3. Redistribute sibling weights (lectures under the "lectures" lock,
   exams under the "exams" lock)
4. Roll up topic weights
5. Verify that the topics add up to what the allocation handed out
6. Refresh the stored progress of the course's enrollments

The engine flushes but never commits. The caller owns the transaction and
must roll back if anything here raises.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursegrade.config.weight_settings import TopicSharePolicy, WeightSettings, get_weight_settings
from coursegrade.exceptions import NotFoundError
from coursegrade.orm.course import Course
from coursegrade.orm.exam import Exam
from coursegrade.orm.lecture import Lecture
from coursegrade.orm.topic import Topic
from coursegrade.schemas.weights import CourseBalance, WeightAssignment, WeightItem
from coursegrade.services.progress_service import refresh_course_progress
from coursegrade.services.recalc_guard import EXAMS, LECTURES, RecalcGuard
from coursegrade.services.recalc_planner import (
    EntityType,
    MutationContext,
    MutationType,
    RecalcPlan,
    RecalcStepKind,
    on_mutation,
)
from coursegrade.services.weight_distribution import ZERO, distribute, items_from_pairs
from coursegrade.services.weight_rollup import (
    compute_topic_weight,
    course_weight_check,
    verify_allocation,
)

logger = logging.getLogger(__name__)

# Called after each derived weight write: (entity_type, entity_id, changed_fields)
WriteObserver = Callable[[EntityType, int, FrozenSet[str]], Awaitable[Any]]


@dataclass
class TopicAllocation:
    """A topic's budgets out of the course's lecture and exam pools."""
    topic_id: int
    lecture_budget: Decimal = ZERO
    exam_budget: Decimal = ZERO
    lecture_count: int = 0
    exam_count: int = 0


@dataclass
class CourseAllocation:
    course_id: int
    lecture_weight: Decimal
    exam_weight: Decimal
    topics: Dict[int, TopicAllocation] = field(default_factory=dict)

    def for_topic(self, topic_id: int) -> TopicAllocation:
        return self.topics.get(topic_id, TopicAllocation(topic_id=topic_id))

    @property
    def expected_total(self) -> Decimal:
        """Sum of budgets that actually have siblings to land on."""
        total = ZERO
        for alloc in self.topics.values():
            if alloc.lecture_count:
                total += alloc.lecture_budget
            if alloc.exam_count:
                total += alloc.exam_budget
        return total


def allocate_topic_budgets(
    lecture_weight: Decimal,
    exam_weight: Decimal,
    topics: List[Topic],
    lecture_bases: Dict[int, List[Decimal]],
    exam_bases: Dict[int, List[Decimal]],
    policy: TopicSharePolicy,
    precision: int,
) -> Dict[int, TopicAllocation]:
    """
    Split the course pools between topics.

    BASIS: topics owning lectures share the lecture pool by total duration,
    topics owning exams share the exam pool by total marks.
    EQUAL: every topic gets pool / len(topics); a topic without lectures
    (or exams) keeps a share that lands nowhere.
    """
    allocations = {t.id: TopicAllocation(topic_id=t.id) for t in topics}
    for topic_id, bases in lecture_bases.items():
        if topic_id in allocations:
            allocations[topic_id].lecture_count = len(bases)
    for topic_id, bases in exam_bases.items():
        if topic_id in allocations:
            allocations[topic_id].exam_count = len(bases)

    if policy == TopicSharePolicy.BASIS:
        lecture_items = [
            WeightItem(id=t.id, basis=sum(lecture_bases[t.id], ZERO), sort_key=t.serial or 0)
            for t in topics if allocations[t.id].lecture_count
        ]
        exam_items = [
            WeightItem(id=t.id, basis=sum(exam_bases[t.id], ZERO), sort_key=t.serial or 0)
            for t in topics if allocations[t.id].exam_count
        ]
    else:
        lecture_items = [WeightItem(id=t.id, basis=ZERO, sort_key=t.serial or 0) for t in topics]
        exam_items = list(lecture_items)

    for share in distribute(lecture_weight, lecture_items, precision=precision):
        allocations[share.id].lecture_budget = share.weight
    for share in distribute(exam_weight, exam_items, precision=precision):
        allocations[share.id].exam_budget = share.weight

    return allocations


class WeightEngine:
    """
    Runs weight recalculations for one request / transaction.

    Holds its own RecalcGuard, so a recalculation whose writes re-enter
    handle_mutation (through write_observer) does not run twice.
    """

    def __init__(
        self,
        db: AsyncSession,
        settings: Optional[WeightSettings] = None,
        guard: Optional[RecalcGuard] = None,
        write_observer: Optional[WriteObserver] = None,
    ):
        self.db = db
        self.settings = settings or get_weight_settings()
        self.guard = guard or RecalcGuard()
        self.write_observer = write_observer

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle_mutation(
        self,
        entity_type: EntityType,
        operation: MutationType,
        course_id: int,
        topic_id: Optional[int] = None,
        previous_topic_id: Optional[int] = None,
        changed_fields: Iterable[str] = (),
    ) -> RecalcPlan:
        """Plan and execute the recalculation for a mutation that already happened."""
        context = MutationContext(
            course_id=course_id,
            topic_id=topic_id,
            previous_topic_id=previous_topic_id,
            topic_ids=tuple(await self._topic_ids(course_id)),
            changed_fields=frozenset(changed_fields),
            share_policy=self.settings.topic_share_policy,
        )
        plan = on_mutation(entity_type, operation, context)
        await self.execute(plan)
        return plan

    async def recalculate_course(self, course_id: int) -> RecalcPlan:
        """Full cascade for a course, as after a lecture_weight change."""
        return await self.handle_mutation(
            EntityType.COURSE,
            MutationType.UPDATE,
            course_id,
            changed_fields={"lecture_weight"},
        )

    async def execute(self, plan: RecalcPlan) -> None:
        if plan.is_empty:
            return

        course = await self._lock_course(plan.course_id)
        allocation = await self.compute_allocation(course)

        for step in plan.steps:
            if step.kind == RecalcStepKind.REDISTRIBUTE_LECTURES:
                budget = allocation.for_topic(step.target_id).lecture_budget
                await self.guard.run(
                    LECTURES,
                    lambda topic_id=step.target_id, budget=budget: self.redistribute_lectures(topic_id, budget),
                )
            elif step.kind == RecalcStepKind.REDISTRIBUTE_EXAMS:
                budget = allocation.for_topic(step.target_id).exam_budget
                await self.guard.run(
                    EXAMS,
                    lambda topic_id=step.target_id, budget=budget: self.redistribute_exams(topic_id, budget),
                )
            elif step.kind == RecalcStepKind.ROLLUP_TOPIC:
                await self.rollup_topic(step.target_id)
            elif step.kind == RecalcStepKind.VERIFY_COURSE:
                if not self.settings.verify_course_balance:
                    continue
                if self.guard.is_locked(LECTURES) or self.guard.is_locked(EXAMS):
                    # The outer recalculation verifies once it finishes
                    logger.debug("Skipping nested verification of course %s", step.target_id)
                    continue
                await self.verify_course(course.id, allocation)

        if not (self.guard.is_locked(LECTURES) or self.guard.is_locked(EXAMS)):
            refreshed = await refresh_course_progress(self.db, course.id)
            if refreshed:
                logger.debug("Refreshed progress of %s enrollments in course %s", refreshed, course.id)

        logger.info("Recalculated weights for course %s: %s", plan.course_id, plan)

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    async def compute_allocation(self, course: Course) -> CourseAllocation:
        topics = await self._topics(course.id)
        topic_ids = [t.id for t in topics]

        lecture_bases: Dict[int, List[Decimal]] = {}
        exam_bases: Dict[int, List[Decimal]] = {}
        if topic_ids:
            result = await self.db.execute(
                select(Lecture.topic_id, Lecture.duration).where(Lecture.topic_id.in_(topic_ids))
            )
            for topic_id, duration in result.all():
                lecture_bases.setdefault(topic_id, []).append(Decimal(duration or 0))

            result = await self.db.execute(
                select(Exam.topic_id, Exam.marks).where(Exam.topic_id.in_(topic_ids))
            )
            for topic_id, marks in result.all():
                exam_bases.setdefault(topic_id, []).append(Decimal(marks or 0))

        lecture_weight = Decimal(course.lecture_weight)
        exam_weight = course.exam_weight
        allocation = CourseAllocation(
            course_id=course.id,
            lecture_weight=lecture_weight,
            exam_weight=exam_weight,
            topics=allocate_topic_budgets(
                lecture_weight,
                exam_weight,
                topics,
                lecture_bases,
                exam_bases,
                self.settings.topic_share_policy,
                self.settings.rounding_precision,
            ),
        )
        return allocation

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def redistribute_lectures(self, topic_id: int, budget: Decimal) -> List[WeightAssignment]:
        result = await self.db.execute(
            select(Lecture).where(Lecture.topic_id == topic_id).order_by(Lecture.serial, Lecture.id)
        )
        lectures = {lecture.id: lecture for lecture in result.scalars().all()}
        items = items_from_pairs((l.id, l.duration or 0, l.serial) for l in lectures.values())
        assignments = distribute(budget, items, precision=self.settings.rounding_precision)
        await self._write_weights(EntityType.LECTURE, lectures, assignments)
        return assignments

    async def redistribute_exams(self, topic_id: int, budget: Decimal) -> List[WeightAssignment]:
        result = await self.db.execute(
            select(Exam).where(Exam.topic_id == topic_id).order_by(Exam.id)
        )
        exams = {exam.id: exam for exam in result.scalars().all()}
        # Exams have no serial; order by id
        items = items_from_pairs((e.id, e.marks or 0) for e in exams.values())
        assignments = distribute(budget, items, precision=self.settings.rounding_precision)
        await self._write_weights(EntityType.EXAM, exams, assignments)
        return assignments

    async def rollup_topic(self, topic_id: int) -> Decimal:
        topic = await self.db.get(Topic, topic_id)
        if topic is None:
            # Deleted earlier in the same transaction
            return ZERO

        lecture_weights = (await self.db.execute(
            select(Lecture.weight).where(Lecture.topic_id == topic_id)
        )).scalars().all()
        exam_weights = (await self.db.execute(
            select(Exam.weight).where(Exam.topic_id == topic_id)
        )).scalars().all()

        topic.weight = compute_topic_weight(lecture_weights, exam_weights)
        await self.db.flush()
        return topic.weight

    async def verify_course(self, course_id: int, allocation: CourseAllocation) -> CourseBalance:
        """
        Compare rolled-up topic weights with the allocation.

        Raises InconsistentStateError on mismatch. The 100% check itself is
        only logged: a course missing lectures or exams cannot reach 100.
        """
        topic_weights = [t.weight for t in await self._topics(course_id)]
        balance = course_weight_check(topic_weights, epsilon=self.settings.epsilon)
        verify_allocation(
            course_id,
            balance.total,
            allocation.expected_total,
            epsilon=self.settings.epsilon,
        )
        if not balance.balanced:
            logger.info(
                "Course %s topic weights total %s (pools without siblings are unallocated)",
                course_id, balance.total,
            )
        return balance

    async def check_course(self, course_id: int) -> Dict[str, Any]:
        """Read-only diagnostic: persisted totals against a fresh allocation."""
        course = await self._get_course(course_id)
        allocation = await self.compute_allocation(course)
        topic_weights = [t.weight for t in await self._topics(course_id)]
        balance = course_weight_check(topic_weights, epsilon=self.settings.epsilon)
        return {
            "course_id": course_id,
            "total": balance.total,
            "balanced": balance.balanced,
            "expected_total": allocation.expected_total,
            "consistent": abs(balance.total - allocation.expected_total) <= self.settings.epsilon,
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _write_weights(
        self,
        entity_type: EntityType,
        rows: Dict[int, Any],
        assignments: List[WeightAssignment],
    ) -> None:
        changed = []
        for assignment in assignments:
            row = rows[assignment.id]
            if row.weight is None or Decimal(row.weight) != assignment.weight:
                row.weight = assignment.weight
                changed.append(assignment.id)
        await self.db.flush()

        if self.write_observer is not None:
            for entity_id in changed:
                await self.write_observer(entity_type, entity_id, frozenset({"weight"}))

    async def _get_course(self, course_id: int) -> Course:
        course = await self.db.get(Course, course_id)
        if course is None:
            raise NotFoundError(f"Course {course_id} not found")
        return course

    async def _lock_course(self, course_id: int) -> Course:
        result = await self.db.execute(
            select(Course).where(Course.id == course_id).with_for_update()
        )
        course = result.scalar_one_or_none()
        if course is None:
            raise NotFoundError(f"Course {course_id} not found")
        return course

    async def _topics(self, course_id: int) -> List[Topic]:
        result = await self.db.execute(
            select(Topic).where(Topic.course_id == course_id).order_by(Topic.id)
        )
        return list(result.scalars().all())

    async def _topic_ids(self, course_id: int) -> List[int]:
        result = await self.db.execute(
            select(Topic.id).where(Topic.course_id == course_id).order_by(Topic.id)
        )
        return list(result.scalars().all())
