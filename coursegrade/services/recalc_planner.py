"""
Recalculation Trigger

Maps a mutation (entity type + operation + context) to an ordered
RecalcPlan. Planning is pure: it reads only the MutationContext and never
touches the database.

Step ordering within every plan:
    REDISTRIBUTE_LECTURES / REDISTRIBUTE_EXAMS  (sibling weights)
    ROLLUP_TOPIC                                (topic = lectures + exams)
    VERIFY_COURSE                               (course-level consistency)
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from coursegrade.config.weight_settings import TopicSharePolicy

logger = logging.getLogger(__name__)


class EntityType(str, Enum):
    COURSE = "course"
    TOPIC = "topic"
    LECTURE = "lecture"
    EXAM = "exam"
    QUESTION = "question"


class MutationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class RecalcStepKind(str, Enum):
    REDISTRIBUTE_LECTURES = "redistribute_lectures"
    REDISTRIBUTE_EXAMS = "redistribute_exams"
    ROLLUP_TOPIC = "rollup_topic"
    VERIFY_COURSE = "verify_course"


# Fields whose change alters a basis, a budget or the remainder order
BASIS_FIELDS: Dict[EntityType, FrozenSet[str]] = {
    EntityType.LECTURE: frozenset({"duration", "topic_id", "serial"}),
    EntityType.EXAM: frozenset({"marks", "topic_id"}),
    EntityType.COURSE: frozenset({"lecture_weight"}),
    EntityType.TOPIC: frozenset({"serial"}),
    EntityType.QUESTION: frozenset(),
}

_STEP_ORDER = {
    RecalcStepKind.REDISTRIBUTE_LECTURES: 0,
    RecalcStepKind.REDISTRIBUTE_EXAMS: 0,
    RecalcStepKind.ROLLUP_TOPIC: 1,
    RecalcStepKind.VERIFY_COURSE: 2,
}


@dataclass(frozen=True)
class RecalcStep:
    kind: RecalcStepKind
    target_id: int

    def __str__(self) -> str:
        return f"{self.kind.value}({self.target_id})"


@dataclass
class MutationContext:
    """
    What the caller knows about a mutation.

    course_id: owning course
    topic_id: topic of the mutated lecture/exam (after the mutation)
    previous_topic_id: topic before a move between topics
    topic_ids: every topic of the course after the mutation
    changed_fields: fields actually changed by an UPDATE
    share_policy: how pools are split between topics
    """
    course_id: int
    topic_id: Optional[int] = None
    previous_topic_id: Optional[int] = None
    topic_ids: Tuple[int, ...] = ()
    changed_fields: FrozenSet[str] = frozenset()
    share_policy: TopicSharePolicy = TopicSharePolicy.BASIS


@dataclass
class RecalcPlan:
    """Ordered recalculation steps for one mutation."""
    course_id: int
    steps: List[RecalcStep] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.steps

    def topics_for(self, kind: RecalcStepKind) -> List[int]:
        return [step.target_id for step in self.steps if step.kind == kind]

    def __str__(self) -> str:
        return " -> ".join(str(step) for step in self.steps) or "<empty>"


def _build_plan(
    course_id: int,
    lecture_topics: Iterable[int] = (),
    exam_topics: Iterable[int] = (),
    rollup_topics: Iterable[int] = (),
    verify: bool = True,
) -> RecalcPlan:
    steps = set()
    for topic_id in lecture_topics:
        steps.add(RecalcStep(RecalcStepKind.REDISTRIBUTE_LECTURES, topic_id))
    for topic_id in exam_topics:
        steps.add(RecalcStep(RecalcStepKind.REDISTRIBUTE_EXAMS, topic_id))
    for topic_id in rollup_topics:
        steps.add(RecalcStep(RecalcStepKind.ROLLUP_TOPIC, topic_id))
    if verify:
        steps.add(RecalcStep(RecalcStepKind.VERIFY_COURSE, course_id))

    ordered = sorted(
        steps,
        key=lambda s: (_STEP_ORDER[s.kind], s.target_id, s.kind.value),
    )
    return RecalcPlan(course_id=course_id, steps=ordered)


def _affected_topics(context: MutationContext) -> List[int]:
    """Topics whose sibling weights depend on the mutated lecture/exam."""
    if context.share_policy == TopicSharePolicy.BASIS:
        # Topic shares are proportional to every topic's basis total
        topics = set(context.topic_ids)
    else:
        topics = set()
    for topic_id in (context.topic_id, context.previous_topic_id):
        if topic_id is not None:
            topics.add(topic_id)
    return sorted(topics)


def _touches_basis(entity_type: EntityType, operation: MutationType, context: MutationContext) -> bool:
    if operation != MutationType.UPDATE:
        return True
    return bool(BASIS_FIELDS[entity_type] & frozenset(context.changed_fields))


def on_mutation(
    entity_type: EntityType,
    operation: MutationType,
    context: MutationContext,
) -> RecalcPlan:
    """
    Decide which sibling sets to recompute for a mutation, and in what order.

    Updates that change no basis or budget field (titles, video URLs,
    question text) yield an empty plan.
    """
    entity_type = EntityType(entity_type)
    operation = MutationType(operation)
    course_id = context.course_id
    empty = RecalcPlan(course_id=course_id)

    if entity_type == EntityType.QUESTION:
        return empty

    if not _touches_basis(entity_type, operation, context):
        logger.debug(
            "%s %s changed %s; no recalculation needed",
            entity_type.value, operation.value, sorted(context.changed_fields),
        )
        return empty

    all_topics = sorted(set(context.topic_ids))

    if entity_type == EntityType.LECTURE:
        topics = _affected_topics(context)
        plan = _build_plan(course_id, lecture_topics=topics, rollup_topics=topics)

    elif entity_type == EntityType.EXAM:
        topics = _affected_topics(context)
        plan = _build_plan(course_id, exam_topics=topics, rollup_topics=topics)

    elif entity_type == EntityType.TOPIC:
        if operation == MutationType.CREATE and context.share_policy == TopicSharePolicy.BASIS:
            # A new topic owns no basis yet, so no share moves
            plan = _build_plan(course_id)
        else:
            plan = _build_plan(
                course_id,
                lecture_topics=all_topics,
                exam_topics=all_topics,
                rollup_topics=all_topics,
            )

    else:  # COURSE
        if operation != MutationType.UPDATE:
            return empty
        plan = _build_plan(
            course_id,
            lecture_topics=all_topics,
            exam_topics=all_topics,
            rollup_topics=all_topics,
        )

    logger.debug("Plan for %s %s: %s", entity_type.value, operation.value, plan)
    return plan
