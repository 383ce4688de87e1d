"""
Course Content Service Tests

Validation, moves between topics, cascading deletes and the weight tree
read model.
"""
import pytest
from decimal import Decimal
from sqlalchemy import func, select

from coursegrade.exceptions import InvalidInputError, NotFoundError
from coursegrade.orm.course import Course
from coursegrade.orm.enrollment import Enrollment, LectureProgress
from coursegrade.orm.exam import Exam
from coursegrade.orm.lecture import Lecture
from coursegrade.orm.question import Question
from coursegrade.orm.topic import Topic
from coursegrade.services import course_content_service as content
from coursegrade.services import progress_service


async def count(db, model, *criteria) -> int:
    result = await db.execute(select(func.count(model.id)).where(*criteria))
    return result.scalar_one()


@pytest.fixture
async def course(db, settings):
    return await content.create_course(db, "Compilers", lecture_weight=60, settings=settings)


# =============================================================================
# Courses
# =============================================================================

class TestCourses:

    @pytest.mark.asyncio
    async def test_default_lecture_weight(self, db, settings):
        course = await content.create_course(db, "  Operating Systems ", settings=settings)

        assert course.title == "Operating Systems"
        assert Decimal(course.lecture_weight) == Decimal("50")
        assert course.exam_weight == Decimal("50")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("weight", [-1, "100.5"])
    async def test_lecture_weight_out_of_range(self, db, settings, weight):
        with pytest.raises(InvalidInputError):
            await content.create_course(db, "Bad", lecture_weight=weight, settings=settings)

    @pytest.mark.asyncio
    async def test_title_required(self, db, settings):
        with pytest.raises(InvalidInputError):
            await content.create_course(db, "   ", settings=settings)

    @pytest.mark.asyncio
    async def test_split_update_validates(self, db, settings, course):
        with pytest.raises(InvalidInputError):
            await content.update_course_split(db, course.id, 150, settings=settings)

    @pytest.mark.asyncio
    async def test_split_update_unknown_course(self, db, settings):
        with pytest.raises(NotFoundError):
            await content.update_course_split(db, 404, 40, settings=settings)

    @pytest.mark.asyncio
    async def test_delete_course_removes_tree(self, db, settings, course):
        course_id = course.id
        topic = await content.create_topic(db, course_id, "Parsing", settings=settings)
        topic_id = topic.id
        lecture = await content.add_lecture(db, topic_id, "LL(1)", duration=40, settings=settings)
        exam = await content.add_exam(db, topic_id, marks=10, settings=settings)
        await content.add_question(db, exam.id, "FIRST of S?", right_ans=2)
        await progress_service.enroll(db, 1, course_id)
        await progress_service.record_lecture_progress(db, 1, lecture.id, 100, completed=True)

        await content.delete_course(db, course_id)

        assert await count(db, Course, Course.id == course_id) == 0
        assert await count(db, Topic, Topic.course_id == course_id) == 0
        assert await count(db, Lecture, Lecture.topic_id == topic_id) == 0
        assert await count(db, Exam, Exam.topic_id == topic_id) == 0
        assert await count(db, Question) == 0
        assert await count(db, LectureProgress) == 0
        assert await count(db, Enrollment) == 0


# =============================================================================
# Topics
# =============================================================================

class TestTopics:

    @pytest.mark.asyncio
    async def test_serials_are_assigned_in_order(self, db, settings, course):
        first = await content.create_topic(db, course.id, "Lexing", settings=settings)
        second = await content.create_topic(db, course.id, "Parsing", settings=settings)

        assert (first.serial, second.serial) == (1, 2)
        assert first.weight == Decimal("0")

    @pytest.mark.asyncio
    async def test_rename_does_not_touch_weight(self, db, settings, course):
        topic = await content.create_topic(db, course.id, "Lexing", settings=settings)
        await content.add_lecture(db, topic.id, "Regex", duration=30, settings=settings)
        before = Decimal(topic.weight)

        renamed = await content.update_topic(db, topic.id, name="Lexical analysis")

        assert renamed.name == "Lexical analysis"
        assert Decimal(renamed.weight) == before

    @pytest.mark.asyncio
    async def test_topic_for_unknown_course(self, db, settings):
        with pytest.raises(NotFoundError):
            await content.create_topic(db, 404, "Orphan", settings=settings)

    @pytest.mark.asyncio
    async def test_delete_topic_reallocates_course(self, db, settings, course):
        lexing = await content.create_topic(db, course.id, "Lexing", settings=settings)
        parsing = await content.create_topic(db, course.id, "Parsing", settings=settings)
        regex = await content.add_lecture(db, lexing.id, "Regex", duration=30, settings=settings)
        await content.add_lecture(db, parsing.id, "LR", duration=30, settings=settings)
        regex_id, parsing_id = regex.id, parsing.id

        await content.delete_topic(db, parsing_id, settings=settings)

        weights = await content.get_course_weights(db, course.id, settings=settings)
        assert [t.id for t in weights.topics] == [lexing.id]
        assert weights.topics[0].lectures[0].id == regex_id
        assert weights.topics[0].lectures[0].weight == Decimal("60")
        assert await count(db, Lecture, Lecture.topic_id == parsing_id) == 0


# =============================================================================
# Lectures and exams
# =============================================================================

class TestLecturesAndExams:

    @pytest.mark.asyncio
    async def test_negative_duration_rejected(self, db, settings, course):
        topic = await content.create_topic(db, course.id, "Lexing", settings=settings)

        with pytest.raises(InvalidInputError):
            await content.add_lecture(db, topic.id, "Regex", duration=-5, settings=settings)

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, db, settings, course):
        topic = await content.create_topic(db, course.id, "Lexing", settings=settings)
        lecture = await content.add_lecture(db, topic.id, "Regex", duration=30, settings=settings)

        with pytest.raises(InvalidInputError):
            await content.update_lecture(db, lecture.id, settings=settings, weight=99)

    @pytest.mark.asyncio
    async def test_duration_update_reweights(self, db, settings, course):
        topic = await content.create_topic(db, course.id, "Lexing", settings=settings)
        first = await content.add_lecture(db, topic.id, "Regex", duration=30, settings=settings)
        second = await content.add_lecture(db, topic.id, "DFA", duration=30, settings=settings)

        await content.update_lecture(db, second.id, settings=settings, duration=90)

        weights = await content.get_course_weights(db, course.id, settings=settings)
        by_id = {l.id: l.weight for l in weights.topics[0].lectures}
        assert by_id == {first.id: Decimal("15"), second.id: Decimal("45")}

    @pytest.mark.asyncio
    async def test_move_lecture_between_topics(self, db, settings, course):
        lexing = await content.create_topic(db, course.id, "Lexing", settings=settings)
        parsing = await content.create_topic(db, course.id, "Parsing", settings=settings)
        regex = await content.add_lecture(db, lexing.id, "Regex", duration=30, settings=settings)
        moving = await content.add_lecture(db, lexing.id, "LL(1)", duration=30, settings=settings)

        await content.update_lecture(db, moving.id, settings=settings, topic_id=parsing.id)

        weights = await content.get_course_weights(db, course.id, settings=settings)
        topics = {t.id: t for t in weights.topics}
        assert [l.id for l in topics[lexing.id].lectures] == [regex.id]
        assert [l.id for l in topics[parsing.id].lectures] == [moving.id]
        assert topics[lexing.id].weight == Decimal("30")
        assert topics[parsing.id].weight == Decimal("30")

    @pytest.mark.asyncio
    async def test_move_lecture_across_courses_rejected(self, db, settings, course):
        topic = await content.create_topic(db, course.id, "Lexing", settings=settings)
        lecture = await content.add_lecture(db, topic.id, "Regex", duration=30, settings=settings)
        other_course = await content.create_course(db, "Databases", settings=settings)
        foreign = await content.create_topic(db, other_course.id, "SQL", settings=settings)

        with pytest.raises(InvalidInputError):
            await content.update_lecture(db, lecture.id, settings=settings, topic_id=foreign.id)

    @pytest.mark.asyncio
    async def test_exam_weights_follow_marks(self, db, settings, course):
        topic = await content.create_topic(db, course.id, "Lexing", settings=settings)
        quiz = await content.add_exam(db, topic.id, marks=10, settings=settings)
        final = await content.add_exam(db, topic.id, marks=30, settings=settings)

        weights = await content.get_course_weights(db, course.id, settings=settings)
        by_id = {e.id: e.weight for e in weights.topics[0].exams}
        assert by_id == {quiz.id: Decimal("10"), final.id: Decimal("30")}

        await content.delete_exam(db, quiz.id, settings=settings)

        weights = await content.get_course_weights(db, course.id, settings=settings)
        assert [(e.id, e.weight) for e in weights.topics[0].exams] == [(final.id, Decimal("40"))]

    @pytest.mark.asyncio
    async def test_pass_pct_change_keeps_weights(self, db, settings, course):
        topic = await content.create_topic(db, course.id, "Lexing", settings=settings)
        exam = await content.add_exam(db, topic.id, marks=10, settings=settings)

        updated = await content.update_exam(db, exam.id, settings=settings, pass_pct=60)

        assert updated.pass_pct == 60
        assert Decimal(updated.weight) == Decimal("40")

    @pytest.mark.asyncio
    async def test_invalid_pass_pct(self, db, settings, course):
        topic = await content.create_topic(db, course.id, "Lexing", settings=settings)

        with pytest.raises(InvalidInputError):
            await content.add_exam(db, topic.id, marks=10, pass_pct=120, settings=settings)


# =============================================================================
# Questions
# =============================================================================

class TestQuestions:

    @pytest.mark.asyncio
    async def test_question_lifecycle_never_moves_weights(self, db, settings, course):
        topic = await content.create_topic(db, course.id, "Lexing", settings=settings)
        exam = await content.add_exam(db, topic.id, marks=10, settings=settings)

        question = await content.add_question(db, exam.id, "Which is a token?", right_ans="3", marks=2)
        await content.update_question(db, question.id, marks=5)

        assert question.serial == 1
        assert question.marks == 5
        assert Decimal(exam.weight) == Decimal("40")

        await content.delete_question(db, question.id)
        assert await count(db, Question) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("answer", ["0", "5", "a"])
    async def test_invalid_answer(self, db, settings, course, answer):
        topic = await content.create_topic(db, course.id, "Lexing", settings=settings)
        exam = await content.add_exam(db, topic.id, marks=10, settings=settings)

        with pytest.raises(InvalidInputError):
            await content.add_question(db, exam.id, "?", right_ans=answer)


# =============================================================================
# Read model
# =============================================================================

class TestCourseWeights:

    @pytest.mark.asyncio
    async def test_weight_tree(self, db, settings, course):
        topic = await content.create_topic(db, course.id, "Lexing", settings=settings)
        await content.add_lecture(db, topic.id, "Regex", duration=30, settings=settings)
        await content.add_exam(db, topic.id, marks=10, settings=settings)

        weights = await content.get_course_weights(db, course.id, settings=settings)

        assert weights.lecture_weight == Decimal("60")
        assert weights.exam_weight == Decimal("40")
        assert weights.total == Decimal("100")
        assert weights.balanced is True
        assert weights.topics[0].lecture_allocation == Decimal("60")
        assert weights.topics[0].exam_allocation == Decimal("40")

    @pytest.mark.asyncio
    async def test_unknown_course(self, db, settings):
        with pytest.raises(NotFoundError):
            await content.get_course_weights(db, 404, settings=settings)
