"""
coursegrade/orm/course.py
Course: the root of the weight tree
"""
from decimal import Decimal

from sqlalchemy import Column, String, Text, Integer, Numeric, CheckConstraint
from sqlalchemy.orm import relationship

from coursegrade.orm.base import BaseModel, WEIGHT_PRECISION, WEIGHT_SCALE

COURSE_TOTAL = Decimal("100")


class Course(BaseModel):
    """
    A course's total grade is 100 percentage points.

    lecture_weight of those points go to lectures, the rest
    (100 - lecture_weight) to exams. Both pools are then divided between
    the course's topics.

    Relationships:
    - topics: cascade deleted with the course
    """
    __tablename__ = "courses"

    title = Column(
        String(255),
        nullable=False,
        comment="Course title"
    )

    description = Column(
        Text,
        nullable=True
    )

    instructor_id = Column(
        Integer,
        nullable=True,
        index=True,
        comment="Owning instructor (managed outside this service)"
    )

    lecture_weight = Column(
        Numeric(WEIGHT_PRECISION, WEIGHT_SCALE, asdecimal=True),
        nullable=False,
        default=Decimal("50"),
        comment="Percentage of the grade assigned to lectures (0-100)"
    )

    topics = relationship(
        "Topic",
        back_populates="course",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Topic.serial"
    )

    __table_args__ = (
        CheckConstraint(
            'lecture_weight >= 0 AND lecture_weight <= 100',
            name='chk_course_lecture_weight_range'
        ),
    )

    @property
    def exam_weight(self) -> Decimal:
        return COURSE_TOTAL - Decimal(self.lecture_weight)

    def __repr__(self):
        return f"<Course(id={self.id}, title='{self.title}', lecture_weight={self.lecture_weight})>"
