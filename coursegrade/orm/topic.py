"""
coursegrade/orm/topic.py
Topic: a course section owning lectures and exams
"""
from sqlalchemy import Column, Integer, String, Text, ForeignKey, Index
from sqlalchemy.orm import relationship

from coursegrade.orm.base import BaseModel, weight_column


class Topic(BaseModel):
    """
    A topic's weight is derived: the sum of its lecture weights and
    exam weights. It is never set directly.
    """
    __tablename__ = "topics"

    course_id = Column(
        Integer,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name = Column(String(255), nullable=False)

    description = Column(Text, nullable=True)

    serial = Column(
        Integer,
        nullable=False,
        default=1,
        comment="Display order within the course"
    )

    weight = weight_column("Sum of lecture and exam weights in this topic")

    course = relationship("Course", back_populates="topics")

    lectures = relationship(
        "Lecture",
        back_populates="topic",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Lecture.serial"
    )

    exams = relationship(
        "Exam",
        back_populates="topic",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    __table_args__ = (
        Index('ix_topics_course_serial', 'course_id', 'serial'),
    )

    def __repr__(self):
        return f"<Topic(id={self.id}, course_id={self.course_id}, weight={self.weight})>"
