"""
coursegrade/orm/exam.py
Exam: weighted by total marks within its topic
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from coursegrade.orm.base import BaseModel, weight_column

DEFAULT_PASS_PCT = 40


class Exam(BaseModel):
    """
    weight = this exam's share of its topic's exam allocation,
    proportional to marks among the topic's exams.
    """
    __tablename__ = "exams"

    topic_id = Column(
        Integer,
        ForeignKey("topics.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    marks = Column(
        Numeric(10, 2, asdecimal=True),
        nullable=False,
        default=Decimal("0"),
        comment="Total marks available"
    )

    duration = Column(Integer, nullable=False, default=0, comment="Minutes")

    question_count = Column(Integer, nullable=False, default=0)

    pass_pct = Column(
        Integer,
        nullable=False,
        default=DEFAULT_PASS_PCT,
        comment="Percentage of marks needed to pass"
    )

    weight = weight_column("Share of the topic's exam allocation")

    topic = relationship("Topic", back_populates="exams")

    questions = relationship(
        "Question",
        back_populates="exam",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Question.serial"
    )

    __table_args__ = (
        CheckConstraint('marks >= 0', name='chk_exam_marks_non_negative'),
        CheckConstraint('pass_pct >= 0 AND pass_pct <= 100', name='chk_exam_pass_pct_range'),
    )

    def __repr__(self):
        return f"<Exam(id={self.id}, topic_id={self.topic_id}, marks={self.marks}, weight={self.weight})>"
