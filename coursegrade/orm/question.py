"""
coursegrade/orm/question.py
Question: multiple choice item of an exam (not weighted)
"""
from sqlalchemy import Column, Integer, String, Text, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from coursegrade.orm.base import BaseModel


class Question(BaseModel):
    __tablename__ = "questions"

    exam_id = Column(
        Integer,
        ForeignKey("exams.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    description = Column(Text, nullable=False)

    option_a = Column(String(1024), nullable=True)
    option_b = Column(String(1024), nullable=True)
    option_c = Column(String(1024), nullable=True)
    option_d = Column(String(1024), nullable=True)

    right_ans = Column(String(1), nullable=False, comment="'1'..'4'")

    marks = Column(Integer, nullable=False, default=1)

    serial = Column(Integer, nullable=False, default=1)

    exam = relationship("Exam", back_populates="questions")

    __table_args__ = (
        CheckConstraint("right_ans IN ('1', '2', '3', '4')", name='chk_question_right_ans'),
    )
