"""
coursegrade/orm/lecture.py
Lecture: weighted by duration within its topic
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, String, Text, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from coursegrade.orm.base import BaseModel, weight_column


class Lecture(BaseModel):
    """
    weight = this lecture's share of its topic's lecture allocation,
    proportional to duration among the topic's lectures.
    """
    __tablename__ = "lectures"

    topic_id = Column(
        Integer,
        ForeignKey("topics.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    title = Column(String(255), nullable=True)

    description = Column(Text, nullable=True)

    video_url = Column(String(1024), nullable=True)

    serial = Column(
        Integer,
        nullable=False,
        default=1,
        comment="Order within the topic; also the remainder tie-break order"
    )

    duration = Column(
        Numeric(10, 2, asdecimal=True),
        nullable=False,
        default=Decimal("0"),
        comment="Length in minutes"
    )

    weight = weight_column("Share of the topic's lecture allocation")

    topic = relationship("Topic", back_populates="lectures")

    __table_args__ = (
        CheckConstraint('duration >= 0', name='chk_lecture_duration_non_negative'),
    )

    def __repr__(self):
        return f"<Lecture(id={self.id}, topic_id={self.topic_id}, duration={self.duration}, weight={self.weight})>"
