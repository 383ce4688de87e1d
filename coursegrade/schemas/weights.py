"""
Weight allocation schemas

Inbound sibling descriptions and outbound weight assignments exchanged
between the engine and the persistence layer, plus the read model of a
course's weight tree.
"""
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WeightItem(BaseModel):
    """A sibling to allocate to: its id and its basis (duration or marks)."""
    model_config = ConfigDict(frozen=True)

    id: int
    basis: Decimal
    sort_key: int = Field(
        default=0,
        description="Stable ordering key (serial); ties broken by id"
    )

    @field_validator('basis', mode='before')
    @classmethod
    def coerce_basis(cls, v):
        """Route ints and floats through str so 0.1 stays 0.1"""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return Decimal(str(v))
        return v


class WeightAssignment(BaseModel):
    """Computed weight for one sibling."""
    model_config = ConfigDict(frozen=True)

    id: int
    weight: Decimal


class CourseBalance(BaseModel):
    """Result of the course-level 100% check."""
    model_config = ConfigDict(frozen=True)

    balanced: bool
    total: Decimal


# ================= READ MODELS =================

class LectureWeightOut(BaseModel):
    id: int
    title: Optional[str] = None
    serial: int
    duration: Decimal
    weight: Decimal


class ExamWeightOut(BaseModel):
    id: int
    marks: Decimal
    weight: Decimal


class TopicWeightOut(BaseModel):
    id: int
    name: str
    serial: int
    weight: Decimal
    lecture_allocation: Decimal
    exam_allocation: Decimal
    lectures: List[LectureWeightOut] = Field(default_factory=list)
    exams: List[ExamWeightOut] = Field(default_factory=list)


class CourseWeightsOut(BaseModel):
    """Full weight tree of a course, as persisted."""
    id: int
    title: str
    lecture_weight: Decimal
    exam_weight: Decimal
    total: Decimal
    balanced: bool
    topics: List[TopicWeightOut] = Field(default_factory=list)
