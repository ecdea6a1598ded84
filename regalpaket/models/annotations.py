# FILE: regalpaket/models/annotations.py
"""
Annotation overlay models

The stroke/stamp schema is shared with the viewer; changing it requires a
manifest format version bump.
"""
from enum import Enum
from typing import List, Literal, Union
from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "StrokeTool", "StampId", "Point", "Stroke", "Stamp",
    "AnnotationRecord", "AnnotationOverlay", "HEX_COLOR_PATTERN",
]

HEX_COLOR_PATTERN = r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$"


class StrokeTool(str, Enum):
    """Freehand tools"""
    PEN = "pen"
    HIGHLIGHTER = "highlighter"
    ERASER = "eraser"


class StampId(str, Enum):
    """Catalog of symbolic marks"""
    FERMATA = "fermata"
    BREATH = "breath"
    ACCENT = "accent"
    STACCATO = "staccato"
    CHECK = "check"
    X = "x"
    STAR = "star"
    CIRCLE = "circle"


class Point(BaseModel):
    """Point in page coordinates"""
    x: float
    y: float


class Stroke(BaseModel):
    """Freehand stroke"""
    model_config = ConfigDict(populate_by_name=True)

    tool: StrokeTool
    color: str = Field(pattern=HEX_COLOR_PATTERN)
    line_width: float = Field(alias="lineWidth", gt=0)
    points: List[Point]


class Stamp(BaseModel):
    """Symbolic mark placed at a point"""
    model_config = ConfigDict(populate_by_name=True)

    tool: Literal["stamp"] = "stamp"
    stamp_id: StampId = Field(alias="stampId")
    color: str = Field(default="#1a1a1a", pattern=HEX_COLOR_PATTERN)
    x: float
    y: float
    size: float = Field(default=24, gt=0)


AnnotationRecord = Union[Stroke, Stamp]

# Paint order: later records draw over earlier ones
AnnotationOverlay = List[AnnotationRecord]
