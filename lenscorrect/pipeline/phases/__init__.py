"""Pipeline phase implementations."""

from lenscorrect.pipeline.phases.alignment import AlignmentPhase
from lenscorrect.pipeline.phases.base import BasePhase
from lenscorrect.pipeline.phases.canvas import CanvasPhase, CanvasResult
from lenscorrect.pipeline.phases.render import RenderPhase

__all__ = [
    "AlignmentPhase",
    "BasePhase",
    "CanvasPhase",
    "CanvasResult",
    "RenderPhase",
]
