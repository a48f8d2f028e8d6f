"""Pipeline processing modules."""

from lenscorrect.pipeline.correction_pipeline import CorrectionPipeline, CorrectionResult
from lenscorrect.pipeline.phases import AlignmentPhase, CanvasPhase, RenderPhase

__all__ = [
    "AlignmentPhase",
    "CanvasPhase",
    "CorrectionPipeline",
    "CorrectionResult",
    "RenderPhase",
]
