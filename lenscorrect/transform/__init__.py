"""Geometric transform model and its JSON codec.

This module provides:
- Primitive coordinate models (translation, rigid, affine, polynomial lens distortion)
- Composite transforms applied as ordered chains
- A tag registry and the calibration file codec
"""

from lenscorrect.transform.codec import TransformCodec, load_calibrations, save_calibrations
from lenscorrect.transform.composite import (
    Calibration,
    CompositeTransform,
    Point,
    PrimitiveTransform,
    Transform,
)
from lenscorrect.transform.models import (
    CORRECTION_MODELS,
    AffineModel2D,
    CoordinateModel,
    FittableModel,
    NonLinearCoordinateTransform,
    RigidModel2D,
    TranslationModel2D,
)
from lenscorrect.transform.registry import COMPOSITE_TAG, TransformRegistry, default_registry

__all__ = [
    "COMPOSITE_TAG",
    "CORRECTION_MODELS",
    "AffineModel2D",
    "Calibration",
    "CompositeTransform",
    "CoordinateModel",
    "FittableModel",
    "NonLinearCoordinateTransform",
    "Point",
    "PrimitiveTransform",
    "RigidModel2D",
    "Transform",
    "TransformCodec",
    "TransformRegistry",
    "TranslationModel2D",
    "default_registry",
    "load_calibrations",
    "save_calibrations",
]
