"""Alignment of rendered images against a reference rendering.

This module provides:
- SIFT feature matching with a ratio-of-distances test
- RANSAC model filtering with median-based outlier trimming
- The refiner that appends fitted corrections to transform chains
"""

from lenscorrect.align.features import FeatureMatcher, PointMatch, SiftFeatureMatcher, SiftParams
from lenscorrect.align.ransac import RansacParams, RansacResult, filter_ransac
from lenscorrect.align.refiner import AlignmentConfig, AlignmentRefiner, AlignmentResult

__all__ = [
    # Refiner
    "AlignmentConfig",
    "AlignmentRefiner",
    "AlignmentResult",
    # Features
    "FeatureMatcher",
    "PointMatch",
    # RANSAC
    "RansacParams",
    "RansacResult",
    "SiftFeatureMatcher",
    "SiftParams",
    "filter_ransac",
]
