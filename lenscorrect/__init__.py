"""Lens distortion correction for multi-channel microscopy stacks."""

__version__ = "0.1.0"
