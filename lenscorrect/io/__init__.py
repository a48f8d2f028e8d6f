"""Image stack I/O (TIFF hyperstacks in T, Z, C, Y, X order)."""

from lenscorrect.io.image_stack import (
    ImageStack,
    combine_channels,
    open_channels,
    open_image_stack,
    save_image_stack,
    split_channels,
    z_average_projection,
)

__all__ = [
    "ImageStack",
    "combine_channels",
    "open_channels",
    "open_image_stack",
    "save_image_stack",
    "split_channels",
    "z_average_projection",
]
