"""多次元画像スタックの入出力

TIFF（ImageJ ハイパースタック、LSM を含む）を読み込み、
(T, Z, C, Y, X) 順の5次元配列として扱います。
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
import logging
from pathlib import Path

import numpy as np
import tifffile

from lenscorrect.errors import ImageReadError

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".tif", ".tiff", ".lsm")
STACK_AXES = "TZCYX"

# ImageJ 形式で保存できる画素型
_IMAGEJ_DTYPES = (np.uint8, np.uint16, np.float32)

# 0.35% 飽和のコントラスト調整
_SATURATED_FRACTION = 0.0035


@dataclass
class ImageStack:
    """(T, Z, C, Y, X) 順の画像スタック

    Attributes:
        data: 5次元配列
        name: 表示名（通常はファイル名）
    """

    data: np.ndarray
    name: str = ""

    def __post_init__(self):
        if self.data.ndim != 5:
            raise ValueError(f"ImageStack は5次元 (T, Z, C, Y, X) である必要があります: {self.data.shape}")

    @classmethod
    def from_planes(cls, planes: np.ndarray, name: str = "") -> ImageStack:
        """2D 平面または (C, Y, X) 配列からスタックを作る"""
        array = np.asarray(planes)
        if array.ndim == 2:
            array = array[np.newaxis, np.newaxis, np.newaxis]
        elif array.ndim == 3:
            array = array[np.newaxis, np.newaxis]
        return cls(data=array, name=name)

    @property
    def frames(self) -> int:
        return self.data.shape[0]

    @property
    def slices(self) -> int:
        return self.data.shape[1]

    @property
    def channels(self) -> int:
        return self.data.shape[2]

    @property
    def height(self) -> int:
        return self.data.shape[3]

    @property
    def width(self) -> int:
        return self.data.shape[4]

    @property
    def dtype(self) -> np.dtype:
        return self.data.dtype

    def plane(self, t: int, z: int, c: int) -> np.ndarray:
        return self.data[t, z, c]

    def iter_planes(self) -> Iterator[tuple[tuple[int, int, int], np.ndarray]]:
        """((t, z, c), 2D平面) を順に返す"""
        for t in range(self.frames):
            for z in range(self.slices):
                for c in range(self.channels):
                    yield (t, z, c), self.data[t, z, c]

    def __repr__(self) -> str:
        return f"ImageStack(name={self.name!r}, shape={self.data.shape}, dtype={self.dtype})"


def normalize_axes(data: np.ndarray, axes: str) -> np.ndarray:
    """任意の軸文字列の配列を (T, Z, C, Y, X) に並べ替える

    S（サンプル）は C に、T/Z/C/Y/X 以外の軸は Z にまとめます。

    Raises:
        ValueError: Y と X が1つずつ含まれない場合
    """
    if data.ndim != len(axes):
        raise ValueError(f"軸文字列 {axes!r} と配列の次元 {data.ndim} が一致しません")

    groups: dict[str, list[int]] = {target: [] for target in STACK_AXES}
    for i, axis in enumerate(axes.upper()):
        if axis in ("T", "Z", "C", "Y", "X"):
            groups[axis].append(i)
        elif axis == "S":
            groups["C"].append(i)
        else:
            groups["Z"].append(i)

    if len(groups["Y"]) != 1 or len(groups["X"]) != 1:
        raise ValueError(f"Y と X の軸が必要です: {axes!r}")

    order = [i for target in STACK_AXES for i in groups[target]]
    transposed = np.transpose(data, order)
    shape = [int(np.prod([data.shape[i] for i in groups[target]], dtype=np.int64)) for target in STACK_AXES]
    return transposed.reshape(shape)


def open_image_stack(path: str | Path) -> ImageStack:
    """画像スタックを読み込む

    Raises:
        ImageReadError: 未対応の形式、または読み込めない場合
    """
    file_path = Path(path)
    if file_path.suffix.lower() not in SUPPORTED_SUFFIXES:
        raise ImageReadError(file_path, f"unsupported file type '{file_path.suffix}'")
    if not file_path.exists():
        raise ImageReadError(file_path, "file not found")

    try:
        with tifffile.TiffFile(file_path) as tif:
            series = tif.series[0]
            data = series.asarray()
            axes = series.axes
    except (OSError, ValueError, IndexError, tifffile.TiffFileError) as e:
        raise ImageReadError(file_path, str(e)) from e

    try:
        stack = ImageStack(data=normalize_axes(data, axes), name=file_path.name)
    except ValueError as e:
        raise ImageReadError(file_path, str(e)) from e

    logger.info(f"Opened {file_path.name}: axes={axes}, shape={stack.data.shape}, dtype={stack.dtype}")
    return stack


def save_image_stack(path: str | Path, stack: ImageStack) -> Path:
    """ImageJ ハイパースタックとして保存する"""
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    data = stack.data
    if data.dtype.type not in _IMAGEJ_DTYPES:
        logger.warning(f"{data.dtype} は ImageJ 形式で保存できないため float32 に変換します")
        data = data.astype(np.float32)

    tifffile.imwrite(file_path, data, imagej=True, metadata={"axes": STACK_AXES})
    logger.info(f"Saved {file_path} (shape={data.shape}, dtype={data.dtype})")
    return file_path


def split_channels(stack: ImageStack) -> list[ImageStack]:
    """チャンネルごとのスタックに分割する"""
    return [
        ImageStack(data=stack.data[:, :, c : c + 1].copy(), name=f"C{c + 1}-{stack.name}")
        for c in range(stack.channels)
    ]


def combine_channels(stacks: Sequence[ImageStack], name: str = "") -> ImageStack:
    """スタックをチャンネル方向に結合する

    Raises:
        ValueError: 空、または T/Z/Y/X の大きさや画素型が一致しない場合
    """
    if not stacks:
        raise ValueError("結合するスタックがありません")

    first = stacks[0]
    for stack in stacks[1:]:
        if (stack.frames, stack.slices, stack.height, stack.width) != (
            first.frames,
            first.slices,
            first.height,
            first.width,
        ):
            raise ValueError(f"スタックの大きさが一致しません: {first.data.shape} / {stack.data.shape}")
        if stack.dtype != first.dtype:
            raise ValueError(f"画素型が一致しません: {first.dtype} / {stack.dtype}")

    data = np.concatenate([s.data for s in stacks], axis=2)
    return ImageStack(data=data, name=name or first.name)


def open_channels(paths: Sequence[str | Path]) -> list[ImageStack]:
    """チャンネルごとのファイルを順に読み込む（空のパスは無視）"""
    stacks = []
    for path in paths:
        if not str(path).strip():
            continue
        stacks.append(open_image_stack(str(path).strip()))
    return stacks


def z_average_projection(stack: ImageStack) -> np.ndarray:
    """全平面の平均投影（0.35% 飽和でコントラスト調整した float32）"""
    projection = stack.data.reshape(-1, stack.height, stack.width).astype(np.float64).mean(axis=0)

    lo, hi = np.percentile(projection, [100 * _SATURATED_FRACTION / 2, 100 * (1 - _SATURATED_FRACTION / 2)])
    if hi <= lo:
        return np.zeros(projection.shape, dtype=np.float32)
    stretched = np.clip((projection - lo) / (hi - lo), 0.0, 1.0)
    return stretched.astype(np.float32)
