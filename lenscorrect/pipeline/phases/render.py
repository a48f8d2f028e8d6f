"""Render phase: warp every plane through its transform chain."""

from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
import logging

import numpy as np
from tqdm import tqdm

from lenscorrect.config import ConfigManager
from lenscorrect.errors import BufferAllocationError
from lenscorrect.io.image_stack import ImageStack
from lenscorrect.pipeline.phases.base import BasePhase
from lenscorrect.render.warper import MeshMapping, MeshWarper, estimate_memory_bytes
from lenscorrect.transform.composite import CompositeTransform


class RenderPhase(BasePhase):
    """描画フェーズ

    チェーンごとに画素対応表を1回だけ作成し、スタックの全平面に適用します。
    """

    def __init__(self, config: ConfigManager, logger: logging.Logger):
        super().__init__(config, logger)
        # 補間方法の誤りはここで検出する
        self.warper = MeshWarper(
            mesh_resolution=config.get("render.mesh_resolution", 128),
            interpolation=config.get("render.interpolation", "bilinear"),
        )
        self.max_workers = max(1, int(config.get("render.max_workers", 1)))

    def create_mappings(
        self,
        chains: Sequence[CompositeTransform],
        source_sizes: Sequence[tuple[int, int]],
        output_size: tuple[int, int],
    ) -> list[MeshMapping]:
        """各チェーンの画素対応表を作成する"""

        def create(index: int) -> MeshMapping:
            width, height = source_sizes[index]
            mesh = self.warper.build_mesh(width, height)
            return self.warper.create_mapping(chains[index], mesh, output_size)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            return list(executor.map(create, range(len(chains))))

    def render_plane(self, plane: np.ndarray, chain: CompositeTransform, output_size: tuple[int, int]) -> np.ndarray:
        """1平面を描画する（位置合わせ用）"""
        height, width = plane.shape
        mesh = self.warper.build_mesh(width, height)
        rendered, _ = self.warper.warp(plane, chain, mesh=mesh, output_size=output_size)
        return rendered

    def execute(
        self,
        sources: Sequence[ImageStack],
        chains: Sequence[CompositeTransform],
        output_size: tuple[int, int],
    ) -> list[ImageStack]:
        """各スタックを対応するチェーンで描画する

        Args:
            sources: 入力スタック（チェーンと同数）
            chains: 変換チェーン（原点への平行移動を含む）
            output_size: 出力サイズ (width, height)

        Returns:
            描画済みスタックのリスト（入力と同じ順序・画素型）
        """
        self.log_phase_start("フェーズ3: 描画")
        if len(sources) != len(chains):
            raise ValueError(f"入力数とチェーン数が一致しません: {len(sources)} != {len(chains)}")

        width, height = output_size
        mapping_bytes = estimate_memory_bytes(output_size) * len(chains)
        self.logger.debug(f"画素対応表のメモリ: 約 {mapping_bytes / 1024**2:.1f} MB")
        mappings = self.create_mappings(chains, [(s.width, s.height) for s in sources], output_size)

        outputs = []
        for source in sources:
            shape = (source.frames, source.slices, source.channels, height, width)
            try:
                outputs.append(np.zeros(shape, dtype=source.dtype))
            except MemoryError as e:
                raise BufferAllocationError(shape) from e

        def render(index: int, t: int, z: int, c: int) -> None:
            plane, _ = mappings[index].map_interpolated(sources[index].plane(t, z, c), self.warper.interpolation)
            outputs[index][t, z, c] = plane

        tasks = [(i, t, z, c) for i, source in enumerate(sources) for (t, z, c), _ in source.iter_planes()]
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(render, *task) for task in tasks]
            for future in tqdm(as_completed(futures), total=len(futures), desc="描画中"):
                future.result()

        for i, mapping in enumerate(mappings):
            self.logger.debug(f"Chain {i}: coverage {mapping.coverage:.1%}")
        self.logger.info(f"{len(tasks)} 平面を {width}x{height} に描画しました")

        return [ImageStack(data=data, name=source.name) for data, source in zip(outputs, sources)]
