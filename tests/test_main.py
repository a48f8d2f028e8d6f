"""End-to-end tests for the lens-correct command."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING
from unittest.mock import patch

import numpy as np
import pytest

from lenscorrect.cli.main import main
from lenscorrect.io.image_stack import ImageStack, open_image_stack, save_image_stack
from lenscorrect.transform import Calibration, CompositeTransform, load_calibrations, save_calibrations

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch, gradient_image, make_translation) -> Path:
    """入力画像・変換ファイル・設定ファイルを用意した作業ディレクトリ"""
    monkeypatch.chdir(tmp_path)

    save_image_stack(tmp_path / "input.tif", ImageStack.from_planes(gradient_image, name="input.tif"))
    save_image_stack(tmp_path / "c2.tif", ImageStack.from_planes(gradient_image // 2, name="c2.tif"))
    save_calibrations(
        [
            Calibration(name="a", transform=CompositeTransform()),
            Calibration(name="b", transform=CompositeTransform([make_translation(2.0, 1.0)])),
        ],
        tmp_path / "transforms.json",
    )
    (tmp_path / "config.yaml").write_text(
        "render:\n  mesh_resolution: 8\n  interpolation: nearest\n  max_workers: 1\noutput:\n  directory: logs\n",
        encoding="utf-8",
    )
    return tmp_path


def run_main(workspace: Path, *args: str) -> int:
    return main(["--config", str(workspace / "config.yaml"), *args])


class TestMain:
    """main のテスト"""

    def test_no_command(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_apply_split(self, workspace: Path, gradient_image):
        exit_code = run_main(
            workspace,
            "apply-split",
            "-i",
            str(workspace / "input.tif"),
            "-o",
            str(workspace / "out" / "split.tif"),
            "-t",
            str(workspace / "transforms.json"),
            "--export-transforms",
            str(workspace / "used.json"),
        )
        assert exit_code == 0

        output = open_image_stack(workspace / "out" / "split.tif")
        assert output.data.shape == (1, 1, 2, 29, 38)
        np.testing.assert_array_equal(output.plane(0, 0, 0), gradient_image[1:30, 2:40])

        used = load_calibrations(workspace / "used.json")
        assert [c.name for c in used] == ["a", "b"]
        assert [len(c.transform) for c in used] == [1, 2]
        assert (workspace / "logs" / "lenscorrect.log").exists()

    def test_apply_channels_with_crop(self, workspace: Path):
        exit_code = run_main(
            workspace,
            "apply-channels",
            "-i",
            f"{workspace / 'input.tif'}, ,{workspace / 'c2.tif'}",
            "-o",
            str(workspace / "channels.tif"),
            "-t",
            str(workspace / "transforms.json"),
            "-c",
            "2",
            "-r",
            "4",
        )
        assert exit_code == 0
        assert open_image_stack(workspace / "channels.tif").data.shape == (1, 1, 2, 25, 34)

    def test_channel_count_mismatch(self, workspace: Path):
        exit_code = run_main(
            workspace,
            "apply-channels",
            "-i",
            str(workspace / "input.tif"),
            "-o",
            str(workspace / "out.tif"),
            "-t",
            str(workspace / "transforms.json"),
        )
        assert exit_code == 1

    def test_missing_transform_file(self, workspace: Path):
        exit_code = run_main(
            workspace,
            "apply-split",
            "-i",
            str(workspace / "input.tif"),
            "-o",
            str(workspace / "out.tif"),
            "-t",
            str(workspace / "missing.json"),
        )
        assert exit_code == 1
        assert not (workspace / "out.tif").exists()

    def test_unknown_transform_tag(self, workspace: Path):
        path = workspace / "unknown.json"
        path.write_text(
            json.dumps([{"transform": [{"className": "org.example.Warp", "dataString": "1"}], "name": "x"}]),
            encoding="utf-8",
        )
        exit_code = run_main(
            workspace, "apply-split", "-i", str(workspace / "input.tif"), "-o", "out.tif", "-t", str(path)
        )
        assert exit_code == 1

    def test_empty_transform_file(self, workspace: Path):
        path = workspace / "empty.json"
        path.write_text("[]", encoding="utf-8")
        exit_code = run_main(
            workspace, "apply-split", "-i", str(workspace / "input.tif"), "-o", "out.tif", "-t", str(path)
        )
        assert exit_code == 1

    def test_unreadable_image(self, workspace: Path):
        (workspace / "broken.tif").write_bytes(b"not a tiff")
        exit_code = run_main(
            workspace,
            "apply-split",
            "-i",
            str(workspace / "broken.tif"),
            "-o",
            "out.tif",
            "-t",
            str(workspace / "transforms.json"),
        )
        assert exit_code == 1

    def test_no_overlap(self, workspace: Path, make_translation):
        path = workspace / "apart.json"
        save_calibrations(
            [
                Calibration(name="a", transform=CompositeTransform()),
                Calibration(name="b", transform=CompositeTransform([make_translation(500.0, 0.0)])),
            ],
            path,
        )
        exit_code = run_main(
            workspace, "apply-split", "-i", str(workspace / "input.tif"), "-o", "out.tif", "-t", str(path)
        )
        assert exit_code == 1

    def test_invalid_config(self, workspace: Path):
        (workspace / "config.yaml").write_text("render:\n  mesh_resolution: 0\n", encoding="utf-8")
        exit_code = run_main(
            workspace,
            "apply-split",
            "-i",
            str(workspace / "input.tif"),
            "-o",
            "out.tif",
            "-t",
            str(workspace / "transforms.json"),
        )
        assert exit_code == 1

    def test_keyboard_interrupt(self, workspace: Path):
        with patch("lenscorrect.cli.main.run", side_effect=KeyboardInterrupt):
            exit_code = run_main(
                workspace,
                "apply-split",
                "-i",
                str(workspace / "input.tif"),
                "-o",
                "out.tif",
                "-t",
                str(workspace / "transforms.json"),
            )
        assert exit_code == 130
