"""Test cases for CLI arguments."""

from __future__ import annotations

import sys
from unittest.mock import patch

import pytest

from lenscorrect.cli.arguments import parse_arguments


def test_parse_arguments_default():
    """サブコマンドなしのパース"""
    test_args = ["script_name"]

    with patch.object(sys, "argv", test_args):
        args = parse_arguments()

        assert args.config == "config.yaml"
        assert args.debug is False
        assert args.command is None


def test_parse_arguments_apply_split():
    """apply-split サブコマンド"""
    args = parse_arguments(["apply-split", "-i", "in.tif", "-o", "out.tif", "-t", "transforms.json"])

    assert args.command == "apply-split"
    assert args.input == "in.tif"
    assert args.output == "out.tif"
    assert args.transform == "transforms.json"
    assert args.num_triangles is None
    assert args.align is False
    assert args.interpolation is None
    assert args.export_transforms is None


def test_parse_arguments_apply_channels():
    """apply-channels サブコマンドとクロップ幅"""
    args = parse_arguments(
        [
            "--debug",
            "--config",
            "custom.yaml",
            "apply-channels",
            "-i",
            "c1.tif,c2.tif",
            "-o",
            "out.tif",
            "-t",
            "t.json",
            "-c",
            "5",
            "-r",
            "64",
            "-a",
            "--interpolation",
            "bicubic",
            "--export-transforms",
            "used.json",
        ]
    )

    assert args.command == "apply-channels"
    assert args.config == "custom.yaml"
    assert args.debug is True
    assert args.input == "c1.tif,c2.tif"
    assert args.crop == 5
    assert args.num_triangles == 64
    assert args.align is True
    assert args.interpolation == "bicubic"
    assert args.export_transforms == "used.json"


def test_crop_only_for_apply_channels():
    """-c は apply-split では使えない"""
    with pytest.raises(SystemExit):
        parse_arguments(["apply-split", "-i", "a.tif", "-o", "b.tif", "-t", "t.json", "-c", "3"])


def test_invalid_interpolation():
    with pytest.raises(SystemExit):
        parse_arguments(["apply-split", "-i", "a.tif", "-o", "b.tif", "-t", "t.json", "--interpolation", "lanczos"])


def test_missing_required_arguments():
    """必須引数がない場合はエラー"""
    with pytest.raises(SystemExit):
        parse_arguments(["apply-split", "-i", "a.tif"])
