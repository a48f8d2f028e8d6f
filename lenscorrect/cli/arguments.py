"""Command-line argument parsing."""

import argparse
from typing import Optional, Sequence

INTERPOLATION_CHOICES = ("nearest", "bilinear", "bicubic")


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-o", "--output", required=True, help="出力ファイル（TIFF）")
    parser.add_argument("-t", "--transform", required=True, help="変換ファイル（JSON）")
    parser.add_argument(
        "-r",
        "--num-triangles",
        type=int,
        dest="num_triangles",
        help="メッシュの幅方向の三角形数（デフォルト: 設定ファイルの render.mesh_resolution）",
    )
    parser.add_argument("-a", "--align", action="store_true", help="SIFTによる位置合わせ補正を有効にする")
    parser.add_argument("--interpolation", choices=INTERPOLATION_CHOICES, help="補間方法")
    parser.add_argument(
        "--export-transforms",
        dest="export_transforms",
        help="描画に使用した変換（原点移動・位置合わせ補正を含む）の保存先",
    )


def build_parser() -> argparse.ArgumentParser:
    """引数パーサーを作成する"""
    parser = argparse.ArgumentParser(
        prog="lens-correct",
        description="レンズ補正 - キャリブレーション変換による顕微鏡画像の歪み補正",
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config.yaml",
        help="設定ファイルのパス（デフォルト: config.yaml）",
    )
    parser.add_argument("--debug", action="store_true", help="デバッグモードで実行（詳細ログ）")

    subparsers = parser.add_subparsers(dest="command")

    split_parser = subparsers.add_parser(
        "apply-split",
        help="1つの画像を全ての変換で描画し、チャンネルとして並べる",
    )
    split_parser.add_argument("-i", "--input", required=True, help="入力画像")
    _add_common_arguments(split_parser)

    channels_parser = subparsers.add_parser(
        "apply-channels",
        help="チャンネルごとの画像を対応する変換で描画して結合する",
    )
    channels_parser.add_argument("-i", "--input", required=True, help="入力画像（カンマ区切りでチャンネル順）")
    _add_common_arguments(channels_parser)
    channels_parser.add_argument("-c", "--crop", type=int, help="四辺から除く幅（画素）")

    return parser


def parse_arguments(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """コマンドライン引数をパースする

    Args:
        argv: 引数リスト（省略時は sys.argv）

    Returns:
        パース済み引数
    """
    return build_parser().parse_args(argv)
