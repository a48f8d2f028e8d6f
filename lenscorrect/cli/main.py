"""レンズ補正ツールのエントリーポイント

キャリブレーション変換ファイルを読み込み、入力画像を各変換で描画して保存します。
"""

import argparse
import logging
from typing import Optional, Sequence

from lenscorrect.cli.arguments import build_parser
from lenscorrect.config import ConfigManager
from lenscorrect.errors import ImageReadError, LensCorrectError, NoOverlapError, TransformDecodeError
from lenscorrect.io import open_channels, open_image_stack, save_image_stack
from lenscorrect.pipeline import CorrectionPipeline, CorrectionResult
from lenscorrect.transform import TransformCodec
from lenscorrect.utils import setup_logging


def apply_overrides(config: ConfigManager, args: argparse.Namespace) -> None:
    """コマンドライン引数で設定値を上書きする"""
    if args.num_triangles is not None:
        config.set("render.mesh_resolution", args.num_triangles)
    if args.interpolation is not None:
        config.set("render.interpolation", args.interpolation)
    if args.align:
        config.set("alignment.enabled", True)
    if getattr(args, "crop", None) is not None:
        config.set("render.crop_width", args.crop)
    if args.debug:
        config.set("output.debug_mode", True)


def run(args: argparse.Namespace, config: ConfigManager, logger: logging.Logger) -> int:
    """サブコマンドを実行する"""
    codec = TransformCodec()
    codec.registry.check_complete()

    calibrations = codec.load(args.transform)
    if not calibrations:
        logger.error(f"No transforms found in {args.transform}")
        return 1

    pipeline = CorrectionPipeline(config, logger)
    result: CorrectionResult
    if args.command == "apply-split":
        stack = open_image_stack(args.input)
        result = pipeline.apply_split(stack, calibrations)
    else:
        stacks = open_channels(args.input.split(","))
        if not stacks:
            logger.error("入力画像が指定されていません")
            return 1
        result = pipeline.apply_channels(stacks, calibrations)

    output_path = save_image_stack(args.output, result.stack)

    if args.export_transforms:
        codec.save(result.calibrations(), args.export_transforms)

    failed = [r for r in result.alignment if not r.succeeded]
    logger.info("=" * 80)
    logger.info("処理が正常に完了しました")
    logger.info(f"出力ファイル: {output_path.absolute()}")
    if failed:
        logger.warning(f"位置合わせできなかった画像: {[r.index for r in failed]}")
    logger.info("=" * 80)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """メイン処理"""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_usage()
        return 1

    # 初期ロギング設定（設定ファイル読み込み前）
    setup_logging(args.debug)
    logger = logging.getLogger(__name__)

    try:
        logger.info(f"設定ファイルを読み込んでいます: {args.config}")
        config = ConfigManager(args.config)
        apply_overrides(config, args)
        config.validate()

        # ロギングを再設定（出力ディレクトリを反映）
        setup_logging(config.get("output.debug_mode", False), config.get("output.directory", "output"))
        logger = logging.getLogger(__name__)

        return run(args, config, logger)

    except FileNotFoundError as e:
        logger.error(f"ファイルが見つかりません: {e}")
        return 1
    except TransformDecodeError as e:
        logger.error(f"変換ファイルの読み込みに失敗しました: {e}")
        return 1
    except ImageReadError as e:
        logger.error(f"画像を開けません: {e}")
        return 1
    except NoOverlapError as e:
        logger.error(f"共通の描画範囲がありません: {e}")
        return 1
    except LensCorrectError as e:
        logger.error(f"処理に失敗しました: {e}")
        return 1
    except ValueError as e:
        logger.error(f"設定エラー: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("処理が中断されました")
        return 130
    except Exception as e:
        logger.error(f"予期しないエラーが発生しました: {e}", exc_info=True)
        return 1
