#!/usr/bin/env python
"""
レンズ補正ツール - メインエントリーポイント

キャリブレーション変換（レンズ歪み補正チェーン）で顕微鏡画像を描画し直し、
共通の描画範囲に揃えて保存します。
"""

import sys

from lenscorrect.cli.main import main

if __name__ == "__main__":
    sys.exit(main())
