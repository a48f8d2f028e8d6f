"""テスト向けの軽量な Fake 実装群。"""

from __future__ import annotations

from collections.abc import Callable, Sequence
import threading

import numpy as np

from lenscorrect.align.features import PointMatch


def make_shift_matches(
    dx: float,
    dy: float,
    num: int = 30,
    width: float = 100.0,
    height: float = 100.0,
    seed: int = 0,
) -> list[PointMatch]:
    """p2 = p1 + (dx, dy) となる対応点を作る"""
    rng = np.random.default_rng(seed)
    points = rng.uniform(0, [width, height], size=(num, 2))
    return [PointMatch(p1=(float(x), float(y)), p2=(float(x + dx), float(y + dy))) for x, y in points]


class FakeFeatureMatcher:
    """固定の対応点（または responder の結果）を返すマッチャー

    呼び出し回数は calls に記録されます。
    """

    def __init__(
        self,
        matches: Sequence[PointMatch] = (),
        responder: Callable[[np.ndarray, np.ndarray], list[PointMatch]] | None = None,
    ):
        self.matches = list(matches)
        self.responder = responder
        self.calls = 0
        self._lock = threading.Lock()

    def match(self, subject: np.ndarray, reference: np.ndarray) -> list[PointMatch]:
        with self._lock:
            self.calls += 1
        if self.responder is not None:
            return self.responder(subject, reference)
        return list(self.matches)
