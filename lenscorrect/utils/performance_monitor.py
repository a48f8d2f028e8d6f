"""Timing of pipeline phases."""

from contextlib import contextmanager
import logging
import threading
import time
from typing import Optional

logger = logging.getLogger(__name__)


class PerformanceMonitor:
    """処理時間の計測

    フェーズや描画単位ごとに実行回数と処理時間（合計・最小・最大）を集計します。
    複数スレッドから同時に measure() を呼び出せます。
    """

    def __init__(self):
        self.metrics: dict[str, dict] = {}
        self._lock = threading.Lock()

    @contextmanager
    def measure(self, operation_name: str):
        """ブロックの処理時間を operation_name に加算する

        Example:
            with monitor.measure("render"):
                pipeline.render(...)
        """
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record(operation_name, time.perf_counter() - start)

    def record(self, operation_name: str, elapsed: float) -> None:
        with self._lock:
            entry = self.metrics.setdefault(
                operation_name,
                {"total_time": 0.0, "count": 0, "min_time": float("inf"), "max_time": 0.0},
            )
            entry["total_time"] += elapsed
            entry["count"] += 1
            entry["min_time"] = min(entry["min_time"], elapsed)
            entry["max_time"] = max(entry["max_time"], elapsed)

    def get_metrics(self, operation_name: Optional[str] = None) -> dict:
        """集計値を返す（operation_name 省略時は全操作）"""
        with self._lock:
            if operation_name:
                return dict(self.metrics.get(operation_name, {}))
            return {name: dict(entry) for name, entry in self.metrics.items()}

    def get_summary(self) -> dict:
        """平均処理時間を含むサマリー"""
        summary = {}
        for name, entry in self.get_metrics().items():
            if entry["count"] > 0:
                summary[name] = {**entry, "avg_time": entry["total_time"] / entry["count"]}
        return summary

    def log_summary(self, logger_instance: Optional[logging.Logger] = None) -> None:
        log = logger_instance or logger
        summary = self.get_summary()
        if not summary:
            log.info("パフォーマンスメトリクスがありません")
            return

        log.info("=" * 80)
        log.info("パフォーマンスサマリー:")
        for name, stats in summary.items():
            log.info(
                f"  {name}: {stats['count']}回, 合計 {stats['total_time']:.3f}秒, "
                f"平均 {stats['avg_time']:.3f}秒 (最小 {stats['min_time']:.3f}秒 / 最大 {stats['max_time']:.3f}秒)"
            )
        log.info("=" * 80)

    def reset(self) -> None:
        with self._lock:
            self.metrics.clear()
