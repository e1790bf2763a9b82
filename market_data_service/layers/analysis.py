"""
Layer 4 – 技术分析层
在标准 K 线序列上计算技术指标：SMA、EMA、RSI、MACD、BOLL
"""

import logging
from typing import Optional

import pandas as pd

from market_data_service.models.market import CandleSeries, IndicatorSnapshot

logger = logging.getLogger(__name__)

# 最长回看周期（EMA26），不足则不计算
MIN_CANDLES = 26


class AnalysisLayer:
    """技术分析层：纯计算，无 I/O"""

    # ── 均线 ──────────────────────────────────────────────

    @staticmethod
    def sma(closes: pd.Series, period: int) -> Optional[float]:
        """最近 period 个收盘价的算术平均"""
        if len(closes) < period:
            return None
        return float(closes.iloc[-period:].mean())

    @staticmethod
    def ema_series(closes: pd.Series, period: int) -> pd.Series:
        """以首个收盘价为种子的 EMA，k = 2 / (period + 1)"""
        return closes.ewm(span=period, adjust=False).mean()

    # ── RSI ───────────────────────────────────────────────

    @staticmethod
    def rsi(closes: pd.Series, period: int = 14) -> float:
        """最近 period 个涨跌幅的简单平均 RSI，无下跌时为 100"""
        if len(closes) < period + 1:
            return 50.0
        delta = closes.diff().iloc[-period:]
        avg_gain = float(delta.clip(lower=0).sum()) / period
        avg_loss = float((-delta.clip(upper=0)).sum()) / period
        if avg_loss == 0:
            return 100.0
        return 100 - 100 / (1 + avg_gain / avg_loss)

    # ── MACD ──────────────────────────────────────────────

    def macd(
        self, closes: pd.Series, fast: int = 12, slow: int = 26, signal: int = 9
    ) -> tuple:
        """返回 (macd_line, signal_line, histogram)"""
        ema_fast = self.ema_series(closes, fast)
        ema_slow = self.ema_series(closes, slow)
        diff = ema_fast - ema_slow
        macd_line = float(diff.iloc[-1])
        # 信号线：最近 signal 个差值重新做 EMA
        signal_series = self.ema_series(diff.iloc[-signal:].reset_index(drop=True), signal)
        macd_signal = float(signal_series.iloc[-1])
        return macd_line, macd_signal, macd_line - macd_signal

    # ── 布林带 ────────────────────────────────────────────

    @staticmethod
    def bollinger(closes: pd.Series, period: int = 20, std_dev: float = 2.0) -> tuple:
        """返回 (upper, middle, lower)，标准差为总体标准差"""
        window = closes.iloc[-period:]
        middle = float(window.mean())
        std = float(window.std(ddof=0))
        return middle + std_dev * std, middle, middle - std_dev * std

    # ── 全量指标 ──────────────────────────────────────────

    def compute(
        self, series: CandleSeries, provenance: str = "series"
    ) -> Optional[IndicatorSnapshot]:
        """
        计算指标快照

        Args:
            series: 升序 K 线序列
            provenance: 来源标记，说明快照由哪条计算路径产生

        Returns:
            序列长度不足 26 时返回 None（数据不足，不是错误）
        """
        if len(series) < MIN_CANDLES:
            logger.debug(f"K 线数量不足（{len(series)} < {MIN_CANDLES}），跳过指标计算")
            return None

        closes = pd.Series([c.close for c in series], dtype="float64")
        macd_line, macd_signal, macd_hist = self.macd(closes)
        upper, middle, lower = self.bollinger(closes)

        return IndicatorSnapshot(
            sma20=self.sma(closes, 20),
            sma50=self.sma(closes, 50),
            ema12=float(self.ema_series(closes, 12).iloc[-1]),
            ema26=float(self.ema_series(closes, 26).iloc[-1]),
            rsi14=self.rsi(closes, 14),
            macd_line=macd_line,
            macd_signal=macd_signal,
            macd_histogram=macd_hist,
            upper_band=upper,
            lower_band=lower,
            middle_band=middle,
            current_price=float(closes.iloc[-1]),
            provenance=provenance,
        )
