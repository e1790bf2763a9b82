"""
Layer 3 – 数据处理层
将各数据源的原始 K 线记录清洗为标准的升序 K 线序列
"""

import logging
from typing import Any, Dict, List

import numpy as np
import pandas as pd

from market_data_service.models.market import Candle, CandleSeries

logger = logging.getLogger(__name__)

_PRICE_COLS = ["open", "high", "low", "close"]


class ProcessingLayer:
    """数据处理层：清洗 + 排序 + 标准化"""

    def normalize_candles(self, records: List[Dict[str, Any]]) -> CandleSeries:
        """
        将原始 OHLCV 记录列表标准化为 K 线序列

        标准列：timestamp(ms), open, high, low, close, volume
        - 时间戳或收盘价无效的行被丢弃
        - 重复时间戳保留最后一条
        - 按时间戳升序（最早在前）
        """
        if not records:
            return ()

        df = pd.DataFrame(records)

        # 确保必要列存在
        for col in ["timestamp"] + _PRICE_COLS:
            if col not in df.columns:
                df[col] = np.nan
        if "volume" not in df.columns:
            df["volume"] = np.nan

        # 类型转换
        for col in ["timestamp", "volume"] + _PRICE_COLS:
            df[col] = pd.to_numeric(df[col], errors="coerce")
        df = df.replace([np.inf, -np.inf], np.nan)
        df = df.dropna(subset=["timestamp", "close"])

        # 开高低缺失时用收盘价补齐
        for col in ["open", "high", "low"]:
            df[col] = df[col].fillna(df["close"])

        # 删除重复时间戳，保留最新数据
        df["timestamp"] = df["timestamp"].astype("int64")
        df = df.drop_duplicates(subset=["timestamp"], keep="last")
        df = df.sort_values("timestamp").reset_index(drop=True)

        dropped = len(records) - len(df)
        if dropped:
            logger.debug(f"K 线清洗丢弃 {dropped} 条无效/重复记录")

        return tuple(
            Candle(
                timestamp=int(row.timestamp),
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=None if pd.isna(row.volume) else float(row.volume),
            )
            for row in df.itertuples(index=False)
        )

    def trim_to_window(self, series: CandleSeries, since_ms: int) -> CandleSeries:
        """只保留 since_ms 之后的 K 线"""
        return tuple(c for c in series if c.timestamp >= since_ms)
