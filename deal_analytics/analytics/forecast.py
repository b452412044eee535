import logging
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple

import numpy as np

from ..data.models import Deal, DealPerformanceRecord, ForecastPoint, PredictiveData, TimeSeriesPoint

logger = logging.getLogger(__name__)

WINDOW_SIZE = 7
HORIZON_DAYS = 7
# 收入趋势相对核销趋势的放大系数（没有独立的收入斜率）
REVENUE_TREND_FACTOR = 50
TREND_TOLERANCE = 0.1
RECOMMENDED_THRESHOLD_FACTOR = 0.9


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def horizon_confidence(day: int) -> int:
    """置信度每往后一天减5，最低50"""
    return max(50, 95 - day * 5)


def linear_trend(values: List[float]) -> float:
    """离散斜率 (末值-首值)/窗口长度"""
    if len(values) < 2:
        return 0.0
    return (values[-1] - values[0]) / len(values)


def trend_direction(trend: float) -> str:
    if trend > TREND_TOLERANCE:
        return 'up'
    if trend < -TREND_TOLERANCE:
        return 'down'
    return 'stable'


class DealForecastEngine:
    """基于线性趋势的短期核销/收入预测"""

    def __init__(self, window_size: int = WINDOW_SIZE, horizon: int = HORIZON_DAYS):
        self.window_size = window_size
        self.horizon = horizon

    def forecast(
            self,
            time_series: List[TimeSeriesPoint],
            deals: List[Deal],
            performance: Optional[List[DealPerformanceRecord]] = None
    ) -> PredictiveData:
        """预测未来 horizon 天并给出最优门槛"""
        if not deals or not time_series:
            logger.info("No active deals or history, returning empty forecast")
            return PredictiveData()

        window = time_series[-self.window_size:]
        redemptions = [float(point.redemptions) for point in window]
        revenue = [float(point.revenue) for point in window]

        avg_redemptions = float(np.mean(redemptions))
        avg_revenue = float(np.mean(revenue))
        trend = linear_trend(redemptions)
        last_date = window[-1].date

        forecast_redemptions = []
        forecast_revenue = []
        for day in range(1, self.horizon + 1):
            forecast_date = last_date + timedelta(days=day)
            confidence = horizon_confidence(day)
            forecast_redemptions.append(ForecastPoint(
                date=forecast_date,
                predicted=round_half_up(max(0.0, avg_redemptions + trend * day)),
                confidence=confidence
            ))
            forecast_revenue.append(ForecastPoint(
                date=forecast_date,
                predicted=round_half_up(max(0.0, avg_revenue + trend * REVENUE_TREND_FACTOR * day)),
                confidence=confidence
            ))

        optimal, recommended = self.optimal_threshold(deals, performance or [])
        direction = trend_direction(trend)
        logger.info(f"Forecast trend={trend:.3f} ({direction}), optimal threshold={optimal}")

        return PredictiveData(
            forecast_redemptions=forecast_redemptions,
            forecast_revenue=forecast_revenue,
            optimal_threshold=optimal,
            recommended_threshold=recommended,
            trend_direction=direction,
            confidence=forecast_redemptions[0].confidence if forecast_redemptions else 0
        )

    def optimal_threshold(
            self,
            deals: List[Deal],
            performance: List[DealPerformanceRecord]
    ) -> Tuple[float, float]:
        """使 (核销*转化率)/门槛 最大的门槛，以及下调10%的建议门槛"""
        by_deal = {record.deal_id: record for record in performance}
        best_threshold = 0.0
        best_efficiency = None

        for deal in deals:
            if not deal.is_active or deal.threshold_amount <= 0:
                continue
            record = by_deal.get(deal.id)
            redemptions = record.redemptions if record else 0
            conversion_rate = record.conversion_rate if record else 0.0
            efficiency = (redemptions * conversion_rate) / deal.threshold_amount
            # 严格大于：并列时保留优先级靠前的促销
            if best_efficiency is None or efficiency > best_efficiency:
                best_efficiency = efficiency
                best_threshold = float(deal.threshold_amount)

        return best_threshold, best_threshold * RECOMMENDED_THRESHOLD_FACTOR
