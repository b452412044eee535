from typing import List

from ..data.models import DealPerformanceRecord, TopDeal

REDEMPTION_WEIGHT = 0.4
REVENUE_WEIGHT = 0.3
CONVERSION_WEIGHT = 0.3


def calculate_score(record: DealPerformanceRecord) -> float:
    """综合得分 = 核销*0.4 + (收入/100)*0.3 + 转化率*0.3"""
    score = (
        record.redemptions * REDEMPTION_WEIGHT
        + (record.revenue / 100) * REVENUE_WEIGHT
        + record.conversion_rate * CONVERSION_WEIGHT
    )
    return round(score, 1)


def rank_deals(performance: List[DealPerformanceRecord], top_n: int = 5) -> List[TopDeal]:
    """按得分降序排列，同分保持输入顺序"""
    ranked = [
        TopDeal(
            deal_id=record.deal_id,
            deal_title=record.deal_title,
            score=calculate_score(record),
            redemptions=record.redemptions,
            revenue=record.revenue
        )
        for record in performance
    ]
    ranked.sort(key=lambda deal: deal.score, reverse=True)
    return ranked[:max(top_n, 0)]
