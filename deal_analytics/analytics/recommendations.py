import logging
from typing import List

from ..data.models import Deal, DealPerformanceRecord, Recommendation

logger = logging.getLogger(__name__)

PRIORITY_ORDER = {'high': 0, 'medium': 1, 'low': 2}

LOW_CONVERSION_RATE = 15
HIGH_THRESHOLD = 500
LOW_THRESHOLD = 500
MIN_LOW_THRESHOLD_DEALS = 2


class RecommendationEngine:
    """规则驱动的促销优化建议生成器（每次刷新重新计算，不保存状态）"""

    def generate(self, deals: List[Deal], performance: List[DealPerformanceRecord]) -> List[Recommendation]:
        """逐个促销评估规则，再追加全局建议，按优先级排序"""
        by_deal = {record.deal_id: record for record in performance}
        recommendations: List[Recommendation] = []

        for deal in deals:
            record = by_deal.get(deal.id)
            if record is None:
                continue
            recommendations.extend(self._deal_rules(deal, record))

        recommendations.append(self._peak_hours())

        low_threshold_count = sum(
            1 for deal in deals if deal.is_active and deal.threshold_amount < LOW_THRESHOLD
        )
        if low_threshold_count < MIN_LOW_THRESHOLD_DEALS:
            recommendations.append(self._threshold_distribution())

        recommendations.sort(key=lambda r: PRIORITY_ORDER.get(r.priority, len(PRIORITY_ORDER)))
        logger.info(f"Generated {len(recommendations)} recommendations for {len(deals)} deals")
        return recommendations

    def _deal_rules(self, deal: Deal, record: DealPerformanceRecord) -> List[Recommendation]:
        results = []

        # 门槛过高
        if record.conversion_rate < LOW_CONVERSION_RATE and deal.threshold_amount > HIGH_THRESHOLD:
            new_threshold = deal.threshold_amount * 0.85
            improvement = (LOW_CONVERSION_RATE - record.conversion_rate) * 1.5
            results.append(Recommendation(
                id=f'threshold-{deal.id}',
                type='threshold',
                priority='high',
                title=f'Lower Threshold for "{deal.title}"',
                description=(
                    f'Current threshold (₹{deal.threshold_amount:g}) is limiting conversions. '
                    f'Lowering to ₹{new_threshold:.0f} could improve adoption.'
                ),
                impact=f'Expected {improvement:.1f}% increase in conversion rate',
                action=f'Reduce threshold from ₹{deal.threshold_amount:g} to ₹{new_threshold:.0f}',
                deal_id=deal.id,
                current_value=deal.threshold_amount,
                recommended_value=new_threshold,
                expected_improvement=improvement
            ))

        # 价格弹性
        if record.redemptions > 20 and record.revenue / record.redemptions < deal.deal_price * 1.2:
            new_price = deal.deal_price * 1.1
            results.append(Recommendation(
                id=f'price-{deal.id}',
                type='price',
                priority='medium',
                title=f'Optimize Price for "{deal.title}"',
                description=(
                    'High redemption volume suggests price elasticity. Slight increase could boost '
                    'revenue without significant drop in conversions.'
                ),
                impact='Potential 10-15% revenue increase',
                action=f'Increase deal price from ₹{deal.deal_price:.2f} to ₹{new_price:.2f}',
                deal_id=deal.id,
                current_value=deal.deal_price,
                recommended_value=new_price,
                expected_improvement=12
            ))

        # 高表现但排序靠后
        if record.redemptions > 30 and deal.priority > 3:
            results.append(Recommendation(
                id=f'priority-{deal.id}',
                type='priority',
                priority='medium',
                title=f'Increase Priority for "{deal.title}"',
                description='High-performing deal should be featured more prominently to maximize visibility.',
                impact='Expected 20-30% increase in visibility and redemptions',
                action='Move to priority position 1-3',
                deal_id=deal.id,
                current_value=deal.priority,
                recommended_value=1,
                expected_improvement=25
            ))

        return results

    def _peak_hours(self) -> Recommendation:
        return Recommendation(
            id='timing-peak',
            type='timing',
            priority='high',
            title='Schedule Deals During Peak Hours',
            description=(
                'Historical data shows highest engagement between 18:00 and 21:00. '
                'Schedule high-priority deals during these hours.'
            ),
            impact='Expected 30-40% increase in conversions',
            action='Set time-based activation for peak hours',
            expected_improvement=35
        )

    def _threshold_distribution(self) -> Recommendation:
        return Recommendation(
            id='threshold-distribution',
            type='threshold',
            priority='medium',
            title='Add More Low-Threshold Deals',
            description=(
                'Low-threshold deals (< ₹500) drive higher conversion rates. '
                'Consider adding 1-2 more entry-level deals.'
            ),
            impact='Expected 15-20% increase in overall deal adoption',
            action='Create new deals with thresholds below ₹500',
            expected_improvement=18
        )
