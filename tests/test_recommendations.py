import pytest

from deal_analytics.analytics.recommendations import RecommendationEngine
from deal_analytics.data.models import Deal, DealPerformanceRecord


def performance(deal_id, redemptions, revenue, conversion_rate):
    return DealPerformanceRecord(
        deal_id=deal_id, deal_title=f'Deal {deal_id}', redemptions=redemptions,
        revenue=revenue, conversion_rate=conversion_rate, avg_cart_value=0.0
    )


class TestRecommendationEngine:
    """测试规则驱动的优化建议"""

    @pytest.fixture
    def engine(self):
        return RecommendationEngine()

    @pytest.fixture
    def two_deals(self):
        return [
            Deal(id=1, title='Chocolate Pastry', product_id=101, threshold_amount=499, deal_price=1.0, priority=1),
            Deal(id=2, title='Red Velvet Cupcake', product_id=102, threshold_amount=599, deal_price=1.0, priority=2),
        ]

    def test_threshold_rule_example(self, engine, two_deals):
        """转化率低于15%且门槛高于500时建议下调门槛"""
        perf = [performance(1, 45, 45, 18.5), performance(2, 10, 10, 8.0)]
        recommendations = engine.generate(two_deals, perf)
        by_id = {r.id: r for r in recommendations}

        assert 'threshold-1' not in by_id
        threshold = by_id['threshold-2']
        assert threshold.type == 'threshold'
        assert threshold.priority == 'high'
        assert threshold.deal_id == 2
        assert threshold.current_value == 599
        assert threshold.recommended_value == pytest.approx(509.15)
        assert threshold.expected_improvement == pytest.approx(10.5)
        assert '₹509' in threshold.action

    def test_rule_order_and_priority_sort(self, engine, two_deals):
        perf = [performance(1, 45, 45, 18.5), performance(2, 10, 10, 8.0)]
        ids = [r.id for r in engine.generate(two_deals, perf)]

        assert ids == ['threshold-2', 'timing-peak', 'price-1', 'threshold-distribution']

    def test_price_rule(self, engine, two_deals):
        """核销多但单次收入接近促销价时建议小幅提价"""
        perf = [performance(1, 21, 21.0, 20.0)]
        price = {r.id: r for r in engine.generate(two_deals, perf)}['price-1']

        assert price.priority == 'medium'
        assert price.recommended_value == pytest.approx(1.1)
        assert price.expected_improvement == 12

    def test_price_rule_requires_volume(self, engine, two_deals):
        perf = [performance(1, 20, 20.0, 20.0)]
        assert 'price-1' not in {r.id for r in engine.generate(two_deals, perf)}

    def test_priority_rule(self, engine):
        deals = [Deal(id=5, title='Muffin', product_id=104, threshold_amount=450, deal_price=1.0, priority=5)]
        perf = [performance(5, 31, 100.0, 20.0)]
        rec = {r.id: r for r in engine.generate(deals, perf)}['priority-5']

        assert rec.type == 'priority'
        assert rec.current_value == 5
        assert rec.recommended_value == 1
        assert rec.expected_improvement == 25

    def test_global_rules_without_performance(self, engine, two_deals):
        """没有表现数据的促销不参与逐个规则，但全局建议始终生成"""
        recommendations = engine.generate(two_deals, [])

        assert [r.id for r in recommendations] == ['timing-peak', 'threshold-distribution']
        timing = recommendations[0]
        assert timing.priority == 'high'
        assert timing.expected_improvement == 35
        assert '18:00' in timing.description

    def test_no_distribution_rule_with_enough_low_thresholds(self, engine):
        deals = [
            Deal(id=1, title='A', product_id=1, threshold_amount=199, deal_price=1.0),
            Deal(id=2, title='B', product_id=2, threshold_amount=299, deal_price=1.0),
        ]
        assert [r.id for r in engine.generate(deals, [])] == ['timing-peak']

    def test_empty_catalog(self, engine):
        recommendations = engine.generate([], [])
        assert [r.id for r in recommendations] == ['timing-peak', 'threshold-distribution']
