from datetime import date, datetime

import pytest

from deal_analytics.analytics.backfill import BackfillProcessor, match_deal
from deal_analytics.data.models import Deal, DealEvent
from deal_analytics.data.mock_repository import MockDealEventRepository
from deal_analytics.exceptions import SchemaNotInitialized, ValidationError


def purchase_events(repo):
    return [e for e in repo.events if e.event_type == 'purchase']


class TestBackfillProcessor:
    """测试历史订单回填"""

    def test_dry_run_previews_without_writing(self, repository):
        """3 个匹配商品行、2 个促销：预览不写入"""
        result = BackfillProcessor(repository).run(dry_run=True)

        assert result.dry_run is True
        assert result.processed == 3
        assert result.deals_found == 2
        assert result.events_created == 3
        assert purchase_events(repository) == []

        # 预览之后正式执行仍然创建 3 条
        assert BackfillProcessor(repository).run().events_created == 3

    def test_idempotent(self, repository):
        """重复执行不会重复计数"""
        processor = BackfillProcessor(repository)

        first = processor.run()
        second = processor.run()
        preview = processor.run(dry_run=True)

        assert first.events_created == 3
        assert second.events_created == 0
        assert preview.events_created == 0
        assert second.deals_found == 2
        assert len(purchase_events(repository)) == 3

    def test_live_purchase_is_not_counted_twice(self, repository):
        """实时埋点记录过的 (促销, 订单) 不再回填"""
        repository.record_event(DealEvent(deal_id=1, event_type='purchase', order_id=1, revenue=1.0,
                                          created_at=datetime(2024, 3, 1, 19, 5)))

        result = BackfillProcessor(repository).run(date(2024, 3, 1), date(2024, 3, 1))

        assert result.events_created == 0
        assert len([e for e in purchase_events(repository) if (e.deal_id, e.order_id) == (1, 1)]) == 1

        # 其他订单不受影响
        assert BackfillProcessor(repository).run().events_created == 2

    def test_deals_processed_summary(self, repository):
        result = BackfillProcessor(repository).run(dry_run=True)
        summary = {d['deal_id']: d for d in result.deals_processed}

        assert summary[1]['redemptions'] == 2
        assert summary[1]['revenue'] == pytest.approx(2.0)
        assert summary[2]['redemptions'] == 2
        assert summary[2]['revenue'] == pytest.approx(2.01)

    def test_created_events_carry_order_details(self, repository):
        BackfillProcessor(repository).run()
        event = next(e for e in purchase_events(repository) if e.order_id == 1)

        assert event.deal_id == 1
        assert event.order_item_id == 12
        assert event.revenue == 1.0
        assert event.cart_value == pytest.approx(521.0)
        assert event.customer_id == 7
        assert event.created_at == datetime(2024, 3, 1, 19, 0)

    def test_date_range(self, repository):
        result = BackfillProcessor(repository).run(date(2024, 3, 1), date(2024, 3, 1))

        assert result.processed == 1
        assert result.events_created == 1
        assert result.deals_found == 1

    def test_empty_range(self, repository):
        result = BackfillProcessor(repository).run(date(2025, 1, 1), date(2025, 1, 31))

        assert result.processed == 0
        assert result.events_created == 0
        assert result.deals_processed == []

    def test_inverted_range(self, repository):
        with pytest.raises(ValidationError):
            BackfillProcessor(repository).run(date(2024, 3, 5), date(2024, 3, 1))

    def test_schema_not_initialized(self, repository):
        """分析表不存在时返回专门的错误"""
        repository.schema_initialized = False

        with pytest.raises(SchemaNotInitialized) as exc_info:
            BackfillProcessor(repository).run(dry_run=True)
        assert exc_info.value.code == 'schema_not_initialized'

    def test_price_must_match(self):
        repo = MockDealEventRepository()
        repo.add_deal(Deal(id=1, title='Pastry', product_id=101, threshold_amount=499, deal_price=1.0))
        repo.add_order(1, datetime(2024, 3, 1), [
            {'order_item_id': 1, 'product_id': 101, 'price': 89.0, 'quantity': 1},
            {'order_item_id': 2, 'product_id': 101, 'price': 1.02, 'quantity': 1},
        ])

        result = BackfillProcessor(repo).run()
        assert result.processed == 1
        assert result.events_created == 0
        assert result.deals_found == 0


class TestMatchDeal:
    """测试商品行匹配"""

    def test_first_deal_in_priority_order_wins(self):
        deals = [
            Deal(id=2, title='High', product_id=101, threshold_amount=999, deal_price=1.0, priority=1),
            Deal(id=1, title='Low', product_id=101, threshold_amount=499, deal_price=1.0, priority=2),
        ]
        assert match_deal(deals, 101, 1.0).id == 2

    def test_price_tolerance(self):
        deals = [Deal(id=1, title='Pastry', product_id=101, threshold_amount=499, deal_price=1.0)]

        assert match_deal(deals, 101, 1.01) is not None
        assert match_deal(deals, 101, 0.99) is not None
        assert match_deal(deals, 101, 1.02) is None
        assert match_deal(deals, 102, 1.0) is None
