from datetime import date, datetime

import pytest

from config.settings import AnalyticsConfig
from deal_analytics.data.models import Deal, DealEvent
from deal_analytics.data.mock_repository import MockDealEventRepository


@pytest.fixture
def analytics_config():
    """测试用分析配置（不读取配置文件）"""
    return AnalyticsConfig(
        default_range_days=30,
        top_n=5,
        refresh_time="08:00",
        backfill_time="02:00",
        backfill_lookback_days=1
    )


@pytest.fixture
def deals():
    return [
        Deal(id=1, title='Chocolate Pastry', product_id=101, threshold_amount=499, deal_price=1.0, priority=1),
        Deal(id=2, title='Red Velvet Cupcake', product_id=102, threshold_amount=599, deal_price=1.0, priority=2),
        Deal(id=3, title='Butterscotch Slice', product_id=103, threshold_amount=999, deal_price=1.0, priority=3),
    ]


@pytest.fixture
def repository(deals):
    """带少量订单和埋点的内存仓库"""
    repo = MockDealEventRepository()
    for deal in deals:
        repo.add_deal(deal)

    # 订单 1：解锁促销1，购买促销1
    repo.add_order(1, datetime(2024, 3, 1, 19, 0), [
        {'order_item_id': 11, 'product_id': 900, 'price': 520.0, 'quantity': 1},
        {'order_item_id': 12, 'product_id': 101, 'price': 1.0, 'quantity': 1},
    ], customer_id=7)
    # 订单 2：购买促销1和促销2
    repo.add_order(2, datetime(2024, 3, 2, 20, 0), [
        {'order_item_id': 21, 'product_id': 900, 'price': 700.0, 'quantity': 1},
        {'order_item_id': 22, 'product_id': 101, 'price': 1.0, 'quantity': 1},
        {'order_item_id': 23, 'product_id': 102, 'price': 1.005, 'quantity': 2, 'item_total': 2.01},
    ], customer_id=8)
    # 订单 3：未使用促销
    repo.add_order(3, datetime(2024, 3, 3, 12, 0), [
        {'order_item_id': 31, 'product_id': 900, 'price': 300.0, 'quantity': 1},
    ], customer_id=9)

    for day, deal_id in [(1, 1), (2, 1), (2, 2), (3, 1)]:
        repo.add_event(DealEvent(deal_id=deal_id, event_type='view', created_at=datetime(2024, 3, day, 10)))
    repo.add_event(DealEvent(deal_id=1, event_type='add_to_cart', cart_value=520.0,
                             created_at=datetime(2024, 3, 1, 18)))
    return repo


@pytest.fixture
def march_range():
    return date(2024, 3, 1), date(2024, 3, 7)
