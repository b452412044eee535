# deal_analytics/data/mock_repository.py
import pandas as pd
import numpy as np
from dataclasses import asdict, replace
from datetime import datetime, date, timedelta
from typing import Optional, List, Dict, Any, Iterable, Set, Tuple
import logging

from .models import Deal, DealEvent, PurchaseEvent
from .repositories import ORDER_COLUMNS, ORDER_LINE_COLUMNS, EVENT_COLUMNS

logger = logging.getLogger(__name__)


def _in_range(series: pd.Series, date_from: Optional[date], date_to: Optional[date]) -> pd.Series:
    """闭区间按自然日过滤"""
    mask = pd.Series(True, index=series.index)
    timestamps = pd.to_datetime(series)
    if date_from:
        mask &= timestamps >= pd.Timestamp(date_from)
    if date_to:
        mask &= timestamps < pd.Timestamp(date_to + timedelta(days=1))
    return mask


class MockDealEventRepository:
    """内存版促销事件仓库（用于开发、演示和测试）"""

    def __init__(self, schema_initialized: bool = True):
        logger.info("Using mock deal event repository (no database connection)")
        self.db = None  # 兼容接口
        self.schema_initialized = schema_initialized
        self.deals: List[Deal] = []
        self.orders: List[Dict[str, Any]] = []
        self.order_items: List[Dict[str, Any]] = []
        self.events: List[DealEvent] = []

    # 写入测试/演示数据

    def add_deal(self, deal: Deal) -> Deal:
        self.deals.append(deal)
        return deal

    def add_order(
            self,
            order_id: int,
            created_at: datetime,
            items: List[Dict[str, Any]],
            customer_id: Optional[int] = None,
            total_amount: Optional[float] = None,
            subtotal: Optional[float] = None
    ) -> None:
        """添加订单；items 为 {order_item_id, product_id, price, quantity[, item_total]}"""
        lines = []
        for item in items:
            quantity = int(item.get('quantity', 1))
            lines.append({
                'order_id': order_id,
                'order_item_id': item['order_item_id'],
                'product_id': item['product_id'],
                'price': float(item['price']),
                'quantity': quantity,
                'item_total': float(item.get('item_total', item['price'] * quantity))
            })

        computed_subtotal = sum(line['item_total'] for line in lines)
        self.orders.append({
            'order_id': order_id,
            'customer_id': customer_id,
            'total_amount': float(total_amount if total_amount is not None else computed_subtotal),
            'subtotal': float(subtotal if subtotal is not None else computed_subtotal),
            'created_at': created_at
        })
        self.order_items.extend(lines)

    def add_event(self, event: DealEvent) -> None:
        self.events.append(event)

    # 仓库接口

    def has_analytics_schema(self) -> bool:
        return self.schema_initialized

    def list_active_deals(self) -> List[Deal]:
        active = [deal for deal in self.deals if deal.is_active]
        return sorted(active, key=lambda d: (d.priority, d.threshold_amount))

    def deal_exists(self, deal_id: int) -> bool:
        return any(deal.id == deal_id for deal in self.deals)

    def list_orders(self, date_from: Optional[date], date_to: Optional[date]) -> pd.DataFrame:
        if not self.orders:
            return pd.DataFrame(columns=ORDER_COLUMNS)
        df = pd.DataFrame(self.orders, columns=ORDER_COLUMNS)
        return df[_in_range(df['created_at'], date_from, date_to)].reset_index(drop=True)

    def list_order_lines(self, date_from: Optional[date], date_to: Optional[date]) -> pd.DataFrame:
        if not self.order_items:
            return pd.DataFrame(columns=ORDER_LINE_COLUMNS)
        orders = pd.DataFrame(self.orders, columns=ORDER_COLUMNS)
        items = pd.DataFrame(self.order_items)
        df = items.merge(orders[['order_id', 'customer_id', 'subtotal', 'created_at']], on='order_id', how='inner')
        df = df[_in_range(df['created_at'], date_from, date_to)]
        return df.sort_values(['created_at', 'order_item_id'], kind='mergesort')[ORDER_LINE_COLUMNS].reset_index(drop=True)

    def list_deal_events(
            self,
            date_from: Optional[date],
            date_to: Optional[date],
            event_type: Optional[str] = None
    ) -> pd.DataFrame:
        self._require_schema()
        if not self.events:
            return pd.DataFrame(columns=EVENT_COLUMNS)
        df = pd.DataFrame([asdict(e) for e in self.events], columns=EVENT_COLUMNS)
        mask = _in_range(df['created_at'], date_from, date_to)
        if event_type:
            mask &= df['event_type'] == event_type
        return df[mask].reset_index(drop=True)

    def list_redemptions(self, date_from: Optional[date], date_to: Optional[date]) -> pd.DataFrame:
        return self.list_deal_events(date_from, date_to, event_type='purchase')

    def existing_purchase_keys(self, order_ids: Iterable[int]) -> Set[Tuple[int, int, Optional[int]]]:
        self._require_schema()
        wanted = set(order_ids)
        return {
            (e.deal_id, e.order_id, e.order_item_id)
            for e in self.events
            if e.event_type == 'purchase' and e.order_id in wanted
        }

    def insert_purchase_events(self, events: List[PurchaseEvent]) -> int:
        self._require_schema()
        self.events.extend(e.to_event() for e in events)
        return len(events)

    def record_event(self, event: DealEvent) -> None:
        self._require_schema()
        if event.created_at is None:
            event = replace(event, created_at=datetime.now())
        self.events.append(event)

    def update_deal_priorities(self, priorities: Dict[int, int]) -> None:
        for deal in self.deals:
            if deal.id in priorities:
                deal.priority = int(priorities[deal.id])
                deal.updated_at = datetime.now()

    def _require_schema(self):
        if not self.schema_initialized:
            raise RuntimeError("Table deal_analytics does not exist")

    def seed_demo_data(self, days: int = 30, end_date: Optional[date] = None, seed: int = 42) -> None:
        """生成模拟的促销、订单与埋点数据"""
        end_date = end_date or date.today()
        logger.info(f"Generating mock deal data for {days} days ending {end_date}")
        rng = np.random.default_rng(seed)

        catalog = [
            (1, 'Chocolate Pastry', 101, 499, 1.0, 1),
            (2, 'Red Velvet Cupcake', 102, 599, 1.0, 2),
            (3, 'Butterscotch Slice', 103, 999, 1.0, 3),
            (4, 'Blueberry Muffin', 104, 1499, 1.0, 5)
        ]
        for deal_id, title, product_id, threshold, price, priority in catalog:
            self.add_deal(Deal(
                id=deal_id, title=title, product_id=product_id,
                threshold_amount=threshold, deal_price=price, priority=priority,
                created_at=datetime.combine(end_date - timedelta(days=days + 10), datetime.min.time())
            ))

        order_id = 1000
        item_id = 5000
        for offset in range(days, -1, -1):
            day = end_date - timedelta(days=offset)
            for _ in range(int(rng.poisson(12))):
                order_id += 1
                created_at = datetime.combine(day, datetime.min.time()) + timedelta(
                    hours=int(rng.integers(9, 22)), minutes=int(rng.integers(0, 60))
                )
                cart_value = float(round(rng.uniform(200, 2200), 2))
                items = [{'order_item_id': item_id, 'product_id': 900, 'price': cart_value, 'quantity': 1}]
                item_id += 1

                unlocked = [d for d in self.deals if cart_value >= d.threshold_amount]
                for deal in unlocked:
                    self.add_event(DealEvent(deal_id=deal.id, event_type='view', cart_value=cart_value,
                                             created_at=created_at))
                    if rng.random() < 0.3:
                        self.add_event(DealEvent(deal_id=deal.id, event_type='add_to_cart',
                                                 cart_value=cart_value, created_at=created_at))
                if unlocked and rng.random() < 0.4:
                    deal = unlocked[int(rng.integers(0, len(unlocked)))]
                    items.append({'order_item_id': item_id, 'product_id': deal.product_id,
                                  'price': deal.deal_price, 'quantity': 1})
                    item_id += 1

                self.add_order(order_id, created_at, items, customer_id=int(rng.integers(1, 400)))
