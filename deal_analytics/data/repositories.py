import logging
from typing import List, Optional, Dict, Any, Iterable, Set, Tuple
from datetime import date, timedelta
import pandas as pd

from .connectors import ClickHouseConnector
from .models import Deal, DealEvent, PurchaseEvent

logger = logging.getLogger(__name__)

ANALYTICS_TABLE = 'deal_analytics'

ORDER_COLUMNS = ['order_id', 'customer_id', 'total_amount', 'subtotal', 'created_at']
ORDER_LINE_COLUMNS = [
    'order_id', 'order_item_id', 'customer_id', 'product_id', 'price',
    'quantity', 'item_total', 'subtotal', 'created_at'
]
EVENT_COLUMNS = [
    'deal_id', 'event_type', 'customer_id', 'order_id', 'order_item_id',
    'cart_value', 'revenue', 'quantity', 'created_at'
]


def ensure_columns(df: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
    """保证空结果也带有完整列"""
    if df is None or df.empty:
        return pd.DataFrame(columns=columns)
    return df.reindex(columns=columns)


def date_conditions(
        column: str,
        date_from: Optional[date],
        date_to: Optional[date],
        params: Dict[str, Any]
) -> List[str]:
    """构造闭区间日期过滤条件（按自然日）"""
    conditions = []
    if date_from:
        conditions.append(f"{column} >= {{date_from:Date}}")
        params['date_from'] = date_from
    if date_to:
        conditions.append(f"{column} < {{date_to_exclusive:Date}}")
        params['date_to_exclusive'] = date_to + timedelta(days=1)
    return conditions


class BaseRepository:
    """基础数据仓库类"""

    def __init__(self, connector: Optional[ClickHouseConnector] = None):
        self.db = connector or ClickHouseConnector()


class DealEventRepository(BaseRepository):
    """促销事件数据仓库（订单、促销配置、埋点事件）"""

    def has_analytics_schema(self) -> bool:
        """分析表是否已创建"""
        return self.db.table_exists(ANALYTICS_TABLE)

    def list_active_deals(self) -> List[Deal]:
        """获取所有启用的促销"""
        query = """
        SELECT
            id,
            deal_title,
            product_id,
            variant_id,
            threshold_amount,
            deal_price,
            max_quantity_per_order,
            priority,
            is_active,
            description,
            created_at,
            updated_at
        FROM one_rupee_deals
        WHERE is_active = 1
        ORDER BY priority ASC, threshold_amount ASC, id ASC
        """

        deals = []
        for row in self.db.execute(query):
            (deal_id, title, product_id, variant_id, threshold, price,
             max_qty, priority, is_active, description, created_at, updated_at) = row
            deals.append(Deal(
                id=int(deal_id),
                title=title,
                product_id=int(product_id),
                variant_id=variant_id,
                threshold_amount=float(threshold),
                deal_price=float(price),
                max_quantity_per_order=int(max_qty or 1),
                priority=int(priority or 0),
                is_active=bool(is_active),
                description=description,
                created_at=created_at,
                updated_at=updated_at
            ))
        return deals

    def deal_exists(self, deal_id: int) -> bool:
        rows = self.db.execute(
            "SELECT count() FROM one_rupee_deals WHERE id = {deal_id:UInt64}",
            {'deal_id': deal_id}
        )
        return bool(rows and rows[0][0])

    def list_orders(self, date_from: Optional[date], date_to: Optional[date]) -> pd.DataFrame:
        """获取区间内订单"""
        params: Dict[str, Any] = {}
        conditions = date_conditions('created_at', date_from, date_to, params)
        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ''

        query = f"""
        SELECT
            id AS order_id,
            customer_id,
            total_amount,
            subtotal,
            created_at
        FROM orders
        {where_clause}
        ORDER BY created_at ASC
        """

        return ensure_columns(self.db.execute_df(query, params), ORDER_COLUMNS)

    def list_order_lines(self, date_from: Optional[date], date_to: Optional[date]) -> pd.DataFrame:
        """获取区间内订单明细"""
        params: Dict[str, Any] = {}
        conditions = date_conditions('o.created_at', date_from, date_to, params)
        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ''

        query = f"""
        SELECT
            o.id AS order_id,
            oi.id AS order_item_id,
            o.customer_id AS customer_id,
            oi.product_id AS product_id,
            oi.price AS price,
            oi.quantity AS quantity,
            oi.total AS item_total,
            o.subtotal AS subtotal,
            o.created_at AS created_at
        FROM orders o
        INNER JOIN order_items oi ON o.id = oi.order_id
        {where_clause}
        ORDER BY o.created_at ASC, oi.id ASC
        """

        return ensure_columns(self.db.execute_df(query, params), ORDER_LINE_COLUMNS)

    def list_deal_events(
            self,
            date_from: Optional[date],
            date_to: Optional[date],
            event_type: Optional[str] = None
    ) -> pd.DataFrame:
        """获取区间内埋点事件"""
        params: Dict[str, Any] = {}
        conditions = date_conditions('created_at', date_from, date_to, params)
        if event_type:
            conditions.append("event_type = {event_type:String}")
            params['event_type'] = event_type
        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ''

        query = f"""
        SELECT
            deal_id,
            event_type,
            customer_id,
            order_id,
            order_item_id,
            cart_value,
            revenue,
            quantity,
            created_at
        FROM {ANALYTICS_TABLE}
        {where_clause}
        ORDER BY created_at ASC
        """

        return ensure_columns(self.db.execute_df(query, params), EVENT_COLUMNS)

    def list_redemptions(self, date_from: Optional[date], date_to: Optional[date]) -> pd.DataFrame:
        """获取区间内核销事件"""
        return self.list_deal_events(date_from, date_to, event_type='purchase')

    def existing_purchase_keys(self, order_ids: Iterable[int]) -> Set[Tuple[int, int, Optional[int]]]:
        """已记录的核销键 (deal_id, order_id, order_item_id)；实时埋点的 order_item_id 为 None"""
        order_ids = sorted({int(o) for o in order_ids})
        if not order_ids:
            return set()

        query = f"""
        SELECT deal_id, order_id, order_item_id
        FROM {ANALYTICS_TABLE}
        WHERE event_type = 'purchase'
            AND order_id IN {{order_ids:Array(UInt64)}}
        """

        rows = self.db.execute(query, {'order_ids': order_ids})
        return {(int(d), int(o), None if i is None else int(i)) for d, o, i in rows}

    def insert_purchase_events(self, events: List[PurchaseEvent]) -> int:
        """写入核销事件"""
        return self._insert_events([e.to_event() for e in events])

    def record_event(self, event: DealEvent) -> None:
        """写入单条埋点事件"""
        self._insert_events([event])

    def _insert_events(self, events: List[DealEvent]) -> int:
        rows = [
            [getattr(event, column) for column in EVENT_COLUMNS]
            for event in events
        ]
        return self.db.insert_rows(ANALYTICS_TABLE, rows, column_names=EVENT_COLUMNS)

    def update_deal_priorities(self, priorities: Dict[int, int]) -> None:
        """批量更新促销优先级"""
        for deal_id, priority in priorities.items():
            self.db.command(
                "ALTER TABLE one_rupee_deals UPDATE priority = {priority:Int32}, updated_at = now() "
                "WHERE id = {deal_id:UInt64}",
                {'priority': int(priority), 'deal_id': int(deal_id)}
            )
        logger.info(f"Updated priorities for {len(priorities)} deals")
