import logging
from datetime import date
from typing import Dict, List, Optional

import pandas as pd

from ..data.models import Deal, PurchaseEvent, BackfillResult
from ..exceptions import SchemaNotInitialized
from .aggregation import validate_range

logger = logging.getLogger(__name__)

PRICE_TOLERANCE = 0.01


def match_deal(deals: List[Deal], product_id: int, price: float) -> Optional[Deal]:
    """按 (商品, 价格±0.01) 匹配第一个促销，deals 需按优先级排好序"""
    for deal in deals:
        # 先四舍五入差值，避免 1.01 - 1.0 的浮点误差
        if deal.product_id == product_id and round(abs(price - deal.deal_price), 6) <= PRICE_TOLERANCE:
            return deal
    return None


def _optional_int(value) -> Optional[int]:
    return None if value is None or pd.isna(value) else int(value)


class BackfillProcessor:
    """历史订单回填：匹配促销商品行并写入核销事件（幂等）"""

    def __init__(self, repository):
        self.repository = repository

    def run(
            self,
            date_from: Optional[date] = None,
            date_to: Optional[date] = None,
            dry_run: bool = False
    ) -> BackfillResult:
        """扫描区间内订单；dry_run 只计算结果不写入"""
        if not self.repository.has_analytics_schema():
            raise SchemaNotInitialized()
        if date_from is not None and date_to is not None:
            validate_range(date_from, date_to)

        logger.info(f"Starting backfill from {date_from or 'beginning'} to {date_to or 'now'} (dry_run={dry_run})")

        deals = self.repository.list_active_deals()
        lines = self.repository.list_order_lines(date_from, date_to)
        if lines.empty:
            logger.info("No orders found for backfill")
            return BackfillResult(dry_run=dry_run)

        matched = self._match_lines(deals, lines)
        existing = self.repository.existing_purchase_keys({event.order_id for event in matched})

        pending: List[PurchaseEvent] = []
        seen = set(existing)
        for event in matched:
            # 实时埋点的核销没有商品行 id，视为覆盖该订单内此促销的所有行
            if event.key in seen or (event.deal_id, event.order_id, None) in seen:
                continue
            seen.add(event.key)
            pending.append(event)

        deals_processed: Dict[int, Dict[str, float]] = {}
        for event in matched:
            summary = deals_processed.setdefault(event.deal_id, {'deal_id': event.deal_id, 'redemptions': 0, 'revenue': 0.0})
            summary['redemptions'] += event.quantity
            summary['revenue'] += event.revenue

        if pending and not dry_run:
            self.repository.insert_purchase_events(pending)

        result = BackfillResult(
            processed=int(lines['order_id'].nunique()),
            deals_found=len(deals_processed),
            events_created=len(pending),
            deals_processed=list(deals_processed.values()),
            dry_run=dry_run
        )
        logger.info(
            f"Backfill finished: {result.processed} orders, {len(matched)} matched items, "
            f"{result.events_created} new events, {len(matched) - len(pending)} already reconciled"
        )
        return result

    def _match_lines(self, deals: List[Deal], lines: pd.DataFrame) -> List[PurchaseEvent]:
        matched = []
        for row in lines.itertuples(index=False):
            deal = match_deal(deals, int(row.product_id), float(row.price))
            if deal is None:
                continue
            matched.append(PurchaseEvent(
                deal_id=deal.id,
                order_id=int(row.order_id),
                order_item_id=int(row.order_item_id),
                price=float(row.price),
                quantity=int(row.quantity),
                revenue=float(row.item_total),
                created_at=pd.Timestamp(row.created_at).to_pydatetime(),
                customer_id=_optional_int(row.customer_id),
                cart_value=float(row.subtotal)
            ))
        return matched
