import logging
import math
import pandas as pd
import numpy as np
from datetime import date
from typing import List, Optional, Tuple

from ..data.models import (
    Deal, TimeSeriesPoint, DealPerformanceRecord, ThresholdBucket,
    ConversionFunnel, CustomerBehavior, AggregationResult
)
from ..exceptions import ValidationError

logger = logging.getLogger(__name__)

# (label, lower inclusive, upper exclusive)
THRESHOLD_BUCKETS: List[Tuple[str, float, Optional[float]]] = [
    ('<₹500', 0.0, 500.0),
    ('₹500–999', 500.0, 1000.0),
    ('₹1000–1499', 1000.0, 1500.0),
    ('₹1500+', 1500.0, None),
]

# 缺少 add_to_cart 埋点时的漏斗估算比例
ESTIMATED_ADD_RATE = 0.7
ESTIMATED_COMPLETE_RATE = 0.9


def validate_range(date_from: date, date_to: date) -> None:
    """校验闭区间日期范围"""
    if date_from is None or date_to is None:
        raise ValidationError("Both date_from and date_to are required")
    if date_from > date_to:
        raise ValidationError(f"Invalid date range: {date_from} is after {date_to}")


def bucket_label(threshold_amount: float) -> str:
    """按门槛金额定位区间"""
    for label, _, upper in THRESHOLD_BUCKETS:
        if upper is None or threshold_amount < upper:
            return label
    return THRESHOLD_BUCKETS[-1][0]


def _prepare_events(events: Optional[pd.DataFrame]) -> pd.DataFrame:
    """统一事件表的数据类型"""
    columns = ['deal_id', 'event_type', 'customer_id', 'order_id', 'cart_value', 'revenue', 'created_at']
    if events is None or events.empty:
        return pd.DataFrame(columns=columns)

    df = events.copy()
    for column in columns:
        if column not in df.columns:
            df[column] = np.nan
    df = df[df['deal_id'].notna()].copy()
    df['deal_id'] = df['deal_id'].astype(int)
    df['revenue'] = pd.to_numeric(df['revenue'], errors='coerce').fillna(0.0)
    df['cart_value'] = pd.to_numeric(df['cart_value'], errors='coerce')
    df['created_at'] = pd.to_datetime(df['created_at'])
    return df


class DealAggregationEngine:
    """促销数据聚合引擎：时间序列、单品表现、门槛分布、转化漏斗"""

    def aggregate(
            self,
            date_from: date,
            date_to: date,
            deals: List[Deal],
            events: Optional[pd.DataFrame],
            orders: Optional[pd.DataFrame]
    ) -> AggregationResult:
        """聚合区间内的埋点与订单数据"""
        validate_range(date_from, date_to)
        logger.info(f"Aggregating deal analytics from {date_from} to {date_to} for {len(deals)} deals")

        events_df = _prepare_events(events)
        orders_df = orders if orders is not None else pd.DataFrame(columns=['order_id', 'total_amount'])

        time_series = self.build_time_series(events_df, date_from, date_to)
        performance = self.build_performance(deals, events_df)
        buckets = self.build_threshold_buckets(deals, performance)
        funnel = self.build_funnel(deals, events_df, orders_df)
        behavior = self.build_customer_behavior(orders_df, buckets, funnel.eligible)

        if funnel.is_estimated:
            logger.warning("No add-to-cart/purchase instrumentation in range, funnel stages are estimated")

        return AggregationResult(
            time_series=time_series,
            performance=performance,
            buckets=buckets,
            funnel=funnel,
            customer_behavior=behavior,
            diagnostics={
                'schema_initialized': True,
                'data_status': 'ok' if not events_df.empty else 'empty',
                'funnel_estimated': funnel.is_estimated,
                'days': len(time_series),
            }
        )

    def empty_result(self, date_from: date, date_to: date, deals: List[Deal], data_status: str = 'no_schema') -> AggregationResult:
        """数据源不可用时返回全零结构，供前端渲染“无数据”状态"""
        validate_range(date_from, date_to)
        time_series = self.build_time_series(_prepare_events(None), date_from, date_to)
        performance = self.build_performance(deals, _prepare_events(None))
        buckets = self.build_threshold_buckets(deals, performance)

        return AggregationResult(
            time_series=time_series,
            performance=performance,
            buckets=buckets,
            funnel=ConversionFunnel(),
            customer_behavior=CustomerBehavior(),
            diagnostics={
                'schema_initialized': data_status != 'no_schema',
                'data_status': data_status,
                'funnel_estimated': False,
                'days': len(time_series),
            }
        )

    def build_time_series(self, events: pd.DataFrame, date_from: date, date_to: date) -> List[TimeSeriesPoint]:
        """按自然日汇总核销，区间内每天都有一个点"""
        days = pd.date_range(start=date_from, end=date_to, freq='D')
        purchases = events[events['event_type'] == 'purchase']

        if purchases.empty:
            return [TimeSeriesPoint(date=day.date()) for day in days]

        daily = (
            purchases
            .assign(day=purchases['created_at'].dt.normalize())
            .groupby('day')
            .agg(
                redemptions=('deal_id', 'size'),
                revenue=('revenue', 'sum'),
                orders=('order_id', 'nunique')
            )
            .reindex(days, fill_value=0)
        )

        return [
            TimeSeriesPoint(
                date=day.date(),
                redemptions=int(row['redemptions']),
                revenue=float(row['revenue']),
                orders=int(row['orders'])
            )
            for day, row in daily.iterrows()
        ]

    def build_performance(self, deals: List[Deal], events: pd.DataFrame) -> List[DealPerformanceRecord]:
        """单个促销的表现指标，按核销数、收入降序（都相同时保持输入顺序）"""
        if events.empty:
            counts = pd.DataFrame()
        else:
            counts = events.groupby(['deal_id', 'event_type']).size().unstack(fill_value=0)

        purchases = events[events['event_type'] == 'purchase']
        revenue_by_deal = purchases.groupby('deal_id')['revenue'].sum()
        customers_by_deal = purchases.groupby('deal_id')['customer_id'].nunique()
        add_cart_by_deal = events[events['event_type'] == 'add_to_cart'].groupby('deal_id')['cart_value'].mean()
        purchase_cart_by_deal = purchases.groupby('deal_id')['cart_value'].mean()

        def count_of(deal_id: int, event_type: str) -> int:
            if deal_id in counts.index and event_type in counts.columns:
                return int(counts.at[deal_id, event_type])
            return 0

        def cart_value_of(deal: Deal) -> float:
            for series in (add_cart_by_deal, purchase_cart_by_deal):
                value = series.get(deal.id)
                if value is not None and not pd.isna(value):
                    return float(value)
            return float(deal.threshold_amount)

        records = []
        for deal in deals:
            views = count_of(deal.id, 'view')
            clicks = count_of(deal.id, 'click')
            adds = count_of(deal.id, 'add_to_cart')
            redemptions = count_of(deal.id, 'purchase')

            records.append(DealPerformanceRecord(
                deal_id=deal.id,
                deal_title=deal.title,
                redemptions=redemptions,
                revenue=float(revenue_by_deal.get(deal.id, 0.0)),
                conversion_rate=_rate(redemptions, views),
                avg_cart_value=cart_value_of(deal),
                threshold_amount=float(deal.threshold_amount),
                deal_price=float(deal.deal_price),
                priority=deal.priority,
                views=views,
                clicks=clicks,
                adds=adds,
                unique_customers=int(customers_by_deal.get(deal.id, 0)),
                click_through_rate=_rate(clicks, views),
                add_to_cart_rate=_rate(adds, clicks),
                redemption_rate=_rate(redemptions, adds)
            ))

        return sorted(records, key=lambda r: (r.redemptions, r.revenue), reverse=True)

    def build_threshold_buckets(
            self,
            deals: List[Deal],
            performance: List[DealPerformanceRecord]
    ) -> List[ThresholdBucket]:
        """四个固定门槛区间，每个促销只落入一个区间"""
        redemptions_by_deal = {record.deal_id: record.redemptions for record in performance}
        buckets = {
            label: ThresholdBucket(label=label, lower=lower, upper=upper)
            for label, lower, upper in THRESHOLD_BUCKETS
        }

        for deal in deals:
            bucket = buckets[bucket_label(deal.threshold_amount)]
            bucket.count += 1
            bucket.redemptions += redemptions_by_deal.get(deal.id, 0)

        return list(buckets.values())

    def build_funnel(self, deals: List[Deal], events: pd.DataFrame, orders: pd.DataFrame) -> ConversionFunnel:
        """转化漏斗；缺少实测数据的阶段按比例估算并标记"""
        type_counts = events['event_type'].value_counts() if not events.empty else pd.Series(dtype=int)
        views = int(type_counts.get('view', 0))
        measured_adds = int(type_counts.get('add_to_cart', 0))
        measured_completed = int(type_counts.get('purchase', 0))

        eligible = 0
        if deals and not orders.empty:
            min_threshold = min(deal.threshold_amount for deal in deals)
            totals = pd.to_numeric(orders['total_amount'], errors='coerce')
            eligible = int((totals >= min_threshold).sum())

        funnel = ConversionFunnel(views=views, eligible=eligible)
        if measured_adds:
            funnel.added = measured_adds
        else:
            funnel.added = int(math.floor(eligible * ESTIMATED_ADD_RATE))
            funnel.added_source = 'estimated'

        if measured_completed:
            funnel.completed = measured_completed
        else:
            funnel.completed = int(math.floor(funnel.added * ESTIMATED_COMPLETE_RATE))
            funnel.completed_source = 'estimated'

        return funnel

    def build_customer_behavior(
            self,
            orders: pd.DataFrame,
            buckets: List[ThresholdBucket],
            eligible: int
    ) -> CustomerBehavior:
        """客户购物车行为"""
        totals = pd.to_numeric(orders['total_amount'], errors='coerce') if not orders.empty else pd.Series(dtype=float)
        cart_values = sorted(float(v) for v in totals if v > 0)

        most_common = ''
        if buckets and any(bucket.count for bucket in buckets):
            # 并列时取第一个区间
            most_common = max(buckets, key=lambda b: b.count).label

        return CustomerBehavior(
            avg_cart_value=float(np.mean(cart_values)) if cart_values else 0.0,
            median_cart_value=cart_values[len(cart_values) // 2] if cart_values else 0.0,
            most_common_threshold=most_common,
            deal_adoption_rate=_rate(eligible, len(orders))
        )


def _rate(numerator: float, denominator: float) -> float:
    """百分比，分母为0时返回0"""
    return numerator / denominator * 100 if denominator > 0 else 0.0
