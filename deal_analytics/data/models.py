from datetime import date, datetime
from typing import List, Optional, Dict, Any, Tuple
from dataclasses import dataclass, field

EVENT_TYPES = ('view', 'click', 'add_to_cart', 'purchase')


@dataclass
class Deal:
    """₹1 促销配置"""
    id: int
    title: str
    product_id: int
    threshold_amount: float
    deal_price: float
    max_quantity_per_order: int = 1
    priority: int = 0
    is_active: bool = True
    description: Optional[str] = None
    variant_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class DealEvent:
    """埋点事件（view/click/add_to_cart/purchase）"""
    deal_id: int
    event_type: str
    customer_id: Optional[int] = None
    order_id: Optional[int] = None
    order_item_id: Optional[int] = None
    cart_value: Optional[float] = None
    revenue: Optional[float] = None
    quantity: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class PurchaseEvent:
    """订单内的一次核销"""
    deal_id: int
    order_id: int
    order_item_id: int
    price: float
    quantity: int
    revenue: float
    created_at: datetime
    customer_id: Optional[int] = None
    cart_value: Optional[float] = None

    @property
    def key(self) -> Tuple[int, int, int]:
        """幂等键"""
        return (self.deal_id, self.order_id, self.order_item_id)

    def to_event(self) -> DealEvent:
        return DealEvent(
            deal_id=self.deal_id,
            event_type='purchase',
            customer_id=self.customer_id,
            order_id=self.order_id,
            order_item_id=self.order_item_id,
            cart_value=self.cart_value,
            revenue=self.revenue,
            quantity=self.quantity,
            created_at=self.created_at
        )


@dataclass
class TimeSeriesPoint:
    """单日指标"""
    date: date
    redemptions: int = 0
    revenue: float = 0.0
    orders: int = 0


@dataclass
class DealPerformanceRecord:
    """单个促销在查询窗口内的表现"""
    deal_id: int
    deal_title: str
    redemptions: int
    revenue: float
    conversion_rate: float
    avg_cart_value: float
    threshold_amount: float = 0.0
    deal_price: float = 0.0
    priority: int = 0
    views: int = 0
    clicks: int = 0
    adds: int = 0
    unique_customers: int = 0
    click_through_rate: float = 0.0
    add_to_cart_rate: float = 0.0
    redemption_rate: float = 0.0


@dataclass
class ThresholdBucket:
    """门槛区间分布"""
    label: str
    lower: float
    upper: Optional[float]
    count: int = 0
    redemptions: int = 0


@dataclass
class ConversionFunnel:
    """转化漏斗：views → eligible → added → completed"""
    views: int = 0
    eligible: int = 0
    added: int = 0
    completed: int = 0
    added_source: str = 'measured'
    completed_source: str = 'measured'

    @property
    def is_estimated(self) -> bool:
        return 'estimated' in (self.added_source, self.completed_source)


@dataclass
class CustomerBehavior:
    """客户购物车行为摘要"""
    avg_cart_value: float = 0.0
    median_cart_value: float = 0.0
    most_common_threshold: str = ''
    deal_adoption_rate: float = 0.0


@dataclass
class AggregationResult:
    """聚合结果"""
    time_series: List[TimeSeriesPoint]
    performance: List[DealPerformanceRecord]
    buckets: List[ThresholdBucket]
    funnel: ConversionFunnel
    customer_behavior: CustomerBehavior = field(default_factory=CustomerBehavior)
    diagnostics: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TopDeal:
    deal_id: int
    deal_title: str
    score: float
    redemptions: int
    revenue: float


@dataclass
class ForecastPoint:
    date: date
    predicted: int
    confidence: int


@dataclass
class PredictiveData:
    """预测结果"""
    forecast_redemptions: List[ForecastPoint] = field(default_factory=list)
    forecast_revenue: List[ForecastPoint] = field(default_factory=list)
    optimal_threshold: float = 0.0
    recommended_threshold: float = 0.0
    trend_direction: str = 'stable'
    confidence: int = 0


@dataclass
class Recommendation:
    """优化建议"""
    id: str
    type: str
    priority: str
    title: str
    description: str
    impact: str
    action: str
    deal_id: Optional[int] = None
    current_value: Optional[float] = None
    recommended_value: Optional[float] = None
    expected_improvement: Optional[float] = None


@dataclass
class Variant:
    """A/B 测试变体配置"""
    deal_id: int
    threshold: float
    price: float


@dataclass
class VariantResult:
    redemptions: int = 0
    revenue: float = 0.0
    conversion_rate: float = 0.0


@dataclass
class ABTestResults:
    variant_a: VariantResult = field(default_factory=VariantResult)
    variant_b: VariantResult = field(default_factory=VariantResult)
    winner: Optional[str] = None
    confidence: float = 0.0
    confidence_source: str = 'heuristic'


@dataclass
class ABTest:
    id: str
    name: str
    variant_a: Variant
    variant_b: Variant
    start_date: date
    end_date: date
    traffic_split: int = 50
    status: str = 'draft'
    results: ABTestResults = field(default_factory=ABTestResults)
    created_at: Optional[datetime] = None


@dataclass
class BackfillResult:
    """历史订单回填结果"""
    processed: int = 0
    deals_found: int = 0
    events_created: int = 0
    deals_processed: List[Dict[str, Any]] = field(default_factory=list)
    dry_run: bool = False
