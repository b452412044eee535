from pydantic import BaseModel, Field
from typing import List, Dict, Any, Optional
from datetime import date, datetime


# 请求模型
class TrackEventRequest(BaseModel):
    """埋点事件请求"""
    deal_id: int = Field(..., description="促销ID")
    event_type: str = Field(..., description="事件类型：view/click/add_to_cart/purchase")
    customer_id: Optional[int] = None
    cart_value: Optional[float] = Field(None, ge=0, description="购物车金额")
    order_id: Optional[int] = None
    revenue: Optional[float] = Field(None, ge=0)


class MoveDealRequest(BaseModel):
    direction: str = Field(..., description="up/down")


class PriorityUpdateRequest(BaseModel):
    """批量优先级更新"""
    priorities: Dict[int, int] = Field(..., description="{deal_id: priority}")


class VariantConfig(BaseModel):
    threshold: float = Field(..., description="门槛金额")
    price: float = Field(..., description="促销价")


class ABTestCreateRequest(BaseModel):
    """创建A/B测试"""
    name: str
    deal_id: int
    variant_a: VariantConfig
    variant_b: VariantConfig
    start_date: date
    end_date: date
    traffic_split: int = Field(50, description="分配给A组的流量百分比（10-90）")


class ABTestStatusRequest(BaseModel):
    status: str = Field(..., description="draft/running/completed/paused")


class ABTestResultRequest(BaseModel):
    """录入变体结果（转化率与置信度由外部提供）"""
    variant: str = Field(..., description="A/B")
    redemptions: int = Field(..., ge=0)
    revenue: float = Field(..., ge=0)
    conversion_rate: Optional[float] = Field(None, ge=0, description="转化率（%）")
    confidence: Optional[float] = Field(None, ge=0, le=100, description="外部计算的置信度（%）")


class BackfillRequest(BaseModel):
    """历史订单回填"""
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    dry_run: bool = Field(False, description="只预览，不写入")


# 响应模型
class HealthResponse(BaseModel):
    """健康检查响应"""
    status: str
    version: str
    engine_status: str
    scheduler_status: str
    data_connection: str
    message: Optional[str] = None


class TimeSeriesPointResponse(BaseModel):
    date: date
    redemptions: int
    revenue: float
    orders: int


class DealPerformanceResponse(BaseModel):
    """单个促销表现"""
    deal_id: int
    deal_title: str
    redemptions: int
    revenue: float
    conversion_rate: float
    avg_cart_value: float
    threshold_amount: float
    deal_price: float
    priority: int
    views: int
    clicks: int
    adds: int
    unique_customers: int
    click_through_rate: float
    add_to_cart_rate: float
    redemption_rate: float


class ThresholdBucketResponse(BaseModel):
    label: str
    lower: float
    upper: Optional[float]
    count: int
    redemptions: int


class FunnelResponse(BaseModel):
    """转化漏斗（*_source 为 measured/estimated）"""
    views: int
    eligible: int
    added: int
    completed: int
    added_source: str
    completed_source: str


class CustomerBehaviorResponse(BaseModel):
    avg_cart_value: float
    median_cart_value: float
    most_common_threshold: str
    deal_adoption_rate: float


class TopDealResponse(BaseModel):
    deal_id: int
    deal_title: str
    score: float
    redemptions: int
    revenue: float


class ForecastPointResponse(BaseModel):
    date: date
    predicted: int
    confidence: int


class PredictiveResponse(BaseModel):
    """预测结果"""
    forecast_redemptions: List[ForecastPointResponse]
    forecast_revenue: List[ForecastPointResponse]
    optimal_threshold: float
    recommended_threshold: float
    trend_direction: str
    confidence: int


class RecommendationResponse(BaseModel):
    """建议响应"""
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


class DashboardResponse(BaseModel):
    """完整的促销分析看板"""
    date_from: date
    date_to: date
    generated_at: datetime
    time_series: List[TimeSeriesPointResponse]
    performance: List[DealPerformanceResponse]
    threshold_distribution: List[ThresholdBucketResponse]
    funnel: FunnelResponse
    customer_behavior: CustomerBehaviorResponse
    top_deals: List[TopDealResponse]
    predictive: PredictiveResponse
    recommendations: List[RecommendationResponse]
    diagnostics: Dict[str, Any]


class EventResponse(BaseModel):
    status: str
    deal_id: int
    event_type: str
    created_at: datetime


class PriorityChangeResponse(BaseModel):
    changes: Dict[int, int]


class VariantResponse(BaseModel):
    deal_id: int
    threshold: float
    price: float


class VariantResultResponse(BaseModel):
    redemptions: int
    revenue: float
    conversion_rate: float


class ABTestResultsResponse(BaseModel):
    """A/B 测试结果；confidence_source 为 supplied/heuristic"""
    variant_a: VariantResultResponse
    variant_b: VariantResultResponse
    winner: Optional[str]
    confidence: float
    confidence_source: str


class ABTestResponse(BaseModel):
    id: str
    name: str
    variant_a: VariantResponse
    variant_b: VariantResponse
    start_date: date
    end_date: date
    traffic_split: int
    status: str
    results: ABTestResultsResponse
    created_at: Optional[datetime] = None


class DealBackfillSummary(BaseModel):
    deal_id: int
    redemptions: int
    revenue: float


class BackfillResponse(BaseModel):
    """回填结果"""
    processed: int
    deals_found: int
    events_created: int
    deals_processed: List[DealBackfillSummary]
    dry_run: bool
    message: str


# 错误响应
class ErrorResponse(BaseModel):
    """错误响应"""
    code: str
    detail: str
    timestamp: datetime = Field(default_factory=datetime.now)
