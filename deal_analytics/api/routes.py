from fastapi import APIRouter, Query, Depends
from typing import Optional, List
from dataclasses import asdict
from datetime import date
import logging

from deal_analytics.api.schemas import (
    TrackEventRequest,
    MoveDealRequest,
    PriorityUpdateRequest,
    ABTestCreateRequest,
    ABTestStatusRequest,
    ABTestResultRequest,
    BackfillRequest,
    DashboardResponse,
    TimeSeriesPointResponse,
    DealPerformanceResponse,
    TopDealResponse,
    PredictiveResponse,
    RecommendationResponse,
    EventResponse,
    PriorityChangeResponse,
    ABTestResponse,
    BackfillResponse
)
from deal_analytics.api.dependencies import get_engine
from deal_analytics.engine.core import DealAnalyticsEngineCore

logger = logging.getLogger(__name__)

router = APIRouter()


def _analysis(engine: DealAnalyticsEngineCore, date_from: Optional[date], date_to: Optional[date]):
    """区间与缓存一致时复用最近一次分析结果"""
    date_from, date_to = engine.default_range(date_from, date_to)
    if engine.state.get('date_range') == (date_from, date_to) and engine.state.get('current_analysis'):
        return engine.state['current_analysis']
    return engine.run_analysis(date_from, date_to)


@router.get("/analytics", response_model=DashboardResponse)
async def get_dashboard(
        date_from: Optional[date] = Query(None, description="开始日期，默认 date_to 往前 N 天"),
        date_to: Optional[date] = Query(None, description="结束日期，默认今天"),
        refresh: bool = Query(False, description="忽略缓存重新计算"),
        engine: DealAnalyticsEngineCore = Depends(get_engine)
):
    """完整的促销分析看板"""
    if refresh:
        analysis = engine.run_analysis(date_from, date_to)
    else:
        analysis = _analysis(engine, date_from, date_to)
    return DashboardResponse(generated_at=analysis['timestamp'], **{
        key: analysis[key] for key in DashboardResponse.model_fields if key != 'generated_at'
    })


@router.get("/analytics/time-series", response_model=List[TimeSeriesPointResponse])
async def get_time_series(
        date_from: Optional[date] = Query(None),
        date_to: Optional[date] = Query(None),
        engine: DealAnalyticsEngineCore = Depends(get_engine)
):
    """按日核销时间序列"""
    return _analysis(engine, date_from, date_to)['time_series']


@router.get("/analytics/performance", response_model=List[DealPerformanceResponse])
async def get_performance(
        date_from: Optional[date] = Query(None),
        date_to: Optional[date] = Query(None),
        engine: DealAnalyticsEngineCore = Depends(get_engine)
):
    """各促销表现"""
    return _analysis(engine, date_from, date_to)['performance']


@router.get("/analytics/top-deals", response_model=List[TopDealResponse])
async def get_top_deals(
        limit: int = Query(5, ge=1, le=50, description="返回数量"),
        date_from: Optional[date] = Query(None),
        date_to: Optional[date] = Query(None),
        engine: DealAnalyticsEngineCore = Depends(get_engine)
):
    """综合得分最高的促销"""
    aggregation = engine.aggregate(date_from, date_to)
    return [asdict(deal) for deal in engine.rank(aggregation.performance, top_n=limit)]


@router.get("/analytics/forecast", response_model=PredictiveResponse)
async def get_forecast(
        date_from: Optional[date] = Query(None),
        date_to: Optional[date] = Query(None),
        engine: DealAnalyticsEngineCore = Depends(get_engine)
):
    """未来7天核销与收入预测"""
    return _analysis(engine, date_from, date_to)['predictive']


@router.get("/analytics/recommendations", response_model=List[RecommendationResponse])
async def get_recommendations(
        priority: Optional[str] = Query(None, description="按优先级过滤：high/medium/low"),
        date_from: Optional[date] = Query(None),
        date_to: Optional[date] = Query(None),
        engine: DealAnalyticsEngineCore = Depends(get_engine)
):
    """优化建议"""
    recommendations = _analysis(engine, date_from, date_to)['recommendations']
    if priority:
        recommendations = [r for r in recommendations if r['priority'] == priority]
    return recommendations


@router.post("/deals/events", response_model=EventResponse)
async def track_event(
        request: TrackEventRequest,
        engine: DealAnalyticsEngineCore = Depends(get_engine)
):
    """记录促销埋点事件"""
    event = engine.track_event(
        deal_id=request.deal_id,
        event_type=request.event_type,
        customer_id=request.customer_id,
        cart_value=request.cart_value,
        order_id=request.order_id,
        revenue=request.revenue
    )
    return EventResponse(
        status="recorded",
        deal_id=event.deal_id,
        event_type=event.event_type,
        created_at=event.created_at
    )


@router.post("/deals/{deal_id}/move", response_model=PriorityChangeResponse)
async def move_deal(
        deal_id: int,
        request: MoveDealRequest,
        engine: DealAnalyticsEngineCore = Depends(get_engine)
):
    """上移/下移促销"""
    return PriorityChangeResponse(changes=engine.move_deal(deal_id, request.direction))


@router.put("/deals/priorities", response_model=PriorityChangeResponse)
async def update_priorities(
        request: PriorityUpdateRequest,
        engine: DealAnalyticsEngineCore = Depends(get_engine)
):
    """批量更新优先级"""
    return PriorityChangeResponse(changes=engine.update_priorities(request.priorities))


@router.post("/ab-tests", response_model=ABTestResponse)
async def create_ab_test(
        request: ABTestCreateRequest,
        engine: DealAnalyticsEngineCore = Depends(get_engine)
):
    """创建A/B测试"""
    test = engine.ab_tests.create(
        name=request.name,
        deal_id=request.deal_id,
        variant_a=request.variant_a.model_dump(),
        variant_b=request.variant_b.model_dump(),
        start_date=request.start_date,
        end_date=request.end_date,
        traffic_split=request.traffic_split
    )
    return asdict(test)


@router.get("/ab-tests", response_model=List[ABTestResponse])
async def list_ab_tests(
        status: Optional[str] = Query(None, description="按状态过滤"),
        engine: DealAnalyticsEngineCore = Depends(get_engine)
):
    return [asdict(test) for test in engine.ab_tests.list(status)]


@router.get("/ab-tests/{test_id}", response_model=ABTestResponse)
async def get_ab_test(
        test_id: str,
        engine: DealAnalyticsEngineCore = Depends(get_engine)
):
    return asdict(engine.ab_tests.get(test_id))


@router.post("/ab-tests/{test_id}/status", response_model=ABTestResponse)
async def update_ab_test_status(
        test_id: str,
        request: ABTestStatusRequest,
        engine: DealAnalyticsEngineCore = Depends(get_engine)
):
    """变更A/B测试状态"""
    return asdict(engine.ab_tests.transition(test_id, request.status))


@router.post("/ab-tests/{test_id}/results", response_model=ABTestResponse)
async def record_ab_test_result(
        test_id: str,
        request: ABTestResultRequest,
        engine: DealAnalyticsEngineCore = Depends(get_engine)
):
    """录入变体结果"""
    test = engine.ab_tests.record_result(
        test_id,
        request.variant,
        redemptions=request.redemptions,
        revenue=request.revenue,
        conversion_rate=request.conversion_rate,
        confidence=request.confidence
    )
    return asdict(test)


@router.post("/backfill", response_model=BackfillResponse)
async def run_backfill(
        request: BackfillRequest,
        engine: DealAnalyticsEngineCore = Depends(get_engine)
):
    """回填历史订单中的促销核销"""
    result = engine.backfill(request.date_from, request.date_to, dry_run=request.dry_run)
    if result.dry_run:
        message = f"Dry run: {result.events_created} events would be created from {result.processed} orders"
    else:
        message = f"Created {result.events_created} events from {result.processed} orders"
    return BackfillResponse(message=message, **asdict(result))
