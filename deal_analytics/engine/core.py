# deal_analytics/engine/core.py
import logging
from dataclasses import asdict
from typing import Dict, Any, List, Optional, Tuple
from datetime import date, datetime, timedelta
import pandas as pd

from ..data.models import (
    EVENT_TYPES, Deal, DealEvent, DealPerformanceRecord, TimeSeriesPoint,
    AggregationResult, TopDeal, PredictiveData, Recommendation, BackfillResult
)
from ..data.repositories import EVENT_COLUMNS
from ..exceptions import ValidationError, SchemaNotInitialized, NotFoundError
from ..analytics.aggregation import DealAggregationEngine, validate_range
from ..analytics.scoring import rank_deals
from ..analytics.forecast import DealForecastEngine
from ..analytics.recommendations import RecommendationEngine
from ..analytics.ab_testing import ABTestManager
from ..analytics.backfill import BackfillProcessor
from ..analytics import priorities
from .pipelines import create_deal_analysis_pipeline

logger = logging.getLogger(__name__)


def get_repository(repo_class, mock_factory):
    """获取数据仓库（如果连接失败则使用模拟）"""
    try:
        repo = repo_class()
        # 测试连接
        if hasattr(repo, 'db') and repo.db:
            repo.db.client  # 触发连接
        return repo
    except Exception as e:
        logger.warning(f"Failed to connect to database, using mock data: {e}")
        return mock_factory()


def _demo_repository():
    from ..data.mock_repository import MockDealEventRepository
    repo = MockDealEventRepository()
    repo.seed_demo_data()
    BackfillProcessor(repo).run()
    return repo


class DealAnalyticsEngineCore:
    """促销分析引擎核心类"""

    def __init__(self, repository=None, analytics_config=None):
        if analytics_config is None:
            from config.settings import get_settings
            analytics_config = get_settings().analytics
        self.config = analytics_config

        # 数据层 - 未注入时尝试连接 ClickHouse，失败则使用演示数据
        if repository is None:
            from ..data.repositories import DealEventRepository
            repository = get_repository(DealEventRepository, _demo_repository)
        self.repository = repository

        # 分析引擎
        self.aggregator = DealAggregationEngine()
        self.forecaster = DealForecastEngine()
        self.recommender = RecommendationEngine()
        self.ab_tests = ABTestManager()

        # 状态管理（最近一次分析结果的缓存）
        self.state = {
            'last_run': None,
            'date_range': None,
            'current_analysis': {},
        }

    def default_range(self, date_from: Optional[date] = None, date_to: Optional[date] = None) -> Tuple[date, date]:
        """补全查询区间：默认截至今天，向前 default_range_days 天"""
        date_to = date_to or date.today()
        date_from = date_from or date_to - timedelta(days=self.config.default_range_days)
        validate_range(date_from, date_to)
        return date_from, date_to

    def fetch_snapshot(self, date_from: date, date_to: date) -> Dict[str, Any]:
        """读取一次分析所需的全部数据；存储异常直接抛出"""
        validate_range(date_from, date_to)
        deals = self.repository.list_active_deals()
        orders = self.repository.list_orders(date_from, date_to)
        schema_initialized = self.repository.has_analytics_schema()
        if schema_initialized:
            events = self.repository.list_deal_events(date_from, date_to)
        else:
            logger.warning("Analytics table does not exist, analytics will be empty")
            events = pd.DataFrame(columns=EVENT_COLUMNS)

        return {
            'date_from': date_from,
            'date_to': date_to,
            'deals': deals,
            'orders': orders,
            'events': events,
            'schema_initialized': schema_initialized,
        }

    def run_analysis(self, date_from: Optional[date] = None, date_to: Optional[date] = None) -> Dict[str, Any]:
        """运行完整的促销分析"""
        date_from, date_to = self.default_range(date_from, date_to)
        logger.info(f"Starting deal analysis for {date_from} - {date_to}")
        start_time = datetime.now()

        try:
            # 1. 数据收集
            logger.info("Step 1: Collecting data")
            snapshot = self.fetch_snapshot(date_from, date_to)

            # 2. 聚合 → 排名 → 预测 → 建议
            logger.info("Step 2: Running analysis pipeline")
            pipeline = create_deal_analysis_pipeline(
                self.aggregator, self.forecaster, self.recommender, top_n=self.config.top_n
            )
            outputs = pipeline.run(snapshot)
        except Exception as e:
            logger.error(f"Deal analysis failed: {e}", exc_info=True)
            raise

        aggregation: AggregationResult = outputs['aggregation']
        results = {
            'timestamp': start_time,
            'duration': (datetime.now() - start_time).total_seconds(),
            'status': 'success',
            'date_from': date_from,
            'date_to': date_to,
            'time_series': [asdict(p) for p in aggregation.time_series],
            'performance': [asdict(p) for p in aggregation.performance],
            'threshold_distribution': [asdict(b) for b in aggregation.buckets],
            'funnel': asdict(aggregation.funnel),
            'customer_behavior': asdict(aggregation.customer_behavior),
            'top_deals': [asdict(d) for d in outputs['top_deals']],
            'predictive': asdict(outputs['forecast']),
            'recommendations': [asdict(r) for r in outputs['recommendations']],
            'diagnostics': aggregation.diagnostics,
        }

        # 更新状态
        self.state['last_run'] = start_time
        self.state['date_range'] = (date_from, date_to)
        self.state['current_analysis'] = results

        logger.info(f"Deal analysis completed in {results['duration']:.2f} seconds")
        return results

    def invalidate_cache(self) -> None:
        """数据或优先级变化后清除缓存的分析结果"""
        self.state['current_analysis'] = {}
        self.state['date_range'] = None

    def aggregate(self, date_from: Optional[date] = None, date_to: Optional[date] = None) -> AggregationResult:
        """聚合区间数据；分析表不存在时返回全零结构"""
        date_from, date_to = self.default_range(date_from, date_to)
        snapshot = self.fetch_snapshot(date_from, date_to)
        if not snapshot['schema_initialized']:
            return self.aggregator.empty_result(date_from, date_to, snapshot['deals'])
        return self.aggregator.aggregate(
            date_from, date_to, snapshot['deals'], snapshot['events'], snapshot['orders']
        )

    def rank(self, performance: List[DealPerformanceRecord], top_n: Optional[int] = None) -> List[TopDeal]:
        return rank_deals(performance, top_n if top_n is not None else self.config.top_n)

    def forecast(
            self,
            time_series: List[TimeSeriesPoint],
            deals: List[Deal],
            performance: Optional[List[DealPerformanceRecord]] = None
    ) -> PredictiveData:
        return self.forecaster.forecast(time_series, deals, performance)

    def recommend(self, deals: List[Deal], performance: List[DealPerformanceRecord]) -> List[Recommendation]:
        return self.recommender.generate(deals, performance)

    def backfill(
            self,
            date_from: Optional[date] = None,
            date_to: Optional[date] = None,
            dry_run: bool = False
    ) -> BackfillResult:
        """回填历史订单中的促销核销"""
        result = BackfillProcessor(self.repository).run(date_from, date_to, dry_run=dry_run)
        if not dry_run:
            self.invalidate_cache()
        return result

    def track_event(
            self,
            deal_id: int,
            event_type: str,
            customer_id: Optional[int] = None,
            cart_value: Optional[float] = None,
            order_id: Optional[int] = None,
            revenue: Optional[float] = None
    ) -> DealEvent:
        """记录一条实时埋点事件"""
        if event_type not in EVENT_TYPES:
            raise ValidationError(f"Invalid event type: {event_type}. Expected one of {', '.join(EVENT_TYPES)}")
        if not self.repository.has_analytics_schema():
            raise SchemaNotInitialized()
        if not self.repository.deal_exists(deal_id):
            raise NotFoundError(f"Deal {deal_id} not found")

        event = DealEvent(
            deal_id=deal_id,
            event_type=event_type,
            customer_id=customer_id,
            order_id=order_id,
            cart_value=cart_value,
            revenue=revenue,
            created_at=datetime.now()
        )
        self.repository.record_event(event)
        self.invalidate_cache()
        logger.info(f"Tracked {event_type} event for deal {deal_id}")
        return event

    def move_deal(self, deal_id: int, direction: str) -> Dict[int, int]:
        """上移/下移促销并保存新的优先级"""
        deals = self.repository.list_active_deals()
        changes = priorities.move_deal(deals, deal_id, direction)
        if changes:
            self.repository.update_deal_priorities(changes)
            self.invalidate_cache()
        logger.info(f"Moved deal {deal_id} {direction}: {changes or 'no change'}")
        return changes

    def update_priorities(self, new_priorities: Dict[int, int]) -> Dict[int, int]:
        """批量设置优先级"""
        known = {deal.id for deal in self.repository.list_active_deals()}
        missing = [deal_id for deal_id in new_priorities if deal_id not in known]
        if missing:
            raise NotFoundError(f"Deals not found: {missing}")
        self.repository.update_deal_priorities(new_priorities)
        self.invalidate_cache()
        return dict(new_priorities)

    def normalize_priorities(self) -> Dict[int, int]:
        """将优先级重新编号为 1..n"""
        changes = priorities.normalize_priorities(self.repository.list_active_deals())
        if changes:
            self.repository.update_deal_priorities(changes)
            self.invalidate_cache()
        return changes
