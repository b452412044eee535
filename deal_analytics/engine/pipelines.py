from typing import Dict, Any, Callable
from abc import ABC, abstractmethod
import logging

from ..analytics.aggregation import DealAggregationEngine
from ..analytics.scoring import rank_deals
from ..analytics.forecast import DealForecastEngine
from ..analytics.recommendations import RecommendationEngine

logger = logging.getLogger(__name__)


class BasePipeline(ABC):
    """基础管道类"""

    def __init__(self, name: str):
        self.name = name
        self.steps = []

    def add_step(self, func: Callable, name: str = None):
        """添加处理步骤"""
        step_name = name or func.__name__
        self.steps.append((step_name, func))
        return self

    @abstractmethod
    def run(self, data: Any) -> Any:
        """运行管道"""
        pass


class AnalysisPipeline(BasePipeline):
    """分析管道：每一步接收输入快照和前面步骤的结果"""

    def run(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """运行分析管道，任一步失败即中止"""
        results = {}

        for step_name, func in self.steps:
            try:
                results[step_name] = func(data, results)
                logger.info(f"Pipeline {self.name} - Step {step_name} completed")
            except Exception as e:
                logger.error(f"Pipeline {self.name} - Step {step_name} failed: {e}")
                raise

        return results


def create_deal_analysis_pipeline(
        aggregator: DealAggregationEngine = None,
        forecaster: DealForecastEngine = None,
        recommender: RecommendationEngine = None,
        top_n: int = 5
) -> AnalysisPipeline:
    """创建促销分析管道：聚合 → 排名 → 预测 → 建议

    输入快照需包含 date_from, date_to, deals, events, orders, schema_initialized。
    """
    aggregator = aggregator or DealAggregationEngine()
    forecaster = forecaster or DealForecastEngine()
    recommender = recommender or RecommendationEngine()

    def aggregate(d, r):
        if not d['schema_initialized']:
            logger.warning("Analytics schema missing, returning empty aggregation")
            return aggregator.empty_result(d['date_from'], d['date_to'], d['deals'])
        return aggregator.aggregate(d['date_from'], d['date_to'], d['deals'], d['events'], d['orders'])

    pipeline = AnalysisPipeline("deal_analysis")
    pipeline.add_step(aggregate, "aggregation")
    pipeline.add_step(lambda d, r: rank_deals(r['aggregation'].performance, top_n), "top_deals")
    pipeline.add_step(
        lambda d, r: forecaster.forecast(r['aggregation'].time_series, d['deals'], r['aggregation'].performance),
        "forecast"
    )
    pipeline.add_step(lambda d, r: recommender.generate(d['deals'], r['aggregation'].performance), "recommendations")

    return pipeline
