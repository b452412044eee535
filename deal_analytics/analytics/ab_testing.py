import logging
import uuid
from datetime import date, datetime
from typing import Dict, List, Optional, Any

from ..data.models import ABTest, ABTestResults, Variant, VariantResult
from ..exceptions import ValidationError, NotFoundError

logger = logging.getLogger(__name__)

STATUSES = ('draft', 'running', 'completed', 'paused')

# 允许的状态流转；completed 为终态
TRANSITIONS = {
    'draft': {'running'},
    'running': {'completed', 'paused'},
    'paused': {'running', 'completed'},
    'completed': set(),
}

RECORDABLE_STATUSES = ('running', 'paused')
MIN_TRAFFIC_SPLIT = 10
MAX_TRAFFIC_SPLIT = 90
# 转化率差值小于该值视为平局（百分点）
TIE_TOLERANCE = 0.5


def heuristic_confidence(a: VariantResult, b: VariantResult) -> float:
    """启发式置信度（非显著性检验）：相对提升 × 样本量系数"""
    best = max(a.conversion_rate, b.conversion_rate)
    if best <= 0:
        return 50.0
    relative_lift = abs(a.conversion_rate - b.conversion_rate) / best
    volume = min(1.0, (a.redemptions + b.redemptions) / 100)
    return min(99.0, 50 + relative_lift * 100 * volume)


def determine_winner(results: ABTestResults) -> Optional[str]:
    """两个变体都有核销后才判定胜者"""
    a, b = results.variant_a, results.variant_b
    if a.redemptions <= 0 or b.redemptions <= 0:
        return None
    if abs(a.conversion_rate - b.conversion_rate) < TIE_TOLERANCE:
        return 'tie'
    return 'A' if a.conversion_rate > b.conversion_rate else 'B'


class ABTestManager:
    """A/B 测试管理：创建、状态流转、录入结果、判定胜者"""

    def __init__(self):
        self.tests: Dict[str, ABTest] = {}

    def create(
            self,
            name: str,
            deal_id: int,
            variant_a: Dict[str, Any],
            variant_b: Dict[str, Any],
            start_date: date,
            end_date: date,
            traffic_split: int = 50
    ) -> ABTest:
        """创建测试，初始状态为 draft"""
        if not name or not str(name).strip():
            raise ValidationError("Test name is required")
        if deal_id is None:
            raise ValidationError("Deal is required")
        if start_date is None or end_date is None:
            raise ValidationError("Start and end dates are required")
        if start_date >= end_date:
            raise ValidationError("Start date must be before end date")
        if isinstance(traffic_split, bool) or not isinstance(traffic_split, int):
            raise ValidationError("Traffic split must be an integer percentage")
        if not MIN_TRAFFIC_SPLIT <= traffic_split <= MAX_TRAFFIC_SPLIT:
            raise ValidationError(
                f"Traffic split must be between {MIN_TRAFFIC_SPLIT} and {MAX_TRAFFIC_SPLIT}"
            )

        test = ABTest(
            id=uuid.uuid4().hex[:12],
            name=str(name).strip(),
            variant_a=self._build_variant(deal_id, variant_a, 'A'),
            variant_b=self._build_variant(deal_id, variant_b, 'B'),
            start_date=start_date,
            end_date=end_date,
            traffic_split=traffic_split,
            status='draft',
            created_at=datetime.now()
        )
        self.tests[test.id] = test
        logger.info(f"Created A/B test {test.id} '{test.name}' for deal {deal_id}")
        return test

    def get(self, test_id: str) -> ABTest:
        test = self.tests.get(test_id)
        if test is None:
            raise NotFoundError(f"A/B test {test_id} not found")
        return test

    def list(self, status: Optional[str] = None) -> List[ABTest]:
        tests = list(self.tests.values())
        if status:
            tests = [t for t in tests if t.status == status]
        return tests

    def transition(self, test_id: str, status: str) -> ABTest:
        """状态流转：draft → running → completed/paused，paused 可恢复"""
        if status not in STATUSES:
            raise ValidationError(f"Unknown status: {status}")

        test = self.get(test_id)
        if status not in TRANSITIONS[test.status]:
            raise ValidationError(f"Cannot move A/B test from {test.status} to {status}")

        logger.info(f"A/B test {test_id}: {test.status} -> {status}")
        test.status = status
        return test

    def start(self, test_id: str) -> ABTest:
        return self.transition(test_id, 'running')

    def pause(self, test_id: str) -> ABTest:
        return self.transition(test_id, 'paused')

    def complete(self, test_id: str) -> ABTest:
        return self.transition(test_id, 'completed')

    def record_result(
            self,
            test_id: str,
            variant: str,
            redemptions: int,
            revenue: float,
            conversion_rate: Optional[float] = None,
            confidence: Optional[float] = None
    ) -> ABTest:
        """录入变体计数（转化率由外部提供），并重新判定胜者"""
        test = self.get(test_id)
        if test.status not in RECORDABLE_STATUSES:
            raise ValidationError(f"Cannot record results for a test in status {test.status}")

        variant = (variant or '').upper()
        if variant not in ('A', 'B'):
            raise ValidationError(f"Unknown variant: {variant}")
        if redemptions is None or redemptions < 0 or revenue is None or revenue < 0:
            raise ValidationError("Redemptions and revenue must be non-negative")
        if conversion_rate is not None and conversion_rate < 0:
            raise ValidationError("Conversion rate must be non-negative")

        target = test.results.variant_a if variant == 'A' else test.results.variant_b
        target.redemptions = int(redemptions)
        target.revenue = float(revenue)
        if conversion_rate is not None:
            target.conversion_rate = float(conversion_rate)

        self._evaluate(test.results, confidence)
        logger.info(f"Recorded variant {variant} results for A/B test {test_id}, winner={test.results.winner}")
        return test

    def winner(self, test_id: str) -> Optional[str]:
        return self.get(test_id).results.winner

    def _evaluate(self, results: ABTestResults, confidence: Optional[float]) -> None:
        results.winner = determine_winner(results)

        # 没有胜者时置信度无意义，之前录入的值一并清除
        if results.winner is None:
            results.confidence = 0.0
            results.confidence_source = 'heuristic'
            return
        if confidence is not None:
            results.confidence = float(min(100.0, max(0.0, confidence)))
            results.confidence_source = 'supplied'
            return
        if results.confidence_source == 'supplied':
            return

        if results.winner == 'tie':
            results.confidence = 50.0
        else:
            results.confidence = heuristic_confidence(results.variant_a, results.variant_b)

    @staticmethod
    def _build_variant(deal_id: int, config: Dict[str, Any], label: str) -> Variant:
        config = config or {}
        threshold = config.get('threshold')
        price = config.get('price')
        if threshold is None or price is None:
            raise ValidationError(f"Variant {label} requires threshold and price")
        if threshold < 0 or price < 0:
            raise ValidationError(f"Variant {label} threshold and price must be non-negative")
        return Variant(deal_id=int(config.get('deal_id', deal_id)), threshold=float(threshold), price=float(price))
