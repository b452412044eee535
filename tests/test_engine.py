from datetime import date, timedelta

import pytest
from unittest.mock import Mock, patch

from deal_analytics.engine.core import DealAnalyticsEngineCore, get_repository
from deal_analytics.engine.pipelines import AnalysisPipeline
from deal_analytics.engine.scheduler import TaskScheduler
from deal_analytics.data.mock_repository import MockDealEventRepository
from deal_analytics.exceptions import ValidationError, NotFoundError, SchemaNotInitialized


class TestDealAnalyticsEngineCore:
    """测试核心引擎"""

    @pytest.fixture
    def engine(self, repository, analytics_config):
        return DealAnalyticsEngineCore(repository=repository, analytics_config=analytics_config)

    def test_engine_initialization(self, engine, repository):
        """测试引擎初始化"""
        assert engine.repository is repository
        assert engine.aggregator is not None
        assert engine.forecaster is not None
        assert engine.recommender is not None
        assert engine.ab_tests.list() == []
        assert engine.state['last_run'] is None

    def test_run_analysis(self, engine, march_range):
        """测试完整分析流程"""
        engine.backfill()
        result = engine.run_analysis(*march_range)

        assert result['status'] == 'success'
        assert len(result['time_series']) == 7
        assert sum(p['redemptions'] for p in result['time_series']) == 3
        assert len(result['performance']) == 3
        assert result['top_deals'][0]['deal_id'] == 2
        assert len(result['predictive']['forecast_redemptions']) == 7
        assert result['predictive']['forecast_redemptions'][0]['date'] == date(2024, 3, 8)
        assert any(r['id'] == 'timing-peak' for r in result['recommendations'])
        assert result['diagnostics']['data_status'] == 'ok'
        assert result['funnel']['completed'] == 3

        # 更新状态
        assert engine.state['current_analysis'] is result
        assert engine.state['date_range'] == march_range

    def test_run_analysis_without_schema(self, engine, repository, march_range):
        """分析表不存在时返回全零结构而不是报错"""
        repository.schema_initialized = False
        result = engine.run_analysis(*march_range)

        assert result['diagnostics']['schema_initialized'] is False
        assert result['diagnostics']['data_status'] == 'no_schema'
        assert len(result['time_series']) == 7
        assert all(p['redemptions'] == 0 for p in result['performance'])
        assert sum(b['count'] for b in result['threshold_distribution']) == 3

    def test_storage_errors_propagate(self, analytics_config, march_range):
        repo = Mock()
        repo.list_active_deals.side_effect = ConnectionError("ClickHouse unavailable")
        engine = DealAnalyticsEngineCore(repository=repo, analytics_config=analytics_config)

        with pytest.raises(ConnectionError):
            engine.run_analysis(*march_range)

    def test_default_range(self, engine):
        date_from, date_to = engine.default_range()

        assert date_to == date.today()
        assert date_to - date_from == timedelta(days=30)

        with pytest.raises(ValidationError):
            engine.default_range(date(2024, 3, 5), date(2024, 3, 1))

    def test_aggregate_and_rank(self, engine, march_range):
        engine.backfill()
        aggregation = engine.aggregate(*march_range)
        top = engine.rank(aggregation.performance, top_n=1)

        assert len(top) == 1
        assert top[0].deal_id == 2

    def test_track_event(self, engine, repository):
        event = engine.track_event(2, 'click', customer_id=5)

        assert event.created_at is not None
        assert repository.events[-1].event_type == 'click'
        assert repository.events[-1].deal_id == 2

    def test_track_event_errors(self, engine, repository):
        with pytest.raises(ValidationError):
            engine.track_event(1, 'share')
        with pytest.raises(NotFoundError):
            engine.track_event(99, 'view')

        repository.schema_initialized = False
        with pytest.raises(SchemaNotInitialized):
            engine.track_event(1, 'view')

    def test_move_deal_persists(self, engine, repository):
        changes = engine.move_deal(3, 'up')

        assert changes == {3: 1}
        assert next(d for d in repository.deals if d.id == 3).priority == 1

    def test_update_and_normalize_priorities(self, engine, repository):
        engine.update_priorities({1: 10, 2: 20})
        assert [d.id for d in repository.list_active_deals()] == [3, 1, 2]

        with pytest.raises(NotFoundError):
            engine.update_priorities({99: 1})

        changes = engine.normalize_priorities()
        assert changes == {3: 1, 1: 2, 2: 3}

    def test_backfill_after_live_purchase(self, engine, repository):
        """实时记录的核销不会被回填重复计数"""
        engine.track_event(deal_id=1, event_type='purchase', order_id=1, revenue=1.0)
        result = engine.backfill(date(2024, 3, 1), date(2024, 3, 1))

        purchases = [e for e in repository.events
                     if e.event_type == 'purchase' and (e.deal_id, e.order_id) == (1, 1)]
        assert result.events_created == 0
        assert len(purchases) == 1

    def test_mutations_clear_cached_analysis(self, engine, march_range):
        """埋点、调整优先级、回填后缓存失效"""
        mutations = [
            lambda: engine.track_event(1, 'view'),
            lambda: engine.move_deal(3, 'up'),
            lambda: engine.update_priorities({1: 5}),
            lambda: engine.normalize_priorities(),
            lambda: engine.backfill(),
        ]
        for mutate in mutations:
            engine.run_analysis(*march_range)
            mutate()

            assert engine.state['current_analysis'] == {}
            assert engine.state['date_range'] is None

    def test_dry_run_backfill_keeps_cache(self, engine, march_range):
        result = engine.run_analysis(*march_range)
        engine.backfill(dry_run=True)

        assert engine.state['current_analysis'] is result

    def test_get_repository_falls_back_to_mock(self):
        """数据库连接失败时使用模拟仓库"""
        broken = Mock(side_effect=ConnectionError("no database"))
        repo = get_repository(broken, MockDealEventRepository)

        assert isinstance(repo, MockDealEventRepository)


class TestAnalysisPipeline:
    """测试分析管道"""

    def test_steps_receive_previous_results(self):
        pipeline = AnalysisPipeline("test")
        pipeline.add_step(lambda d, r: d['value'] * 2, "double")
        pipeline.add_step(lambda d, r: r['double'] + 1, "increment")

        assert pipeline.run({'value': 5}) == {'double': 10, 'increment': 11}

    def test_failed_step_raises(self):
        def broken(d, r):
            raise RuntimeError("boom")

        pipeline = AnalysisPipeline("test").add_step(broken)

        with pytest.raises(RuntimeError):
            pipeline.run({})


class TestTaskScheduler:
    """测试任务调度器"""

    def test_scheduler_initialization(self):
        """测试调度器初始化"""
        mock_engine = Mock()
        scheduler = TaskScheduler(mock_engine)

        assert scheduler.engine == mock_engine
        assert scheduler.jobs == {}
        assert scheduler.running == False

    @patch('deal_analytics.engine.scheduler.schedule')
    def test_add_jobs(self, mock_schedule):
        """测试添加刷新与回填任务"""
        scheduler = TaskScheduler(Mock())

        scheduler.add_daily_refresh("09:00")
        scheduler.add_nightly_backfill("02:30", lookback_days=3)

        assert set(scheduler.jobs) == {'daily_refresh', 'nightly_backfill'}
        mock_schedule.every.return_value.day.at.assert_any_call("09:00")
        mock_schedule.every.return_value.day.at.assert_any_call("02:30")

    @patch('deal_analytics.engine.scheduler.schedule')
    def test_scheduler_start_stop(self, mock_schedule):
        """测试调度器启动和停止"""
        scheduler = TaskScheduler(Mock())

        scheduler.start()
        assert scheduler.running == True
        assert scheduler.thread is not None

        scheduler.stop()
        assert scheduler.running == False

    def test_backfill_job_uses_lookback(self):
        mock_engine = Mock()
        mock_engine.backfill.return_value = Mock(events_created=2, processed=5)
        scheduler = TaskScheduler(mock_engine)

        scheduler._run_backfill(2)

        mock_engine.backfill.assert_called_once_with(
            date.today() - timedelta(days=2), date.today(), dry_run=False
        )

    def test_refresh_job_logs_failures(self):
        mock_engine = Mock()
        mock_engine.run_analysis.side_effect = ConnectionError("down")
        scheduler = TaskScheduler(mock_engine)

        scheduler._run_daily_refresh()

        mock_engine.run_analysis.assert_called_once()
