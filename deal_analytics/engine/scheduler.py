import logging
import schedule
import time
from datetime import date, timedelta
from typing import Dict, Any
import threading

logger = logging.getLogger(__name__)


class TaskScheduler:
    """任务调度器"""

    def __init__(self, engine_core):
        self.engine = engine_core
        self.jobs = {}
        self.running = False
        self.thread = None

    def add_daily_refresh(self, time_str: str = "08:00"):
        """添加每日分析刷新任务"""
        job = schedule.every().day.at(time_str).do(self._run_daily_refresh)
        self.jobs['daily_refresh'] = job
        logger.info(f"Scheduled daily analytics refresh at {time_str}")

    def add_nightly_backfill(self, time_str: str = "02:00", lookback_days: int = 1):
        """添加夜间增量回填任务"""
        job = schedule.every().day.at(time_str).do(self._run_backfill, lookback_days)
        self.jobs['nightly_backfill'] = job
        logger.info(f"Scheduled nightly backfill at {time_str} (lookback {lookback_days} days)")

    def start(self):
        """启动调度器"""
        if self.running:
            logger.warning("Scheduler is already running")
            return

        self.running = True
        self.thread = threading.Thread(target=self._run_scheduler)
        self.thread.daemon = True
        self.thread.start()
        logger.info("Task scheduler started")

    def stop(self):
        """停止调度器"""
        self.running = False
        if self.thread:
            self.thread.join()
        for job in self.jobs.values():
            schedule.cancel_job(job)
        self.jobs = {}
        logger.info("Task scheduler stopped")

    def _run_scheduler(self):
        """运行调度器主循环"""
        while self.running:
            schedule.run_pending()
            time.sleep(1)

    def _run_daily_refresh(self):
        """刷新分析缓存"""
        try:
            logger.info("Running scheduled analytics refresh")
            results = self.engine.run_analysis()
            self._handle_analysis_results(results)
        except Exception as e:
            logger.error(f"Scheduled analytics refresh failed: {e}", exc_info=True)

    def _run_backfill(self, lookback_days: int):
        """回填最近 lookback_days 天的订单"""
        try:
            date_to = date.today()
            date_from = date_to - timedelta(days=lookback_days)
            logger.info(f"Running scheduled backfill for {date_from} - {date_to}")
            result = self.engine.backfill(date_from, date_to, dry_run=False)
            logger.info(
                f"Scheduled backfill created {result.events_created} events "
                f"from {result.processed} orders"
            )
        except Exception as e:
            logger.error(f"Scheduled backfill failed: {e}", exc_info=True)

    def _handle_analysis_results(self, results: Dict[str, Any]):
        """处理分析结果"""
        diagnostics = results.get('diagnostics', {})
        if diagnostics.get('data_status') == 'no_schema':
            logger.warning("Analytics refreshed without analytics schema, dashboards will be empty")
        else:
            logger.info(f"Analytics refreshed: {len(results.get('recommendations', []))} recommendations")
