# deal_analytics/data/connectors.py
import logging
from typing import List, Dict, Any, Optional, Sequence
import pandas as pd

logger = logging.getLogger(__name__)


class ClickHouseConnector:
    """ClickHouse数据库连接器"""

    def __init__(self, settings=None):
        if settings is None:
            from config.settings import get_settings
            settings = get_settings().clickhouse
        self.settings = settings
        self._client = None
        self._connection_failed = False

    @property
    def client(self):
        """获取客户端实例（懒加载）"""
        if self._client is None and not self._connection_failed:
            try:
                import clickhouse_connect
                self._client = clickhouse_connect.get_client(
                    host=self.settings.host,
                    port=self.settings.port,
                    username=self.settings.user,
                    password=self.settings.password,
                    database=self.settings.database,
                    secure=self.settings.secure
                )
                logger.info(f"Connected to ClickHouse: {self.settings.host}:{self.settings.port}")
            except Exception as e:
                logger.error(f"Failed to connect to ClickHouse: {e}")
                self._connection_failed = True
                raise ConnectionError(f"Cannot connect to ClickHouse: {e}") from e

        if self._connection_failed:
            raise ConnectionError("ClickHouse connection has failed previously")

        return self._client

    def execute(self, query: str, params: Dict[str, Any] = None) -> List[tuple]:
        """执行查询"""
        try:
            logger.debug(f"Executing query: {query[:100]}...")
            result = self.client.query(query, parameters=params or {})
            return result.result_rows
        except Exception as e:
            logger.error(f"Query execution failed: {e}")
            raise

    def execute_df(self, query: str, params: Dict[str, Any] = None) -> pd.DataFrame:
        """执行查询并返回DataFrame"""
        try:
            logger.debug(f"Executing query: {query[:100]}...")
            return self.client.query_df(query, parameters=params or {})
        except Exception as e:
            logger.error(f"Failed to fetch DataFrame: {e}")
            raise

    def command(self, cmd: str, params: Dict[str, Any] = None) -> Any:
        """执行单值命令"""
        return self.client.command(cmd, parameters=params or {})

    def table_exists(self, table: str) -> bool:
        """检查表是否存在"""
        result = self.command("EXISTS TABLE {table:Identifier}", {'table': table})
        return bool(int(result))

    def insert_rows(self, table: str, rows: Sequence[Sequence[Any]], column_names: List[str],
                    batch_size: int = 10000) -> int:
        """批量插入数据"""
        total_rows = len(rows)
        if total_rows == 0:
            return 0

        try:
            logger.info(f"Inserting {total_rows} rows into {table}")
            for i in range(0, total_rows, batch_size):
                batch = rows[i:i + batch_size]
                self.client.insert(table, batch, column_names=column_names)
                logger.debug(f"Inserted batch {i // batch_size + 1}")
            logger.info(f"Successfully inserted {total_rows} rows")
            return total_rows
        except Exception as e:
            logger.error(f"Insert failed: {e}")
            raise

    def close(self):
        """关闭连接"""
        if self._client:
            try:
                self._client.close()
            except Exception as e:
                logger.warning(f"Error while closing ClickHouse connection: {e}")
            self._client = None
            self._connection_failed = False
            logger.info("ClickHouse connection closed")
