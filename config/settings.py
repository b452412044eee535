# config/settings.py
import os
import json
import logging
from typing import Dict, Any
from pathlib import Path
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class ClickHouseConfig:
    """ClickHouse数据库配置"""
    host: str
    port: int
    database: str
    user: str
    password: str
    secure: bool


@dataclass
class AppConfig:
    """应用程序配置"""
    log_level: str
    log_file: str


@dataclass
class AnalyticsConfig:
    """分析引擎配置"""
    default_range_days: int
    top_n: int
    refresh_time: str
    backfill_time: str
    backfill_lookback_days: int


class Settings:
    """配置管理类"""

    def __init__(self, config_path: str = None):
        self._config_path = config_path or self._get_config_path()
        self._config = self._load_config()

        # 初始化各配置对象
        self.clickhouse = self._get_clickhouse_config()
        self.app = self._get_app_config()
        self.analytics = self._get_analytics_config()

        # 设置日志
        self._setup_logging()

    def _get_config_path(self) -> str:
        """获取配置文件路径"""
        env_path = os.getenv("DEAL_ANALYTICS_CONFIG_PATH")
        if env_path and os.path.exists(env_path):
            return env_path

        current_dir = Path(__file__).parent
        project_root = current_dir.parent

        possible_paths = [
            current_dir / "config.json",
            project_root / "config" / "config.json",
            Path.cwd() / "config" / "config.json",
            Path.home() / ".deal_analytics" / "config.json"
        ]

        for path in possible_paths:
            if path.exists():
                return str(path)

        default_path = project_root / "config" / "config.json"
        logger.warning(f"Config file not found, will use defaults. Expected at: {default_path}")
        return str(default_path)

    def _load_config(self) -> Dict[str, Any]:
        """加载配置文件"""
        default_config = {
            "CLICKHOUSE_HOST": "localhost",
            "CLICKHOUSE_PORT": 8123,
            "CLICKHOUSE_DATABASE": "shop",
            "CLICKHOUSE_USER": "default",
            "CLICKHOUSE_PASSWORD": "",
            "CLICKHOUSE_SECURE": False,
            "LOG_LEVEL": "INFO",
            "LOG_FILE": "logs/deal_analytics.log",
            "ANALYTICS_DEFAULT_RANGE_DAYS": 30,
            "ANALYTICS_TOP_N": 5,
            "ANALYTICS_REFRESH_TIME": "08:00",
            "BACKFILL_TIME": "02:00",
            "BACKFILL_LOOKBACK_DAYS": 1
        }

        try:
            with open(self._config_path, "r", encoding="utf-8") as f:
                file_config = json.load(f)
                config = {**default_config, **file_config}
                logger.info(f"Config loaded from {self._config_path}")
                return config
        except FileNotFoundError:
            logger.warning(f"Config file not found at {self._config_path}, using defaults")
            return default_config
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in config file: {e}")
            logger.warning("Using default configuration")
            return default_config
        except OSError as e:
            logger.error(f"Failed to load config: {e}")
            logger.warning("Using default configuration")
            return default_config

    def _get_config_value(self, key: str, default: Any = None) -> Any:
        """获取配置值，支持环境变量覆盖"""
        env_value = os.getenv(key)
        if env_value:
            # 端口、天数等数字类型
            if (key.endswith('_PORT') or key.endswith('_DAYS') or key.endswith('_N')) and env_value.isdigit():
                return int(env_value)
            if key.endswith('_SECURE'):
                return env_value.lower() in ('1', 'true', 'yes')
            return env_value

        if key in self._config:
            return self._config[key]

        if default is not None:
            return default

        raise ValueError(f"Configuration key '{key}' not found")

    def _get_clickhouse_config(self) -> ClickHouseConfig:
        """获取ClickHouse配置"""
        return ClickHouseConfig(
            host=self._get_config_value("CLICKHOUSE_HOST", "localhost"),
            port=int(self._get_config_value("CLICKHOUSE_PORT", 8123)),
            database=self._get_config_value("CLICKHOUSE_DATABASE", "shop"),
            user=self._get_config_value("CLICKHOUSE_USER", "default"),
            password=self._get_config_value("CLICKHOUSE_PASSWORD", ""),
            secure=bool(self._get_config_value("CLICKHOUSE_SECURE", False))
        )

    def _get_app_config(self) -> AppConfig:
        """获取应用配置"""
        return AppConfig(
            log_level=self._get_config_value("LOG_LEVEL", "INFO"),
            log_file=self._get_config_value("LOG_FILE", "logs/deal_analytics.log")
        )

    def _get_analytics_config(self) -> AnalyticsConfig:
        """获取分析引擎配置"""
        return AnalyticsConfig(
            default_range_days=int(self._get_config_value("ANALYTICS_DEFAULT_RANGE_DAYS", 30)),
            top_n=int(self._get_config_value("ANALYTICS_TOP_N", 5)),
            refresh_time=self._get_config_value("ANALYTICS_REFRESH_TIME", "08:00"),
            backfill_time=self._get_config_value("BACKFILL_TIME", "02:00"),
            backfill_lookback_days=int(self._get_config_value("BACKFILL_LOOKBACK_DAYS", 1))
        )

    def _setup_logging(self):
        """设置日志"""
        log_file = Path(self.app.log_file)
        log_dir = log_file.parent

        log_dir.mkdir(parents=True, exist_ok=True)

        logging.basicConfig(
            level=getattr(logging, self.app.log_level.upper(), logging.INFO),
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[
                logging.FileHandler(log_file, encoding='utf-8'),
                logging.StreamHandler()
            ]
        )

    def has_clickhouse(self) -> bool:
        """检查是否配置了ClickHouse"""
        return bool(self.clickhouse.host)


# 单例模式
_settings = None


def get_settings() -> Settings:
    """获取全局配置实例"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
