"""Deal analytics error taxonomy.

Empty datasets are never an error: read paths degrade to zeroed structures.
Storage and connection errors from the data layer propagate unchanged.
"""


class DealAnalyticsError(Exception):
    """基础异常"""
    code = "deal_analytics_error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(DealAnalyticsError):
    """输入校验失败（A/B测试参数、日期范围、状态流转等）"""
    code = "validation_error"


class SchemaNotInitialized(DealAnalyticsError):
    """分析表不存在，需要先执行迁移"""
    code = "schema_not_initialized"

    def __init__(self, message: str = "Analytics tables do not exist. Please run migrations first."):
        super().__init__(message)


class NotFoundError(DealAnalyticsError):
    """资源不存在"""
    code = "not_found"
