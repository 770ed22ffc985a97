"""结构化日志配置模块。

使用 structlog 提供结构化日志支持，支持 JSON 和控制台两种输出格式。
诊断信息通过显式传入的 SignalObserver 输出，而不是读取全局开关。
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor

from signal_finalizer.config import LogFormat, Settings, get_settings


def setup_logging(settings: Settings | None = None) -> None:
    """配置结构化日志系统。

    根据配置设置日志级别和输出格式。
    """
    settings = settings or get_settings()

    # 设置标准库日志级别
    log_level = getattr(logging, settings.log_level)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=log_level,
    )

    # 共享处理器
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    # 根据格式选择渲染器
    if settings.log_format == LogFormat.JSON:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """获取结构化日志记录器。

    Args:
        name: 日志记录器名称。如果为 None，则使用调用模块名。

    Returns:
        结构化日志记录器实例。
    """
    return structlog.get_logger(name)


class SignalObserver:
    """单个信号的诊断观察者。

    note() 记录诊断条目（同时写入日志），verbose() 仅在详细模式下输出。
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger | None = None,
        *,
        verbose: bool = False,
    ) -> None:
        self._logger = logger or get_logger("signal_finalizer")
        self._verbose = verbose

    @classmethod
    def from_settings(cls, settings: Settings, name: str = "signal_finalizer") -> "SignalObserver":
        """按配置构建观察者。"""
        return cls(get_logger(name), verbose=settings.verbose_logging)

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        return self._logger

    @property
    def is_verbose(self) -> bool:
        return self._verbose

    def bind(self, **kwargs: Any) -> "SignalObserver":
        """绑定上下文字段（如 coin）。"""
        return SignalObserver(self._logger.bind(**kwargs), verbose=self._verbose)

    def note(self, event: str, message: str, *, level: str = "warning", **kwargs: Any) -> str:
        """记录诊断条目并返回其文本。"""
        getattr(self._logger, level)(event, message=message, **kwargs)
        return f"{event}: {message}"

    def verbose(self, event: str, **kwargs: Any) -> None:
        """详细模式下输出调试信息。"""
        if self._verbose:
            self._logger.info(event, **kwargs)

    def exception(self, event: str, **kwargs: Any) -> None:
        """记录委托函数异常。"""
        self._logger.exception(event, **kwargs)


def log_risk_event(
    logger: structlog.stdlib.BoundLogger,
    *,
    event_type: str,
    action: str,
    **kwargs: Any,
) -> None:
    """记录风控事件。"""
    logger.warning(
        "risk_event",
        event_type=event_type,
        action=action,
        **kwargs,
    )


def log_finalized_signal(
    logger: structlog.stdlib.BoundLogger,
    *,
    coin: str,
    signal_type: str,
    confidence: float,
    **kwargs: Any,
) -> None:
    """记录定稿后的信号。"""
    logger.info(
        "signal_finalized",
        coin=coin,
        signal_type=signal_type,
        confidence=round(confidence, 4),
        **kwargs,
    )
