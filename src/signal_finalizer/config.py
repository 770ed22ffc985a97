"""配置加载模块 - 从环境变量和 .env 文件加载策略常量与日志配置。"""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogFormat(str, Enum):
    """日志格式枚举。"""

    JSON = "json"
    CONSOLE = "console"


class Settings(BaseSettings):
    """信号定稿流水线配置。

    从环境变量和 .env 文件加载配置，默认值即为策略常量。
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==================== 置信度 ====================
    min_confidence_threshold: float = Field(
        default=0.60,
        ge=0.0,
        le=1.0,
        description="最低准入置信度（缺失/无效时的默认值）",
    )
    confidence_floor: float = Field(
        default=0.10,
        ge=0.0,
        le=1.0,
        description="评分异常时的置信度下限",
    )
    confidence_high: float = Field(default=0.60, ge=0.0, le=1.0, description="高置信度阈值")
    confidence_medium: float = Field(default=0.40, ge=0.0, le=1.0, description="中置信度阈值")
    confidence_low: float = Field(default=0.35, ge=0.0, le=1.0, description="低置信度阈值")
    confidence_reject: float = Field(default=0.30, ge=0.0, le=1.0, description="拒绝阈值")

    # ==================== 仓位与风险 ====================
    leverage: float = Field(default=10.0, gt=0.0, le=100.0, description="固定杠杆倍数")
    risk_per_signal_pct: float = Field(
        default=2.0,
        gt=0.0,
        le=10.0,
        description="单信号风险（分配资金百分比）",
    )
    contrarian_risk_multiplier: float = Field(
        default=0.5,
        gt=0.0,
        le=1.0,
        description="逆势信号风险系数",
    )
    default_account_balance: float = Field(
        default=90.0,
        gt=0.0,
        description="账户净值与可用资金均缺失时的默认余额",
    )

    # ==================== 止损 ====================
    stop_loss_wick_buffer_pct: float = Field(
        default=0.3,
        ge=0.0,
        le=2.0,
        description="影线缓冲（百分比）",
    )
    stop_loss_fallback_pct: float = Field(
        default=2.0,
        gt=0.0,
        le=20.0,
        description="ATR 不可用时的止损百分比",
    )
    extreme_volatility_atr_pct: float = Field(
        default=5.0,
        gt=0.0,
        description="高波动行情下跳过开仓的 ATR 百分比",
    )

    # ==================== 止盈 ====================
    ai_target_min_pct: float = Field(default=2.0, ge=0.0, description="AI 止盈最小幅度（百分比）")
    ai_target_max_pct: float = Field(default=5.0, gt=0.0, description="AI 止盈最大幅度（百分比）")
    min_risk_reward: float = Field(default=2.5, gt=0.0, description="最低盈亏比")
    min_risk_reward_low_confidence: float = Field(
        default=3.0,
        gt=0.0,
        description="低置信度/逆势信号的最低盈亏比",
    )

    # ==================== 日志配置 ====================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="日志级别",
    )
    log_format: LogFormat = Field(
        default=LogFormat.CONSOLE,
        description="日志输出格式",
    )
    verbose_logging: bool = Field(default=False, description="是否输出详细诊断日志")

    @model_validator(mode="after")
    def check_target_band(self) -> "Settings":
        """校验 AI 止盈区间。"""
        if self.ai_target_min_pct > self.ai_target_max_pct:
            raise ValueError("ai_target_min_pct must not exceed ai_target_max_pct")
        return self

    @property
    def wick_buffer(self) -> float:
        """影线缓冲（小数）。"""
        return self.stop_loss_wick_buffer_pct / 100.0


class ConfidenceThresholds(BaseModel):
    """置信度阈值。"""

    high: float = 0.60
    medium: float = 0.40
    low: float = 0.35
    reject: float = 0.30


class Thresholds(BaseModel):
    """阈值集合。"""

    confidence: ConfidenceThresholds = Field(default_factory=ConfidenceThresholds)


class TradingConfig(BaseModel):
    """交易配置（只读）。"""

    thresholds: Thresholds = Field(default_factory=Thresholds)


def get_trading_config(settings: Settings | None = None) -> TradingConfig:
    """根据配置构建交易配置。"""
    settings = settings or get_settings()
    return TradingConfig(
        thresholds=Thresholds(
            confidence=ConfidenceThresholds(
                high=settings.confidence_high,
                medium=settings.confidence_medium,
                low=settings.confidence_low,
                reject=settings.confidence_reject,
            )
        )
    )


# 全局配置实例（延迟初始化）
_settings: Settings | None = None


def get_settings() -> Settings:
    """获取全局配置实例。"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """重新加载配置。"""
    global _settings
    _settings = Settings()
    return _settings
