"""CLI 入口模块 - Signal Finalizer 命令行接口。"""

import json
import sys
from importlib import import_module
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as package_version
from pathlib import Path

import click
from pydantic import ValidationError

from signal_finalizer import __version__
from signal_finalizer.ai.schemas import SignalFinalizerError
from signal_finalizer.config import Settings, get_settings, get_trading_config
from signal_finalizer.pipeline import finalize_response
from signal_finalizer.types import AccountState
from signal_finalizer.utils.logging import SignalObserver, get_logger, setup_logging


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="显示版本号")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """Signal Finalizer - AI 交易信号定稿与风险参数化。

    将 AI 提出的信号转换为带止损、止盈、仓位和置信度的交易意图。
    """
    if version:
        click.echo(f"signal-finalizer version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.option("--asset", "-a", required=True, help="资产代码，例如 BTC")
@click.option(
    "--response",
    "response_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="AI 原始响应文本文件",
)
@click.option(
    "--snapshot",
    "snapshot_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="指标快照 JSON 文件（资产代码 -> 快照字段）",
)
@click.option("--account-value", type=float, default=None, help="账户净值")
@click.option("--available-cash", type=float, default=None, help="可用资金")
@click.option(
    "--capital-per-signal",
    type=float,
    default=None,
    help="每个信号分配的资金（默认使用账户余额）",
)
@click.option("--verbose", is_flag=True, default=False, help="输出详细诊断日志")
def finalize(
    asset: str,
    response_path: Path,
    snapshot_path: Path,
    account_value: float | None,
    available_cash: float | None,
    capital_per_signal: float | None,
    verbose: bool,
) -> None:
    """定稿单个资产的 AI 信号并输出 JSON。

    解析响应 → 失效条件 → 止损 → 仓位 → 止盈 → 置信度
    """
    settings = get_settings()
    if verbose:
        settings = settings.model_copy(update={"verbose_logging": True})
    setup_logging(settings)
    logger = get_logger("signal_finalizer.main")

    try:
        market_data = json.loads(snapshot_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        logger.error("snapshot_file_invalid", path=str(snapshot_path), error=str(e))
        sys.exit(1)

    account = AccountState(account_value=account_value, available_cash=available_cash)
    if capital_per_signal is None:
        capital_per_signal = account.balance(settings.default_account_balance)

    observer = SignalObserver.from_settings(settings, "signal_finalizer.pipeline")
    try:
        signal = finalize_response(
            response_path.read_text(encoding="utf-8"),
            asset.upper(),
            market_data,
            account,
            capital_per_signal,
            settings=settings,
            trading_config=get_trading_config(settings),
            observer=observer,
        )
    except SignalFinalizerError as e:
        logger.error("finalize_failed", asset=asset, error=str(e))
        sys.exit(1)

    click.echo(signal.model_dump_json(indent=2, exclude_none=True))


@cli.command()
def status() -> None:
    """显示当前生效的策略参数。"""
    setup_logging()
    settings = get_settings()

    click.echo("=" * 50)
    click.echo("Signal Finalizer - Status")
    click.echo("=" * 50)
    click.echo()

    # 置信度
    click.echo("[Confidence]")
    click.echo(f"   Minimum / default: {settings.min_confidence_threshold:.2f}")
    click.echo(f"   Scoring floor: {settings.confidence_floor:.2f}")
    click.echo(
        f"   Thresholds: high {settings.confidence_high:.2f}, "
        f"medium {settings.confidence_medium:.2f}, "
        f"low {settings.confidence_low:.2f}, reject {settings.confidence_reject:.2f}"
    )
    click.echo()

    # 风控参数
    click.echo("[Risk Parameters]")
    click.echo(f"   Leverage: {settings.leverage:g}x")
    click.echo(f"   Risk per signal: {settings.risk_per_signal_pct}%")
    click.echo(f"   Contrarian risk multiplier: {settings.contrarian_risk_multiplier}")
    click.echo(f"   Wick buffer: {settings.stop_loss_wick_buffer_pct}%")
    click.echo(f"   Fallback stop: {settings.stop_loss_fallback_pct}%")
    click.echo(f"   Extreme volatility ATR: {settings.extreme_volatility_atr_pct}%")
    click.echo()

    # 止盈参数
    click.echo("[Take Profit]")
    click.echo(f"   AI target band: {settings.ai_target_min_pct}% - {settings.ai_target_max_pct}%")
    click.echo(f"   Minimum R:R: {settings.min_risk_reward}")
    click.echo(f"   Minimum R:R (low confidence / contrarian): {settings.min_risk_reward_low_confidence}")
    click.echo()

    # 日志配置
    click.echo("[Logging]")
    click.echo(f"   Log level: {settings.log_level}")
    click.echo(f"   Log format: {settings.log_format.value}")
    click.echo(f"   Verbose diagnostics: {'Yes' if settings.verbose_logging else 'No'}")
    click.echo()
    click.echo("=" * 50)


# 运行时依赖：(导入名, 分发包名, 用途)
RUNTIME_PACKAGES = (
    ("pydantic", "pydantic", "signal and snapshot records"),
    ("pydantic_settings", "pydantic-settings", "policy settings"),
    ("pandas", "pandas", "candle history"),
    ("structlog", "structlog", "structured logging"),
    ("click", "click", "command line"),
)

_SELF_CHECK_RESPONSE = '{"coin": "BTC", "signal": "buy_to_enter", "entry_price": 100, "confidence": 0.7}'
_SELF_CHECK_SNAPSHOT = {"BTC": {"price": 100.0, "atr": 2.0}}


def _package_status(import_name: str, dist_name: str) -> str | None:
    """返回已安装版本；无法导入时返回 None。"""
    try:
        import_module(import_name)
    except ImportError:
        return None
    try:
        return package_version(dist_name)
    except PackageNotFoundError:
        return "unknown version"


@cli.command()
def check() -> None:
    """检查依赖、策略配置，并用内置样例跑一次定稿。

    任一项失败时以状态码 1 退出。
    """
    setup_logging()
    logger = get_logger("signal_finalizer.main")
    failures: list[str] = []

    click.echo("[Packages]")
    for import_name, dist_name, purpose in RUNTIME_PACKAGES:
        installed = _package_status(import_name, dist_name)
        if installed is None:
            click.echo(f"  [MISSING] {import_name} ({purpose})")
            failures.append(import_name)
        else:
            click.echo(f"  [OK] {import_name} {installed} ({purpose})")

    click.echo("[Settings]")
    env_note = ".env loaded" if Path(".env").exists() else "no .env, defaults in use"
    settings: Settings | None = None
    try:
        settings = Settings()
    except ValidationError as e:
        for err in e.errors():
            field = ".".join(str(part) for part in err["loc"]) or "settings"
            click.echo(f"  [INVALID] {field}: {err['msg']}")
        failures.append("settings")
    else:
        click.echo(f"  [OK] {env_note}, minimum confidence {settings.min_confidence_threshold:.2f}")

    click.echo("[Sample signal]")
    if settings is None:
        click.echo("  [SKIP] settings are invalid")
    else:
        try:
            sample = finalize_response(
                _SELF_CHECK_RESPONSE,
                "BTC",
                _SELF_CHECK_SNAPSHOT,
                AccountState(account_value=1000.0),
                1000.0,
                settings=settings,
                trading_config=get_trading_config(settings),
            )
        except Exception as e:  # noqa: BLE001 - 自检需报告任何失败
            click.echo(f"  [FAILED] {e}")
            failures.append("sample")
        else:
            click.echo(
                f"  [OK] stop {sample.stop_loss}, target {sample.profit_target}, "
                f"confidence {sample.confidence:.2f}"
            )

    logger.info("self_check_completed", failures=failures)
    if failures:
        click.echo(f"[ERROR] check failed: {', '.join(failures)}")
        sys.exit(1)
    click.echo("[OK] ready")


# 支持 python -m signal_finalizer.main 调用
if __name__ == "__main__":
    cli()
