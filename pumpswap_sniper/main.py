import asyncio
import logging
import platform
import signal
import sys

from pumpswap_sniper.config import RiskConfigManager, Settings
from pumpswap_sniper.core.engine import create_engine
from pumpswap_sniper.exceptions import ConfigurationError
from pumpswap_sniper.logger import setup_logging

logger = logging.getLogger(__name__)


async def main() -> int:
    settings = Settings.from_env()
    setup_logging(settings.LOG_LEVEL, settings.LOG_DIR)

    try:
        settings.validate()
        config_manager = RiskConfigManager(settings.RISK_CONFIG_PATH)
        errors = config_manager.validate()
        if errors:
            raise ConfigurationError("Invalid risk config", errors="; ".join(errors))
        engine = create_engine(settings, config_manager.get_config())
    except ConfigurationError as e:
        logger.critical("❌ Configuration error: %s", e)
        return 1

    loop = asyncio.get_running_loop()
    if platform.system() != "Windows":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, engine.request_shutdown)
    else:
        signal.signal(signal.SIGINT, lambda *_: loop.call_soon_threadsafe(engine.request_shutdown))

    try:
        await engine.run()
    finally:
        await engine.close()
        summary = engine.store.pnl_summary()
        logger.info("📊 Realized PnL %.6f SOL over %d closed positions (%d open)",
                    summary["total_realized_pnl"], summary["closed_count"], summary["open_count"])
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
