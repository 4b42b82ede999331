"""
Paper Trading Risk Watcher — Main Orchestrator.
Ties all components together: startup, price stream, TP/SL watcher, shutdown.
"""

from __future__ import annotations
import asyncio
import os
import sys
import signal
import logging

from dotenv import load_dotenv

# Load .env file before anything else
load_dotenv()

# Create data dir before FileHandler
os.makedirs("data", exist_ok=True)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-7s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler("data/watcher.log"),
    ],
)
logger = logging.getLogger(__name__)

from config import BotConfig
from exchange.bybit_rest import BybitRestClient
from exchange.bybit_ws import BybitTickerStream
from notifications.telegram import TelegramNotifier
from storage.database import Database
from trading.position_closer import PositionCloser
from trading.price_feed import PriceFeed
from trading.quick_trade import QuickTradeService
from trading.risk_watcher import RiskWatcher, start_risk_watcher


class Bot:
    """Main bot orchestrator."""

    def __init__(self, config: BotConfig):
        self.config = config
        self._running = False
        self.watcher: RiskWatcher | None = None

        self.db = Database(config.storage.db_path)
        self.client = BybitRestClient(
            base_url=config.exchange.base_url,
            category=config.exchange.category,
            timeout_sec=config.exchange.request_timeout_sec,
        )
        self.notifier = TelegramNotifier(
            bot_token=config.notifications.telegram_bot_token,
            chat_id=config.notifications.telegram_chat_id,
            enabled=config.notifications.enabled,
        )
        self.price_feed = PriceFeed()
        self.stream = BybitTickerStream(config.exchange.ws_public_url, self.price_feed)
        self.closer = PositionCloser(
            self.db,
            self.notifier,
            alert_every=config.watcher.failure_alert_every,
        )
        self.quick_trade = QuickTradeService(
            self.db,
            self.price_feed,
            client=self.client,
            default_leverage=config.trading.default_leverage,
            stream=self.stream,
        )

    async def start(self):
        """Full startup sequence."""
        logger.info("=" * 60)
        logger.info("   PAPER TRADING RISK WATCHER — STARTING")
        logger.info("=" * 60)

        # 1. Connect database
        os.makedirs(os.path.dirname(self.config.storage.db_path) or "data", exist_ok=True)
        self.db.connect()

        # 2. Symbols to watch: configured pairs plus anything with an open position
        symbols = sorted(set(self.config.trading.symbols) | set(self.db.get_open_symbols()))
        logger.info(f"[BOOT] Watching {len(symbols)} symbols: {', '.join(symbols)}")

        # 3. Seed last prices so the first pass has something to compare
        try:
            self.price_feed.seed_from_tickers(await self.client.get_tickers())
        except Exception as e:
            logger.warning(f"[BOOT] Price seed failed, waiting for stream: {e}")

        # 4. Price stream (quick trades add their symbols later)
        await self.stream.watch(symbols)

        # 5. Risk watcher (runs its first pass immediately)
        self._running = True
        self.watcher = start_risk_watcher(
            fetch_open_positions=self.db.get_open_positions,
            resolve_last_price=self.price_feed.get_last_price,
            on_trigger=self.closer.close,
            interval_ms=self.config.watcher.interval_ms,
            cache_ttl_ms=self.config.watcher.cache_ttl_ms,
            on_trigger_error=self.closer.on_close_failed,
        )

        await self.notifier.send_bot_status(
            f"Started ✅\nSymbols: {len(symbols)}\n"
            f"Open positions: {len(self.db.get_open_positions())}"
        )
        logger.info("[BOOT] ✅ All systems go. Running...")

        await self.stream.run()

    async def stop(self):
        """Graceful shutdown."""
        if not self._running:
            return
        logger.info("[SHUTDOWN] Stopping bot...")
        self._running = False

        if self.watcher:
            self.watcher.stop()
            await self.watcher.join()
            stats = self.watcher.stats
            logger.info(
                f"[SHUTDOWN] Watcher: {stats.passes} passes, {stats.triggers} closes, "
                f"{stats.trigger_failures} failed closes, {stats.skipped_ticks} skipped ticks"
            )
        await self.stream.close()
        await self.client.close()
        await self.notifier.send_bot_status("Stopped 🔴")
        await self.notifier.close()
        self.db.close()

        logger.info("[SHUTDOWN] Complete.")


async def main():
    """Entry point."""
    config = BotConfig.from_env()
    logging.getLogger().setLevel(config.log_level.upper())

    bot = Bot(config)

    # Graceful shutdown handler
    if sys.platform != "win32":
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}. Initiating shutdown...")
            asyncio.create_task(bot.stop())

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))

    try:
        await bot.start()
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received in main loop.")
        await bot.stop()
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        await bot.stop()
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
