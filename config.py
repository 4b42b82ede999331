"""
Paper Trading Risk Watcher — Configuration
All tunable parameters in one place.
"""

import os
from decimal import Decimal
from dataclasses import dataclass, field
from typing import List


@dataclass
class WatcherConfig:
    interval_ms: int = 750              # Evaluation pass cadence (floor 100ms)
    cache_ttl_ms: int = 1000            # Open-position snapshot lifetime
    failure_alert_every: int = 20       # Re-alert every N failed closes per position


@dataclass
class TradingConfig:
    symbols: List[str] = field(default_factory=lambda: [
        "BTCUSDT", "ETHUSDT", "SOLUSDT",
    ])
    default_leverage: Decimal = Decimal("1")


@dataclass
class ExchangeConfig:
    testnet: bool = False
    category: str = "linear"
    request_timeout_sec: float = 10.0
    base_url_mainnet: str = "https://api.bybit.com"
    base_url_testnet: str = "https://api-testnet.bybit.com"
    ws_public_mainnet: str = "wss://stream.bybit.com/v5/public/linear"
    ws_public_testnet: str = "wss://stream-testnet.bybit.com/v5/public/linear"

    @property
    def base_url(self) -> str:
        return self.base_url_testnet if self.testnet else self.base_url_mainnet

    @property
    def ws_public_url(self) -> str:
        return self.ws_public_testnet if self.testnet else self.ws_public_mainnet


@dataclass
class NotificationConfig:
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    enabled: bool = True


@dataclass
class StorageConfig:
    db_path: str = "./data/paper.db"


@dataclass
class BotConfig:
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    trading: TradingConfig = field(default_factory=TradingConfig)
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Load config with environment variable overrides."""
        config = cls()
        config.watcher.interval_ms = int(os.getenv("RISK_WATCH_INTERVAL_MS", str(config.watcher.interval_ms)))
        config.watcher.cache_ttl_ms = int(os.getenv("RISK_CACHE_TTL_MS", str(config.watcher.cache_ttl_ms)))
        symbols = os.getenv("SYMBOLS", "")
        if symbols.strip():
            config.trading.symbols = [s.strip().upper() for s in symbols.split(",") if s.strip()]
        config.trading.default_leverage = Decimal(os.getenv("DEFAULT_LEVERAGE", "1"))
        config.exchange.testnet = os.getenv("BYBIT_TESTNET", "false").lower() == "true"
        config.notifications.telegram_bot_token = os.getenv("TELEGRAM_BOT_TOKEN", "")
        config.notifications.telegram_chat_id = os.getenv("TELEGRAM_CHAT_ID", "")
        config.storage.db_path = os.getenv("DB_PATH", config.storage.db_path)
        config.log_level = os.getenv("LOG_LEVEL", "INFO")
        return config
