import pytest

from exchange.models import Position
from storage.database import Database


@pytest.fixture
def db(tmp_path):
    """Connected SQLite store in a temp dir."""
    database = Database(str(tmp_path / "paper.db"))
    database.connect()
    yield database
    database.close()


def make_position(pid="p1", symbol="BTCUSDT", side="LONG", qty="1", entry="100", tp=None, sl=None, **kwargs):
    return Position(
        id=pid,
        symbol=symbol,
        side=side,
        qty=qty,
        entry_price=entry,
        tp_price=tp,
        sl_price=sl,
        **kwargs,
    )


class RecordingNotifier:
    """Stands in for TelegramNotifier; records calls instead of sending."""

    def __init__(self):
        self.closed = []
        self.failures = []

    async def send_position_closed(self, **kwargs):
        self.closed.append(kwargs)

    async def send_trigger_failure(self, **kwargs):
        self.failures.append(kwargs)
