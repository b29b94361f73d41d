from datetime import datetime, timezone
from threading import RLock
from uuid import UUID, uuid4


class InMemoryStore:
    def __init__(self) -> None:
        self.lock = RLock()
        self.transactions: dict[UUID, dict] = {}
        self.recurring_charges: dict[UUID, dict] = {}
        self.user_settings: dict[UUID, dict] = {}

    def reset(self) -> None:
        with self.lock:
            self.transactions.clear()
            self.recurring_charges.clear()
            self.user_settings.clear()

    @staticmethod
    def make_id() -> UUID:
        return uuid4()

    @staticmethod
    def now() -> datetime:
        return datetime.now(timezone.utc)


store = InMemoryStore()
