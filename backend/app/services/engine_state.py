from __future__ import annotations

from datetime import datetime
from typing import Dict

from app.schemas import PricePoint, PriceSnapshot


class EngineState:
    """Holds the one current snapshot.

    Only the engine tick calls ``replace``. Readers grab ``current`` once and
    keep working off that object; the swap is a single attribute assignment.
    """

    def __init__(self, initial: PriceSnapshot | None = None) -> None:
        self._current = initial if initial is not None else PriceSnapshot()
        self._version = 0

    @property
    def current(self) -> PriceSnapshot:
        return self._current

    @property
    def version(self) -> int:
        return self._version

    @property
    def generated_at(self) -> datetime | None:
        return self._current.generated_at if self._version else None

    def replace(self, snapshot: PriceSnapshot) -> PriceSnapshot:
        previous = self._current
        self._current = snapshot
        self._version += 1
        return previous

    def price_map(self) -> Dict[str, float]:
        return self._current.price_map()

    def get(self, symbol: str) -> PricePoint | None:
        return self._current.prices.get(symbol.strip().upper())
