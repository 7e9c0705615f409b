from __future__ import annotations

from typing import Dict, Iterable, List

from app.schemas import Holding, HoldingKind, PriceSnapshot, ValuationUpdate


def project_valuations(snapshot: PriceSnapshot, holdings: Iterable[Holding]) -> Dict[HoldingKind, List[ValuationUpdate]]:
    """Value each priced holding at ``price * quantity``, grouped by store table.

    Holdings without a price this tick are left out rather than zeroed.
    """
    updates: Dict[HoldingKind, List[ValuationUpdate]] = {"investment": [], "commodity": []}
    for holding in holdings:
        point = snapshot.prices.get(holding.symbol)
        if point is None:
            continue
        updates[holding.kind].append(ValuationUpdate(id=holding.id, current_value=point.price * holding.quantity))
    return updates
