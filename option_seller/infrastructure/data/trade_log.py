import csv
import logging
from pathlib import Path
from typing import List, Tuple

from option_seller.domain.models import TradeAction, TradeRecord

logger = logging.getLogger(__name__)

CSV_HEADER = ["timestamp", "instrument", "action", "price", "quantity", "orderId", "pnl", "reason"]


class TradeLog:
    """
    Append-only record of the session's trades.

    Records are immutable; the log only grows. ``flush`` rewrites the CSV
    with everything recorded so far, so it is safe to call repeatedly.
    """

    def __init__(self):
        self._records: List[TradeRecord] = []

    def append(self, record: TradeRecord) -> None:
        self._records.append(record)

    def records(self) -> Tuple[TradeRecord, ...]:
        return tuple(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def day_pnl(self) -> float:
        return sum(r.pnl for r in self._records if r.action == TradeAction.EXIT and r.pnl is not None)

    def flush(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(CSV_HEADER)
            for record in self._records:
                writer.writerow([
                    record.timestamp.isoformat(),
                    record.instrument,
                    record.action.value,
                    f"{record.price:.2f}",
                    record.quantity,
                    record.order_id or "",
                    "" if record.pnl is None else f"{record.pnl:.2f}",
                    record.reason,
                ])
        logger.info(f"Trade log flushed: {len(self._records)} records -> {path}")
        return path
