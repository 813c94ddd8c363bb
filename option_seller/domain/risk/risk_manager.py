"""Non-bypassable daily risk checks."""
import logging
from dataclasses import dataclass

from option_seller.domain.models import ExitReason

logger = logging.getLogger(__name__)


@dataclass
class RiskDecision:
    allowed: bool
    reason: str


class DailyStopLossGuard:
    """Counts stop-loss exits for the session and blocks entries at the cap."""

    def __init__(self, max_stop_losses_per_day: int):
        self.max_stop_losses_per_day = max_stop_losses_per_day
        self.stop_loss_count = 0

    @property
    def cap_reached(self) -> bool:
        return self.stop_loss_count >= self.max_stop_losses_per_day

    def record_exit(self, reason: ExitReason) -> bool:
        """Register an exit; returns True when this exit reached the cap."""
        if reason != ExitReason.STOP_LOSS:
            return False
        self.stop_loss_count += 1
        logger.warning(
            f"Stop loss {self.stop_loss_count}/{self.max_stop_losses_per_day} for the day"
        )
        return self.stop_loss_count == self.max_stop_losses_per_day

    def check_entry(self) -> RiskDecision:
        if self.cap_reached:
            return RiskDecision(
                allowed=False,
                reason=f"daily stop-loss cap reached ({self.stop_loss_count}/{self.max_stop_losses_per_day})",
            )
        return RiskDecision(allowed=True, reason="ok")
