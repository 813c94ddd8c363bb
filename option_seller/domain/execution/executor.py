"""Market order placement with bounded retries and status verification."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from option_seller.domain.models import Instrument, OrderSide
from option_seller.domain.services.config_engine import OrderConfig, RetryConfig
from option_seller.infrastructure.broker.errors import (
    OrderPlacementError,
    OrderRejectedError,
    TransientBrokerError,
)
from option_seller.infrastructure.broker.types import BrokerClient

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class OrderExecutor:
    """
    Places one market order per call.

    Only TransientBrokerError is retried. Authentication, validation and
    rejection errors propagate on the first occurrence.
    """

    def __init__(
        self,
        broker: BrokerClient,
        order: OrderConfig,
        retry: RetryConfig,
        exchange: str,
        sleep: Sleep = asyncio.sleep,
    ):
        self.broker = broker
        self.order = order
        self.retry = retry
        self.exchange = exchange
        self._sleep = sleep

    async def place(self, instrument: Instrument, side: OrderSide, quantity: int) -> str:
        symbol = instrument.tradingsymbol
        last_error: Optional[TransientBrokerError] = None

        for attempt in range(1, self.retry.max_attempts + 1):
            try:
                order_id = await self.broker.place_order(
                    exchange=instrument.exchange or self.exchange,
                    tradingsymbol=symbol,
                    side=side,
                    quantity=quantity,
                    product=self.order.product,
                    order_type=self.order.order_type,
                )
            except TransientBrokerError as exc:
                last_error = exc
                logger.warning(
                    f"{symbol}: {side} x{quantity} attempt {attempt}/{self.retry.max_attempts} failed: {exc}"
                )
                if attempt < self.retry.max_attempts:
                    await self._sleep(self.retry.retry_delay_seconds)
                continue

            logger.info(f"{symbol}: {side} x{quantity} placed, order_id={order_id}")
            await self._verify(order_id, symbol)
            return order_id

        raise OrderPlacementError(
            f"{symbol}: {side} x{quantity} not placed after {self.retry.max_attempts} attempts: {last_error}",
            attempts=self.retry.max_attempts,
        )

    async def _verify(self, order_id: str, symbol: str) -> None:
        await self._sleep(self.retry.status_check_delay_seconds)
        try:
            status = await self.broker.get_order_status(order_id)
        except TransientBrokerError as exc:
            # The order exists; resubmitting would duplicate it
            logger.warning(f"{symbol}: status check for {order_id} failed, accepting order: {exc}")
            return

        if status.is_rejected:
            raise OrderRejectedError(
                f"{symbol}: order {order_id} {status.status}: {status.status_message or 'no reason given'}"
            )
        logger.info(f"{symbol}: order {order_id} status {status.status}")
