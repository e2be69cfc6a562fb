"""Automatic order fulfillment through supplier integrations."""

import asyncio
import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from videoshop import metrics
from videoshop.config import settings
from videoshop.db.models import FulfillmentAttempt, Order, OrderItem, utcnow
from videoshop.db.session import AsyncSessionLocal
from videoshop.errors import NotFoundError, SupplierError
from videoshop.fulfillment.status import (
    DISPATCHED,
    ItemStatus,
    OrderFulfillment,
    aggregate_status,
    transition,
)
from videoshop.fulfillment.tasks import DelayedTaskScheduler, delayed_tasks
from videoshop.notify.mailer import MailClient, mail_client
from videoshop.suppliers import SupplierRegistry, supplier_registry
from videoshop.suppliers.base import OrderRequest

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def estimated_delivery(order: Order, item: Optional[OrderItem] = None, today: Optional[date] = None) -> date:
    """
    Delivery estimate from per-platform transit days.

    For a single item the item's platform decides; for a whole order the
    slowest platform in it does.
    """
    today = today or utcnow().date()
    if item is not None:
        days = settings.delivery_days.get(item.supplier_platform or "", settings.default_delivery_days)
    else:
        days = max(
            (
                settings.delivery_days.get(i.supplier_platform or "", settings.default_delivery_days)
                for i in order.items
            ),
            default=settings.default_delivery_days,
        )
    return today + timedelta(days=days)


def format_delivery(value: date) -> str:
    return value.strftime("%A, %B %d, %Y")


class FulfillmentEngine:
    """
    Dispatches each item of a paid order to its supplier.

    Items are processed one at a time in list order so the shared token
    cache and cooldown timers of a supplier are never raced within an
    order. A failing item is recorded and the loop moves on.
    """

    def __init__(
        self,
        session_factory=None,
        registry: Optional[SupplierRegistry] = None,
        scheduler: Optional[DelayedTaskScheduler] = None,
        mailer: Optional[MailClient] = None,
        sleep: Sleep = asyncio.sleep,
        item_delay: Optional[float] = None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.registry = registry or supplier_registry
        self.scheduler = scheduler or delayed_tasks
        self.mailer = mailer or mail_client
        self.sleep = sleep
        self.item_delay = settings.fulfillment_item_delay_seconds if item_delay is None else item_delay

    @staticmethod
    async def _load_order(db: AsyncSession, order_id: int) -> Order:
        result = await db.execute(select(Order).where(Order.id == order_id))
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    async def process_order(self, order_id: int, retry: bool = False) -> Order:
        """
        Fulfill every undispatched item of an order.

        Args:
            order_id: Order primary key
            retry: Re-open failed items (used by the retry sweep only)

        Returns:
            The order with refreshed item and aggregate statuses

        Raises:
            NotFoundError: if the order does not exist
            Exception: anything escaping the item loop, after the order has been
                marked failed with a note so the retry sweep picks it up again
        """
        ordered_item_ids: list[int] = []
        async with self.session_factory() as db:
            order = await self._load_order(db, order_id)
            logger.info(f"Processing fulfillment for order {order.order_number} ({len(order.items)} items)")

            order.status = "processing"
            order.fulfillment_status = OrderFulfillment.PROCESSING.value
            await db.commit()

            try:
                for index, item in enumerate(order.items):
                    current = ItemStatus(item.fulfillment_status)
                    if current in DISPATCHED:
                        logger.debug(f"Item {item.id} already {current.value}; not dispatching again")
                        continue
                    if current == ItemStatus.FAILED and not retry:
                        logger.debug(f"Item {item.id} failed earlier; left for the retry sweep")
                        continue

                    logger.info(
                        f"Processing item {index + 1}/{len(order.items)}: {item.product_name}"
                    )
                    transition(item, ItemStatus.PROCESSING, reopen=retry)
                    ordered = await self._dispatch_item(order, item)
                    await db.commit()
                    if ordered:
                        # Poll as soon as the supplier order is stored, even if a later item blows up
                        ordered_item_ids.append(item.id)
                        self._schedule_status_check(order.id, item.id)

                    if index < len(order.items) - 1 and self.item_delay > 0:
                        await self.sleep(self.item_delay)

                order.fulfillment_status = aggregate_status(
                    i.fulfillment_status for i in order.items
                ).value
                await db.commit()
            except Exception as e:
                logger.error(f"Order fulfillment failed for {order.order_number}: {e}", exc_info=True)
                await db.rollback()
                await self._flag_for_review(order_id, e)
                raise

        logger.info(
            f"Fulfillment pass finished for {order.order_number}: {order.fulfillment_status} "
            f"({len(ordered_item_ids)} items ordered)"
        )

        await self._notify(
            order.customer_email,
            f"Order Update - {order.order_number}",
            self._processing_body(order),
        )
        return order

    async def _dispatch_item(self, order: Order, item: OrderItem) -> bool:
        """Place one supplier order; failures are recorded on the item and the attempt log."""
        platform = item.supplier_platform or "unknown"
        customer = order.customer or {}
        try:
            client = self.registry.get(platform)
            result = await client.create_order(
                OrderRequest(
                    reference=f"{order.order_number}-{item.position + 1}",
                    product_id=item.supplier_product_id or "",
                    quantity=item.quantity,
                    shipping_address=order.shipping_address or {},
                    customer_name=customer.get("name") or (order.shipping_address or {}).get("name") or "",
                    customer_email=order.customer_email,
                    customer_phone=customer.get("phone") or settings.default_customer_phone,
                )
            )
            if not result.ok:
                raise SupplierError(
                    result.error or f"{platform} rejected the order",
                    supplier=platform,
                    response=result.response,
                )
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"Failed to fulfill item {item.product_name}: {message}")
            transition(item, ItemStatus.FAILED)
            item.fulfillment_notes = message
            order.attempts.append(
                FulfillmentAttempt(
                    order_item_id=item.id,
                    supplier=platform,
                    status="failed",
                    error=message,
                    response=e.response if isinstance(e, SupplierError) else None,
                )
            )
            metrics.fulfillment_attempts_total.labels(supplier=platform, status="failed").inc()
            return False

        transition(item, ItemStatus.ORDERED)
        item.supplier_order_id = result.supplier_order_id
        item.fulfillment_notes = f"Ordered from {platform}: {result.supplier_order_id}"
        order.attempts.append(
            FulfillmentAttempt(
                order_item_id=item.id,
                supplier=platform,
                status="success",
                response=result.response,
            )
        )
        metrics.fulfillment_attempts_total.labels(supplier=platform, status="success").inc()
        logger.info(f"{platform} order {result.supplier_order_id} placed for {item.product_name}")
        return True

    def _schedule_status_check(self, order_id: int, item_id: int):
        self.scheduler.schedule(
            settings.status_check_delay_seconds,
            self.check_item_status,
            order_id,
            item_id,
            name="fulfillment_status_check",
        )

    async def _flag_for_review(self, order_id: int, error: Exception):
        """Leave the order for the retry sweep and a human: failed fulfillment, note attached."""
        async with self.session_factory() as db:
            order = await self._load_order(db, order_id)
            order.status = "processing"
            order.fulfillment_status = OrderFulfillment.FAILED.value
            order.internal_notes = f"Auto-fulfillment failed: {error}"
            await db.commit()

    async def check_item_status(self, order_id: int, item_id: int) -> Optional[str]:
        """
        Delayed supplier poll for one ordered item.

        Returns:
            The item's status after the poll, or None when there was nothing to check
        """
        newly_shipped = False
        async with self.session_factory() as db:
            try:
                order = await self._load_order(db, order_id)
            except NotFoundError:
                logger.warning(f"Status check for missing order {order_id}")
                return None
            item = next((i for i in order.items if i.id == item_id), None)
            if item is None or not item.supplier_order_id:
                return None
            if item.fulfillment_status not in (ItemStatus.ORDERED.value, ItemStatus.SHIPPED.value):
                return item.fulfillment_status

            try:
                client = self.registry.get(item.supplier_platform or "")
            except SupplierError as e:
                logger.error(f"Status check for item {item_id}: {e}")
                return item.fulfillment_status
            result = await client.get_order_status(item.supplier_order_id)
            if result.status == "error":
                logger.warning(f"Status check failed for {item.supplier_order_id}: {result.error}")
                return item.fulfillment_status

            if result.tracking_number and item.fulfillment_status == ItemStatus.ORDERED.value:
                transition(item, ItemStatus.SHIPPED)
                item.tracking_number = result.tracking_number
                item.tracking_url = settings.tracking_url_template.format(tracking=result.tracking_number)
                item.fulfillment_notes = f"Shipped with tracking: {result.tracking_number}"
                newly_shipped = True
            if result.status == "delivered":
                transition(item, ItemStatus.DELIVERED)

            statuses = [i.fulfillment_status for i in order.items]
            now = utcnow()
            if all(s in (ItemStatus.SHIPPED.value, ItemStatus.DELIVERED.value) for s in statuses):
                if order.shipped_at is None:
                    order.shipped_at = now
                order.status = "shipped"
            if all(s == ItemStatus.DELIVERED.value for s in statuses):
                order.delivered_at = order.delivered_at or now
                order.status = "delivered"
            order.fulfillment_status = aggregate_status(statuses).value
            await db.commit()

        if newly_shipped:
            logger.info(f"Tracking updated for {item.product_name}: {item.tracking_number}")
            await self._notify(
                order.customer_email,
                f"Your order has shipped - {order.order_number}",
                self._tracking_body(order, item),
            )
        return item.fulfillment_status

    async def retry_failed(self, window_hours: Optional[int] = None) -> dict[str, int]:
        """
        Re-run fulfillment for recent paid orders marked failed.

        That covers orders whose items all failed and orders flagged after a
        crash part-way through; items already ordered are not sent again.

        Only runs when triggered (API call or the optional scheduled job).
        """
        window_hours = window_hours or settings.retry_sweep_window_hours
        cutoff = utcnow() - timedelta(hours=window_hours)
        async with self.session_factory() as db:
            result = await db.execute(
                select(Order.id, Order.order_number).where(
                    Order.fulfillment_status == OrderFulfillment.FAILED.value,
                    Order.payment_status == "paid",
                    Order.created_at >= cutoff,
                )
            )
            failed_orders = list(result.all())

        logger.info(f"Found {len(failed_orders)} orders with failed fulfillments")
        summary = {"found": len(failed_orders), "recovered": 0, "still_failed": 0, "errors": 0}
        for index, (order_id, order_number) in enumerate(failed_orders):
            logger.info(f"Retrying fulfillment for order {order_number}")
            try:
                order = await self.process_order(order_id, retry=True)
            except Exception as e:
                logger.error(f"Retry failed for order {order_number}: {e}")
                summary["errors"] += 1
            else:
                if order.fulfillment_status == OrderFulfillment.FAILED.value:
                    summary["still_failed"] += 1
                else:
                    summary["recovered"] += 1
            if index < len(failed_orders) - 1:
                await self.sleep(settings.retry_sweep_delay_seconds)
        return summary

    async def fulfillment_stats(self, days: int = 7) -> dict[str, Any]:
        """Item status and supplier counts for paid orders of the last ``days`` days."""
        cutoff = utcnow() - timedelta(days=days)
        async with self.session_factory() as db:
            result = await db.execute(
                select(Order).where(Order.payment_status == "paid", Order.created_at >= cutoff)
            )
            orders = list(result.scalars().all())

        item_counts = {status.value: 0 for status in ItemStatus}
        order_counts = {status.value: 0 for status in OrderFulfillment}
        suppliers: dict[str, dict[str, int]] = defaultdict(lambda: {"orders": 0, "items": 0})
        for order in orders:
            order_counts[order.fulfillment_status] = order_counts.get(order.fulfillment_status, 0) + 1
            for item in order.items:
                item_counts[item.fulfillment_status] = item_counts.get(item.fulfillment_status, 0) + 1
                suppliers[item.supplier_platform or "unknown"]["items"] += 1
            for platform in {item.supplier_platform or "unknown" for item in order.items}:
                suppliers[platform]["orders"] += 1

        for status, count in order_counts.items():
            metrics.orders_by_fulfillment_status.labels(status=status).set(count)

        return {
            "days": days,
            "total_orders": len(orders),
            "total_items": sum(len(order.items) for order in orders),
            "fulfillment_stats": item_counts,
            "order_stats": order_counts,
            "supplier_stats": dict(suppliers),
        }

    async def _notify(self, to: str, subject: str, body: str):
        try:
            await self.mailer.send(to, subject, body)
        except Exception as e:
            logger.warning(f"Customer notification {subject!r} failed: {e}")

    @staticmethod
    def _customer_name(order: Order) -> str:
        return (order.customer or {}).get("name") or (order.shipping_address or {}).get("name") or "there"

    def _processing_body(self, order: Order) -> str:
        lines = [f"Hi {self._customer_name(order)},", "", f"Here is the status of order {order.order_number}:", ""]
        for item in order.items:
            line = f"- {item.product_name} x{item.quantity}: {item.fulfillment_status}"
            if item.tracking_number:
                line += f" (tracking {item.tracking_number})"
            lines.append(line)
        lines += [
            "",
            f"Order total: ${order.total:.2f}",
            f"Estimated delivery: {format_delivery(estimated_delivery(order))}",
        ]
        return "\n".join(lines)

    def _tracking_body(self, order: Order, item: OrderItem) -> str:
        return "\n".join(
            [
                f"Hi {self._customer_name(order)},",
                "",
                f"{item.product_name} from order {order.order_number} is on its way.",
                f"Tracking number: {item.tracking_number}",
                f"Track it: {item.tracking_url}",
                f"Estimated delivery: {format_delivery(estimated_delivery(order, item))}",
            ]
        )


# Global engine instance
fulfillment_engine = FulfillmentEngine()
