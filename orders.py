"""
Orders: the status lifecycle, the client-side order history and the webhook
Order Recorder that writes the authoritative record.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, PyMongoError

from errors import ConfigurationError, InvalidTransition, PaymentError
from payments import SHIPPING_LINE_NAME
from schemas import (
    CartLine,
    Customer,
    Order,
    OrderStatus,
    RecordedAddress,
    RecordedItem,
    RecordedOrder,
    ShippingAddress,
    StatusEvent,
    utcnow,
)
from storage import ORDERS_KEY, Storage

logger = structlog.get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"

STATUS_COLORS: Dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "#2563eb",
    OrderStatus.PROCESSING: "#7c3aed",
    OrderStatus.SHIPPED: "#0891b2",
    OrderStatus.OUT_FOR_DELIVERY: "#ea580c",
    OrderStatus.DELIVERED: "#16a34a",
    OrderStatus.CANCELLED: "#dc2626",
}

STATUS_LABELS: Dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "Order Confirmed",
    OrderStatus.PROCESSING: "Processing",
    OrderStatus.SHIPPED: "Shipped",
    OrderStatus.OUT_FOR_DELIVERY: "Out for Delivery",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.CANCELLED: "Cancelled",
}

for _mapping in (STATUS_COLORS, STATUS_LABELS):
    if set(_mapping) != set(OrderStatus):
        raise RuntimeError(f"Status mapping incomplete: {set(OrderStatus) - set(_mapping)}")

FULFILLMENT_CHAIN = {
    OrderStatus.CONFIRMED: OrderStatus.PROCESSING,
    OrderStatus.PROCESSING: OrderStatus.SHIPPED,
    OrderStatus.SHIPPED: OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.OUT_FOR_DELIVERY: OrderStatus.DELIVERED,
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    if target == OrderStatus.CANCELLED:
        return current not in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)
    return FULFILLMENT_CHAIN.get(current) == target


def status_color(status: OrderStatus) -> str:
    return STATUS_COLORS[OrderStatus(status)]


def status_label(status: OrderStatus) -> str:
    return STATUS_LABELS[OrderStatus(status)]


class OrderManager:
    """Order history cached in client storage, newest first."""

    def __init__(self, storage: Storage):
        self.storage = storage
        self.orders: List[Order] = []
        self.load()

    def load(self) -> None:
        self.orders = [Order(**o) for o in self.storage.load_json(ORDERS_KEY, default=[])]

    def save(self) -> None:
        self.storage.save_json(ORDERS_KEY, [o.model_dump(mode="json") for o in self.orders])

    def create_order(self, order_id: str, items: List[CartLine], customer: Customer,
                     shipping_address: ShippingAddress, subtotal: Decimal, shipping: Decimal) -> Order:
        order = Order(
            order_id=order_id,
            customer=customer,
            shipping_address=shipping_address,
            items=[line.model_copy() for line in items],
            subtotal=subtotal,
            shipping=shipping,
            total=subtotal + shipping,
            status_history=[StatusEvent(status=OrderStatus.CONFIRMED, message="Order confirmed")],
        )
        self.orders.insert(0, order)
        self.save()
        return order

    def get_order(self, order_id: str) -> Optional[Order]:
        return next((o for o in self.orders if o.order_id == order_id), None)

    def get_all_orders(self) -> List[Order]:
        return list(self.orders)

    def link_session(self, order_id: str, session_id: str) -> None:
        order = self.get_order(order_id)
        if order:
            order.stripe_session_id = session_id
            self.save()

    def update_status(self, order_id: str, status: OrderStatus, message: str = "") -> Order:
        order = self.get_order(order_id)
        if order is None:
            raise KeyError(order_id)
        status = OrderStatus(status)
        if not can_transition(order.status, status):
            raise InvalidTransition(order.status, status)
        order.status = status
        order.status_history.append(StatusEvent(status=status, message=message or status_label(status)))
        self.save()
        return order


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    for k, v in list(doc.items()):
        if isinstance(v, (datetime, date)):
            doc[k] = v.isoformat()
    return doc


class OrderRepository:
    """Webhook-written orders. stripe_session_id is unique (see database.ensure_indexes)."""

    def __init__(self, collection: Collection):
        self.collection = collection

    def record(self, order: RecordedOrder) -> bool:
        """Insert the order unless its session was already recorded. Returns True on insert."""
        doc = order.model_dump(mode="json")
        doc["created_at"] = order.created_at
        try:
            result = self.collection.update_one(
                {"stripe_session_id": order.stripe_session_id},
                {"$setOnInsert": doc},
                upsert=True,
            )
        except DuplicateKeyError:
            # A concurrent redelivery won the insert
            return False
        return result.upserted_id is not None

    def get_by_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        doc = self.collection.find_one({"stripe_session_id": session_id})
        return serialize_doc(doc) if doc else None

    def list_recent(self, limit: int = 100) -> List[Dict[str, Any]]:
        cursor = self.collection.find({}).sort("created_at", -1).limit(limit)
        return [serialize_doc(d) for d in cursor]


def _shipping_details(session: Dict[str, Any]) -> Dict[str, Any]:
    collected = session.get("collected_information") or {}
    return session.get("shipping_details") or collected.get("shipping_details") or {}


def build_recorded_order(session: Dict[str, Any], items: List[Dict[str, Any]]) -> RecordedOrder:
    """
    Map a completed Checkout Session onto the stored order. Shipping is charged
    as its own line item, so it is moved out of the goods and the subtotal here.
    """
    shipping = _shipping_details(session)
    customer = session.get("customer_details") or {}
    totals = session.get("total_details") or {}
    goods = [it for it in items if it.get("name") != SHIPPING_LINE_NAME]
    shipping_charged = sum(it.get("price") or 0 for it in items if it.get("name") == SHIPPING_LINE_NAME)

    address = None
    if shipping.get("address"):
        addr = shipping["address"]
        address = RecordedAddress(**{k: addr.get(k) or "" for k in RecordedAddress.model_fields})

    now = utcnow()
    return RecordedOrder(
        stripe_session_id=session["id"],
        stripe_payment_intent=session.get("payment_intent"),
        order_ref=session.get("client_reference_id") or (session.get("metadata") or {}).get("order_ref"),
        customer_email=customer.get("email") or session.get("customer_email") or "unknown",
        customer_name=shipping.get("name") or customer.get("name") or "Guest",
        customer_phone=customer.get("phone"),
        shipping_name=shipping.get("name"),
        shipping_address=address,
        amount_subtotal=round((session.get("amount_subtotal") or 0) / 100 - shipping_charged, 2),
        amount_shipping=round((totals.get("amount_shipping") or 0) / 100 + shipping_charged, 2),
        amount_total=(session.get("amount_total") or 0) / 100,
        currency=(session.get("currency") or "usd").upper(),
        payment_status=session.get("payment_status"),
        order_status=OrderStatus.CONFIRMED,
        status_history=[{"status": OrderStatus.CONFIRMED.value, "timestamp": now.isoformat(), "message": "Payment received"}],
        items=[RecordedItem(**it) for it in goods],
        created_at=now,
    )


class OrderRecorder:
    """
    Handles verified Stripe events. Only checkout completion writes an order;
    everything else is acknowledged and ignored.
    """

    def __init__(self, repository: OrderRepository, gateway):
        self.repository = repository
        self.gateway = gateway

    def handle(self, event: Dict[str, Any]) -> Optional[RecordedOrder]:
        event_type = event.get("type")
        if event_type != CHECKOUT_COMPLETED:
            logger.info("webhook.ignored", event_type=event_type, event_id=event.get("id"))
            return None

        session = (event.get("data") or {}).get("object") or {}
        session_id = session.get("id")
        if not session_id:
            logger.warning("webhook.missing_session", event_id=event.get("id"))
            return None
        log = logger.bind(session_id=session_id)
        log.info("webhook.checkout_completed")

        try:
            items = self.gateway.list_line_items(session_id)
        except (PaymentError, ConfigurationError) as e:
            log.error("webhook.line_items_failed", error=str(e))
            items = []

        order = build_recorded_order(session, items)
        try:
            created = self.repository.record(order)
        except PyMongoError as e:
            # Payment is valid in Stripe; reconcile later rather than trigger retries
            log.error("webhook.order_save_failed", error=str(e))
            return order
        if created:
            log.info("webhook.order_saved", order_ref=order.order_ref, amount_total=order.amount_total)
        else:
            log.info("webhook.duplicate_delivery")
        return order
