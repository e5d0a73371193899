from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from errors import ConfigurationError, InvalidTransition, PaymentError
from orders import (
    STATUS_COLORS,
    STATUS_LABELS,
    OrderManager,
    OrderRecorder,
    OrderRepository,
    build_recorded_order,
    can_transition,
    status_color,
    status_label,
)
from schemas import CartLine, Customer, OrderStatus, RecordedOrder, ShippingAddress
from storage import ORDERS_KEY, MemoryStorage
from tests.conftest import FakeCollection

SESSION = {
    "id": "cs_test_abc",
    "object": "checkout.session",
    "payment_intent": "pi_123",
    "client_reference_id": "KONABC1234",
    "customer_details": {"email": "asha@example.com", "name": "Asha Rao", "phone": "+911234567890"},
    "shipping_details": {
        "name": "Asha Rao",
        "address": {"line1": "12 Temple Street", "line2": None, "city": "Vijayawada",
                    "state": "AP", "postal_code": "520001", "country": "IN"},
    },
    "amount_subtotal": 4500,
    "amount_total": 5099,
    "total_details": {"amount_shipping": 0},
    "currency": "usd",
    "payment_status": "paid",
}


class FakeGateway:
    def __init__(self, items=None, fail=False, error=PaymentError("stripe down")):
        self.items = items if items is not None else [{"name": "Royal Elephant", "quantity": 1, "price": 28.5}]
        self.fail = fail
        self.error = error

    def list_line_items(self, session_id):
        if self.fail:
            raise self.error
        return self.items


def completed_event(session=None):
    return {"id": "evt_1", "type": "checkout.session.completed", "data": {"object": session or SESSION}}


def test_status_mappings_cover_every_status():
    assert set(STATUS_COLORS) == set(OrderStatus)
    assert set(STATUS_LABELS) == set(OrderStatus)
    assert status_label("out_for_delivery") == "Out for Delivery"
    assert status_color(OrderStatus.CANCELLED) == "#dc2626"


@pytest.mark.parametrize("current,target,allowed", [
    (OrderStatus.CONFIRMED, OrderStatus.PROCESSING, True),
    (OrderStatus.PROCESSING, OrderStatus.SHIPPED, True),
    (OrderStatus.SHIPPED, OrderStatus.OUT_FOR_DELIVERY, True),
    (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED, True),
    (OrderStatus.CONFIRMED, OrderStatus.SHIPPED, False),
    (OrderStatus.SHIPPED, OrderStatus.PROCESSING, False),
    (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED, True),
    (OrderStatus.DELIVERED, OrderStatus.CANCELLED, False),
    (OrderStatus.CANCELLED, OrderStatus.CANCELLED, False),
])
def test_can_transition(current, target, allowed):
    assert can_transition(current, target) is allowed


def make_manager(storage=None):
    manager = OrderManager(storage or MemoryStorage())
    manager.create_order(
        order_id="KON1",
        items=[CartLine(id=1, name="Toy", price=Decimal("10.00"), quantity=2)],
        customer=Customer(first_name="Asha", last_name="Rao", email="a@b.co", phone="1234567890"),
        shipping_address=ShippingAddress(street="1 St", city="X", state="Y", postal_code="123456"),
        subtotal=Decimal("20.00"),
        shipping=Decimal("5.99"),
    )
    return manager


def test_order_manager_create_and_persist():
    storage = MemoryStorage()
    manager = make_manager(storage)
    order = manager.get_order("KON1")

    assert order.total == Decimal("25.99")
    assert [e.status for e in order.status_history] == [OrderStatus.CONFIRMED]
    assert storage.load_json(ORDERS_KEY)[0]["order_id"] == "KON1"
    assert OrderManager(storage).get_order("KON1").total == Decimal("25.99")


def test_order_manager_newest_first():
    manager = make_manager()
    manager.create_order("KON2", [], Customer(first_name="a", last_name="b", email="c@d.ef", phone="1"),
                         ShippingAddress(street="s", city="c", state="s", postal_code="p"),
                         Decimal("0"), Decimal("0"))
    assert [o.order_id for o in manager.get_all_orders()] == ["KON2", "KON1"]


def test_update_status_appends_history():
    manager = make_manager()
    manager.update_status("KON1", OrderStatus.PROCESSING)
    order = manager.update_status("KON1", "shipped", "Handed to courier")

    assert order.status == OrderStatus.SHIPPED
    assert [(e.status, e.message) for e in order.status_history] == [
        (OrderStatus.CONFIRMED, "Order confirmed"),
        (OrderStatus.PROCESSING, "Processing"),
        (OrderStatus.SHIPPED, "Handed to courier"),
    ]


def test_update_status_rejects_illegal_move():
    manager = make_manager()
    with pytest.raises(InvalidTransition):
        manager.update_status("KON1", OrderStatus.DELIVERED)
    assert manager.get_order("KON1").status == OrderStatus.CONFIRMED


def test_update_status_unknown_order():
    with pytest.raises(KeyError):
        make_manager().update_status("missing", OrderStatus.CANCELLED)


def test_build_recorded_order_converts_minor_units():
    order = build_recorded_order(SESSION, [{"name": "Royal Elephant", "quantity": 1, "price": 28.5}])

    assert order.stripe_session_id == "cs_test_abc"
    assert order.stripe_payment_intent == "pi_123"
    assert order.order_ref == "KONABC1234"
    assert order.amount_total == 50.99
    assert order.amount_subtotal == 45.0
    assert order.currency == "USD"
    assert order.customer_email == "asha@example.com"
    assert order.shipping_address.line2 == ""
    assert order.shipping_address.country == "IN"
    assert order.order_status == OrderStatus.CONFIRMED


def test_build_recorded_order_moves_shipping_line_out_of_goods():
    session = dict(SESSION, amount_subtotal=4599, amount_total=4599)
    items = [
        {"name": "Royal Elephant", "quantity": 1, "price": 40.0},
        {"name": "Shipping", "quantity": 1, "price": 5.99},
    ]

    order = build_recorded_order(session, items)

    assert [it.name for it in order.items] == ["Royal Elephant"]
    assert order.amount_shipping == 5.99
    assert order.amount_subtotal == 40.0
    assert order.amount_total == 45.99


def test_build_recorded_order_reads_collected_information():
    session = dict(SESSION)
    shipping = session.pop("shipping_details")
    session["collected_information"] = {"shipping_details": shipping}
    session.pop("customer_details")
    session["customer_email"] = "fallback@example.com"

    order = build_recorded_order(session, [])
    assert order.shipping_name == "Asha Rao"
    assert order.customer_email == "fallback@example.com"


def test_repository_record_is_idempotent():
    collection = FakeCollection()
    repo = OrderRepository(collection)
    order = build_recorded_order(SESSION, [])

    assert repo.record(order) is True
    assert repo.record(build_recorded_order(SESSION, [])) is False
    assert len(collection.docs) == 1
    assert repo.get_by_session("cs_test_abc")["order_ref"] == "KONABC1234"


def test_repository_lists_newest_first():
    repo = OrderRepository(FakeCollection())
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    for n in range(3):
        repo.record(RecordedOrder(stripe_session_id=f"cs_{n}", created_at=base + timedelta(days=n)))

    listed = repo.list_recent(2)
    assert [o["stripe_session_id"] for o in listed] == ["cs_2", "cs_1"]
    assert listed[0]["created_at"].startswith("2026-01-03")
    assert "_id" not in listed[0] and listed[0]["id"]


def test_recorder_ignores_other_events():
    collection = FakeCollection()
    recorder = OrderRecorder(OrderRepository(collection), FakeGateway())

    assert recorder.handle({"id": "evt_2", "type": "payment_intent.created", "data": {"object": {}}}) is None
    assert collection.docs == []


def test_recorder_writes_once_per_session():
    collection = FakeCollection()
    recorder = OrderRecorder(OrderRepository(collection), FakeGateway())

    recorder.handle(completed_event())
    recorder.handle(completed_event())

    assert len(collection.docs) == 1
    assert collection.docs[0]["items"] == [{"name": "Royal Elephant", "quantity": 1, "price": 28.5}]


def test_recorder_keeps_order_when_line_items_fail():
    collection = FakeCollection()
    recorder = OrderRecorder(OrderRepository(collection), FakeGateway(fail=True))

    order = recorder.handle(completed_event())

    assert order.items == []
    assert len(collection.docs) == 1


def test_ensure_indexes_makes_session_id_unique():
    import database

    calls = []

    class Recording(FakeCollection):
        def create_index(self, keys, **kwargs):
            calls.append((keys, kwargs))

    database.ensure_indexes({"order": Recording()})
    assert calls[0] == ([("stripe_session_id", 1)], {"unique": True})


def test_recorder_keeps_order_without_api_key():
    collection = FakeCollection()
    gateway = FakeGateway(fail=True, error=ConfigurationError("STRIPE_API_KEY not set"))
    recorder = OrderRecorder(OrderRepository(collection), gateway)

    order = recorder.handle(completed_event())

    assert order.items == []
    assert collection.docs[0]["amount_total"] == 50.99
