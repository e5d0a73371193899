"""
Checkout: contact/shipping form validation and the client-side checkout
state machine (draft -> submitting -> awaiting_payment -> confirmed).

Payment confirmation shown here is provisional. The order written by the
Stripe webhook is the record of truth; the two are linked by order_ref.
"""

import re
import secrets
import string
import time
from enum import Enum
from typing import Dict, List, Optional

import requests
import structlog

from cart import CartStore
from errors import PaymentError, ValidationFailed
from notifications import Notifier
from orders import OrderManager
from schemas import CheckoutItem, CheckoutSessionOut, Customer, Order, OrderStatus, ShippingAddress

logger = structlog.get_logger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^[0-9]{10}$")
POSTAL_RE = re.compile(r"^[0-9]{6}$")

REQUIRED_FIELDS = ["first_name", "last_name", "email", "phone", "address", "city", "state", "pincode"]

_BASE36 = string.digits + string.ascii_uppercase


def validate_field(name: str, value: Optional[str], required: bool = True) -> Optional[str]:
    """Return the error message for one form field, or None if it is valid."""
    value = (value or "").strip()
    if required and not value:
        return "This field is required"
    if not value:
        return None
    if name == "email" and not EMAIL_RE.match(value):
        return "Please enter a valid email address"
    if name == "phone" and not PHONE_RE.match(re.sub(r"\s", "", value)):
        return "Please enter a valid 10-digit phone number"
    if name == "pincode" and not POSTAL_RE.match(value):
        return "Please enter a valid 6-digit pincode"
    return None


def validate_form(data: Dict[str, str]) -> Dict[str, str]:
    errors = {}
    for name in REQUIRED_FIELDS:
        error = validate_field(name, data.get(name))
        if error:
            errors[name] = error
    return errors


class CheckoutForm:
    """Inline validation: checked on blur, re-checked on edit once a field has an error."""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.errors: Dict[str, str] = {}

    def _check(self, name: str) -> bool:
        error = validate_field(name, self.values.get(name))
        if error:
            self.errors[name] = error
        else:
            self.errors.pop(name, None)
        return error is None

    def blur(self, name: str, value: str) -> bool:
        self.values[name] = value
        return self._check(name)

    def edit(self, name: str, value: str) -> bool:
        self.values[name] = value
        if name in self.errors:
            return self._check(name)
        return True

    def validate(self, data: Optional[Dict[str, str]] = None) -> bool:
        if data is not None:
            self.values.update(data)
        self.errors = validate_form(self.values)
        return not self.errors

    def customer(self) -> Customer:
        v = {k: (self.values.get(k) or "").strip() for k in REQUIRED_FIELDS}
        return Customer(first_name=v["first_name"], last_name=v["last_name"], email=v["email"], phone=v["phone"])

    def shipping_address(self) -> ShippingAddress:
        v = {k: (self.values.get(k) or "").strip() for k in REQUIRED_FIELDS}
        return ShippingAddress(street=v["address"], city=v["city"], state=v["state"], postal_code=v["pincode"])


def generate_order_id(now: Optional[float] = None) -> str:
    millis = int((time.time() if now is None else now) * 1000)
    stamp = ""
    while millis:
        millis, rem = divmod(millis, 36)
        stamp = _BASE36[rem] + stamp
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"KON{stamp or '0'}{suffix}"


class PaymentSessionClient:
    """Calls the shop's own /api/create-checkout endpoint."""

    def __init__(self, base_url: str, timeout: float = 15.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()

    def create_session(self, items: List[CheckoutItem], customer_email: Optional[str] = None,
                       order_ref: Optional[str] = None) -> CheckoutSessionOut:
        body = {
            "items": [it.model_dump(mode="json", exclude_none=True) for it in items],
            "customerEmail": customer_email,
            "orderRef": order_ref,
        }
        try:
            r = self.http.post(f"{self.base_url}/api/create-checkout", json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise PaymentError("Could not reach the payment service") from e
        if r.status_code != 200:
            try:
                message = r.json().get("message") or r.json().get("detail")
            except ValueError:
                message = None
            raise PaymentError(message or f"Checkout failed ({r.status_code})")
        return CheckoutSessionOut(**r.json())


class CheckoutState(str, Enum):
    DRAFT = "draft"
    SUBMITTING = "submitting"
    AWAITING_PAYMENT = "awaiting_payment"
    CONFIRMED = "confirmed"


class CheckoutFlow:
    def __init__(self, cart: CartStore, orders: OrderManager, payments: PaymentSessionClient,
                 notifier: Optional[Notifier] = None):
        self.cart = cart
        self.orders = orders
        self.payments = payments
        self.notifier = notifier or cart.notifier
        self.form = CheckoutForm()
        self.state = CheckoutState.DRAFT
        self.order: Optional[Order] = None
        self.session: Optional[CheckoutSessionOut] = None

    def submit(self, data: Dict[str, str]) -> Optional[str]:
        """
        Validate the form and request a payment session. Returns the URL to
        redirect the shopper to, or None if the payment service failed (the
        cart and form are left as they were).

        Raises ValidationFailed with one message per invalid field.
        """
        if self.state != CheckoutState.DRAFT:
            raise RuntimeError(f"Checkout already {self.state.value}")
        if self.cart.is_empty():
            raise ValidationFailed({"cart": "Your cart is empty"})
        if not self.form.validate(data):
            raise ValidationFailed(dict(self.form.errors))

        self.state = CheckoutState.SUBMITTING
        order_id = generate_order_id()
        lines = self.cart.lines()
        items = [CheckoutItem(name=line.name, price=line.price, quantity=line.quantity, image=line.image or None)
                 for line in lines]
        customer = self.form.customer()
        try:
            session = self.payments.create_session(items, customer_email=customer.email, order_ref=order_id)
        except PaymentError as e:
            logger.warning("checkout.session_failed", order_ref=order_id, error=str(e))
            self.state = CheckoutState.DRAFT
            self.notifier.show(str(e) or "Checkout failed, please try again", "error")
            return None

        self.session = session
        self.order = self.orders.create_order(
            order_id=order_id,
            items=lines,
            customer=customer,
            shipping_address=self.form.shipping_address(),
            subtotal=self.cart.get_total(),
            shipping=self.cart.shipping(),
        )
        self.orders.link_session(order_id, session.session_id)
        self.state = CheckoutState.AWAITING_PAYMENT
        logger.info("checkout.awaiting_payment", order_ref=order_id, session_id=session.session_id)
        return session.url

    def payment_returned(self, session_id: str) -> Optional[Order]:
        """Shopper came back on the success URL. Shows the provisional order and empties the cart."""
        if self.state != CheckoutState.AWAITING_PAYMENT or not self.session or self.session.session_id != session_id:
            return None
        self.state = CheckoutState.CONFIRMED
        self.cart.clear()
        return self.order

    def payment_cancelled(self) -> None:
        """Shopper came back on the cancel URL; the cart is still intact."""
        if self.state == CheckoutState.AWAITING_PAYMENT:
            if self.order:
                self.orders.update_status(self.order.order_id, OrderStatus.CANCELLED, "Payment cancelled")
            self.state = CheckoutState.DRAFT
            self.session = None
            self.order = None
