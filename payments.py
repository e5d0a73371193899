"""
Stripe collaborator: checkout session creation, webhook signature
verification and line item lookup.
"""

import json
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

import stripe
import structlog

from cart import shipping_cost
from config import Settings
from errors import ConfigurationError, PaymentError, SignatureError
from schemas import CheckoutItem, CheckoutSessionOut

logger = structlog.get_logger(__name__)

SHIPPING_LINE_NAME = "Shipping"
SHIPPING_DESCRIPTION = "Standard shipping (Free on orders over ${threshold})"


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_major_units(amount: Optional[int]) -> float:
    return round((amount or 0) / 100, 2)


def _absolute_image_url(image: str, site_url: str) -> str:
    if image.startswith(("http://", "https://")):
        return image
    return f"{site_url}/{image.lstrip('/')}"


def build_line_items(items: List[CheckoutItem], settings: Settings) -> List[Dict[str, Any]]:
    line_items = []
    for it in items:
        line_items.append({
            "price_data": {
                "currency": settings.currency,
                "product_data": {
                    "name": it.name,
                    "images": [_absolute_image_url(it.image, settings.site_url)] if it.image else [],
                    "description": it.description or f"Handcrafted Kondappali Toy - {it.name}",
                },
                "unit_amount": to_minor_units(it.price),
            },
            "quantity": it.quantity,
        })

    subtotal = sum((it.price * it.quantity for it in items), Decimal("0"))
    shipping = shipping_cost(subtotal, settings.free_shipping_threshold, settings.flat_shipping_fee)
    if shipping > 0:
        line_items.append({
            "price_data": {
                "currency": settings.currency,
                "product_data": {
                    "name": SHIPPING_LINE_NAME,
                    "description": SHIPPING_DESCRIPTION.format(threshold=f"{settings.free_shipping_threshold:.2f}"),
                },
                "unit_amount": to_minor_units(shipping),
            },
            "quantity": 1,
        })
    return line_items


def configure_stripe(settings: Settings) -> None:
    """Install one bounded HTTP client for the process; call once at startup."""
    stripe.default_http_client = stripe.RequestsClient(timeout=settings.stripe_timeout)
    stripe.max_network_retries = 1


class StripeGateway:
    def __init__(self, settings: Settings):
        self.settings = settings

    def _api_key(self) -> str:
        if not self.settings.stripe_api_key:
            raise ConfigurationError("STRIPE_API_KEY not set")
        return self.settings.stripe_api_key

    def create_checkout_session(self, items: List[CheckoutItem], customer_email: Optional[str] = None,
                                order_ref: Optional[str] = None) -> CheckoutSessionOut:
        api_key = self._api_key()
        params: Dict[str, Any] = {
            "payment_method_types": ["card"],
            "line_items": build_line_items(items, self.settings),
            "mode": "payment",
            "success_url": f"{self.settings.site_url}/order-success.html?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{self.settings.site_url}/cart.html",
            "billing_address_collection": "required",
            "shipping_address_collection": {"allowed_countries": self.settings.allowed_countries},
            "metadata": {"order_source": "kondappali_toys_website"},
        }
        if customer_email:
            params["customer_email"] = customer_email
        if order_ref:
            params["client_reference_id"] = order_ref
            params["metadata"]["order_ref"] = order_ref
        try:
            session = stripe.checkout.Session.create(api_key=api_key, **params)
        except stripe.StripeError as e:
            logger.error("stripe.session_failed", error=str(e))
            raise PaymentError(e.user_message or "Payment provider error") from e
        logger.info("stripe.session_created", session_id=session.id, order_ref=order_ref)
        return CheckoutSessionOut(session_id=session.id, url=session.url)

    def verify_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Check the Stripe-Signature header and return the decoded event."""
        secret = self.settings.stripe_webhook_secret
        if not secret:
            raise ConfigurationError("STRIPE_WEBHOOK_SECRET not set")
        if not signature:
            raise SignatureError("Missing Stripe-Signature header")
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SignatureError("Invalid payload") from e
        try:
            stripe.WebhookSignature.verify_header(body, signature, secret, self.settings.webhook_tolerance)
        except stripe.SignatureVerificationError as e:
            raise SignatureError(str(e)) from e
        try:
            return json.loads(body)
        except ValueError as e:
            raise SignatureError("Invalid payload") from e

    def list_line_items(self, session_id: str) -> List[Dict[str, Any]]:
        api_key = self._api_key()
        try:
            result = stripe.checkout.Session.list_line_items(session_id, api_key=api_key, limit=100)
        except stripe.StripeError as e:
            raise PaymentError(f"Could not load line items for {session_id}") from e
        return [
            {"name": item.description, "quantity": item.quantity, "price": to_major_units(item.amount_total)}
            for item in result.data
        ]
