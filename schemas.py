"""
Database Schemas

Pydantic models for the shop. Models stored in MongoDB map to a collection
named after the lowercased class name:
- Order -> "order" collection

The remaining models describe client-side state (cart, filters, checkout
form) and request/response bodies.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Category(BaseModel):
    id: str = Field(..., description="URL-friendly category identifier")
    name: str
    icon: str = ""


class Product(BaseModel):
    """
    Catalog product, immutable for the lifetime of a session
    """
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    price: Decimal = Field(..., ge=0)
    original_price: Decimal = Field(..., ge=0, description="Price before discount")
    category: str = Field(..., description="Category id")
    artisan: str
    rating: float = Field(0.0, ge=0, le=5)
    reviews: int = Field(0, ge=0)
    popularity: int = 0
    in_stock: bool = True
    image: str = ""
    description: str = ""


class CartLine(BaseModel):
    """
    One product in the cart. name/price/image are snapshotted at add-time.
    """
    id: int = Field(..., description="Product id")
    name: str
    price: Decimal = Field(..., ge=0)
    image: str = ""
    quantity: int = Field(1, ge=1)

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


class SortKey(str, Enum):
    POPULARITY = "popularity"
    PRICE_LOW = "price-low"
    PRICE_HIGH = "price-high"
    NAME = "name"
    RATING = "rating"


class ViewMode(str, Enum):
    GRID = "grid"
    LIST = "list"


class FilterState(BaseModel):
    category: str = "all"
    price_range: str = "all"
    sort_by: SortKey = SortKey.POPULARITY
    search: str = ""
    view: ViewMode = ViewMode.GRID
    page: int = Field(1, ge=1)


class OrderStatus(str, Enum):
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class StatusEvent(BaseModel):
    status: OrderStatus
    timestamp: datetime = Field(default_factory=utcnow)
    message: str = ""


class Customer(BaseModel):
    first_name: str
    last_name: str
    email: str
    phone: str


class ShippingAddress(BaseModel):
    street: str
    city: str
    state: str
    postal_code: str


class Order(BaseModel):
    """
    Client-side order snapshot taken at checkout. Provisional until the
    payment webhook records the authoritative copy.
    """
    order_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    customer: Customer
    shipping_address: ShippingAddress
    items: List[CartLine]
    subtotal: Decimal
    shipping: Decimal
    total: Decimal
    status: OrderStatus = OrderStatus.CONFIRMED
    status_history: List[StatusEvent] = []
    provisional: bool = True
    stripe_session_id: Optional[str] = None


class RecordedAddress(BaseModel):
    line1: str = ""
    line2: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""


class RecordedItem(BaseModel):
    name: str
    quantity: int
    price: float = Field(..., description="Line amount in major units")


class RecordedOrder(BaseModel):
    """
    Order written by the payment webhook
    Collection name: "order"
    """
    stripe_session_id: str = Field(..., description="Unique per payment session")
    stripe_payment_intent: Optional[str] = None
    order_ref: Optional[str] = Field(None, description="Client order id echoed by Stripe")
    customer_email: str = "unknown"
    customer_name: str = "Guest"
    customer_phone: Optional[str] = None
    shipping_name: Optional[str] = None
    shipping_address: Optional[RecordedAddress] = None
    amount_subtotal: float = 0.0
    amount_shipping: float = 0.0
    amount_total: float = 0.0
    currency: str = "USD"
    payment_status: Optional[str] = None
    order_status: OrderStatus = OrderStatus.CONFIRMED
    status_history: List[Dict[str, Any]] = []
    items: List[RecordedItem] = []
    created_at: datetime = Field(default_factory=utcnow)


# --- Request / response bodies ---

class CheckoutItem(BaseModel):
    name: str
    price: Decimal = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    image: Optional[str] = None
    description: Optional[str] = None


class CheckoutSessionIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: List[CheckoutItem] = []
    customer_email: Optional[str] = Field(None, alias="customerEmail")
    order_ref: Optional[str] = Field(None, alias="orderRef")


class CheckoutSessionOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    url: str
