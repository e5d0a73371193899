from decimal import Decimal
from typing import List, Optional

import structlog

from config import Settings
from notifications import Notifier
from schemas import CartLine, Product
from storage import CART_KEY, Storage

logger = structlog.get_logger(__name__)

MAX_QUANTITY = 10


def shipping_cost(subtotal: Decimal, threshold: Decimal, fee: Decimal) -> Decimal:
    """Flat fee below the free-shipping threshold, nothing for an empty cart."""
    if subtotal <= 0 or subtotal >= threshold:
        return Decimal("0.00")
    return fee


class CartStore:
    """
    Product id -> cart line, persisted as one JSON list under CART_KEY.

    The store is loaded once per session. Call reload() to pick up a change
    written to the same storage by someone else.
    """

    def __init__(self, storage: Storage, notifier: Optional[Notifier] = None, settings: Optional[Settings] = None):
        self.storage = storage
        self.notifier = notifier or Notifier()
        self.settings = settings or Settings()
        self.items: List[CartLine] = []
        self.reload()

    def reload(self) -> None:
        saved = self.storage.load_json(CART_KEY, default=[])
        self.items = [CartLine(**line) for line in saved]

    def save(self) -> None:
        self.storage.save_json(CART_KEY, [line.model_dump(mode="json") for line in self.items])

    def _find(self, product_id: int) -> Optional[CartLine]:
        return next((line for line in self.items if line.id == product_id), None)

    def add(self, product: Product, quantity: int = 1) -> CartLine:
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        line = self._find(product.id)
        if line:
            line.quantity += quantity
        else:
            line = CartLine(id=product.id, name=product.name, price=product.price, image=product.image, quantity=quantity)
            self.items.append(line)
        self.save()
        logger.debug("cart.add", product_id=product.id, quantity=line.quantity)
        self.notifier.show(f"{product.name} added to cart!", "success")
        return line

    def remove(self, product_id: int) -> None:
        self.items = [line for line in self.items if line.id != product_id]
        self.save()

    def update_quantity(self, product_id: int, quantity: int) -> None:
        line = self._find(product_id)
        if not line:
            return
        if quantity < 1:
            self.remove(product_id)
            return
        line.quantity = quantity
        self.save()

    def change_quantity(self, product_id: int, quantity: int) -> None:
        """Quantity change coming from the cart page controls."""
        if quantity < 1:
            self.remove(product_id)
            self.notifier.show("Item removed from cart")
            return
        if quantity > MAX_QUANTITY:
            quantity = MAX_QUANTITY
            self.notifier.show(f"Maximum quantity is {MAX_QUANTITY}")
        self.update_quantity(product_id, quantity)

    def lines(self) -> List[CartLine]:
        return [line.model_copy() for line in self.items]

    def get_total(self) -> Decimal:
        return sum((line.line_total for line in self.items), Decimal("0"))

    def get_item_count(self) -> int:
        return sum(line.quantity for line in self.items)

    def shipping(self) -> Decimal:
        return shipping_cost(self.get_total(), self.settings.free_shipping_threshold, self.settings.flat_shipping_fee)

    def grand_total(self) -> Decimal:
        return self.get_total() + self.shipping()

    def is_empty(self) -> bool:
        return not self.items

    def clear(self) -> None:
        self.items = []
        self.save()
