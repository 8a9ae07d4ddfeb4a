"""
Client-side cart and wishlist stores.

Each store keeps a local copy of one user's lines keyed by product id. A
mutation is applied locally first, then persisted through the backend; if the
backend call fails the local change is rolled back and a notice is recorded
for the user. After every successful mutation the store reconciles with the
backend's view.

The signed-in user comes from an explicit Session rather than ambient state.
"""
import logging
from typing import Dict, List, Optional

from pymongo.database import Database
from starlette.concurrency import run_in_threadpool

import cart
from errors import AuthRequired, MarketError, ValidationFailure

logger = logging.getLogger(__name__)


class Session:
    def __init__(self, user: Optional[dict] = None):
        self.user = user

    @property
    def user_id(self) -> Optional[str]:
        return self.user["id"] if self.user else None

    def require_user(self, redirect_to: Optional[str] = None) -> str:
        if not self.user:
            raise AuthRequired(redirect_to=redirect_to)
        return self.user["id"]

    def sign_in(self, user: dict) -> None:
        self.user = user

    def sign_out(self) -> None:
        self.user = None


class MongoCartBackend:
    def __init__(self, db: Database):
        self.db = db

    async def list(self, user_id: str) -> List[dict]:
        return await run_in_threadpool(cart.list_cart, self.db, user_id)

    async def add(self, user_id: str, product_id: str, quantity: int) -> dict:
        return await run_in_threadpool(cart.add_to_cart, self.db, user_id, product_id, quantity)

    async def set_quantity(self, user_id: str, product_id: str, quantity: int) -> Optional[dict]:
        return await run_in_threadpool(cart.update_cart_quantity, self.db, user_id, product_id, quantity)

    async def remove(self, user_id: str, product_id: str) -> bool:
        return await run_in_threadpool(cart.remove_from_cart, self.db, user_id, product_id)

    async def clear(self, user_id: str) -> int:
        return await run_in_threadpool(cart.clear_cart, self.db, user_id)


class MongoWishlistBackend:
    def __init__(self, db: Database):
        self.db = db

    async def list(self, user_id: str) -> List[dict]:
        return await run_in_threadpool(cart.list_wishlist, self.db, user_id)

    async def add(self, user_id: str, product_id: str) -> dict:
        return await run_in_threadpool(cart.add_to_wishlist, self.db, user_id, product_id)

    async def remove(self, user_id: str, product_id: str) -> bool:
        return await run_in_threadpool(cart.remove_from_wishlist, self.db, user_id, product_id)


class _Store:
    noun = "items"

    def __init__(self, backend, session: Session):
        self.backend = backend
        self.session = session
        self.lines: Dict[str, dict] = {}
        self.notices: List[str] = []
        self.loaded_for: Optional[str] = None

    def _user(self, redirect_to: str) -> str:
        return self.session.require_user(redirect_to)

    def _notify(self, message: str) -> None:
        self.notices.append(message)

    async def load(self) -> List[dict]:
        if not self.session.user:
            self.lines = {}
            self.loaded_for = None
            return []
        user_id = self.session.user_id
        try:
            lines = await self.backend.list(user_id)
        except MarketError as e:
            logger.error("loading %s for %s failed: %s", self.noun, user_id, e)
            self._notify(f"Failed to load {self.noun}")
            return list(self.lines.values())
        self.lines = {line["product_id"]: line for line in lines}
        self.loaded_for = user_id
        return lines

    async def _mutate(self, apply, persist, failure: str) -> bool:
        before = dict(self.lines)
        apply()
        try:
            await persist()
        except MarketError as e:
            self.lines = before
            logger.error("%s: %s", failure, e)
            self._notify(e.message if isinstance(e, ValidationFailure) else failure)
            return False
        await self.load()
        return True

    @property
    def items(self) -> List[dict]:
        return list(self.lines.values())

    def __contains__(self, product_id: str) -> bool:
        return product_id in self.lines

    def __len__(self) -> int:
        return len(self.lines)


class CartStore(_Store):
    noun = "cart items"

    @property
    def total_items(self) -> int:
        return sum(int(line["quantity"]) for line in self.lines.values())

    @property
    def total_price(self) -> float:
        return cart.cart_total(list(self.lines.values()))

    async def add(self, product_id: str, quantity: int = 1, price: Optional[float] = None) -> bool:
        user_id = self._user("/cart")
        if quantity < 1:
            raise ValidationFailure("Quantity must be at least 1")

        def apply():
            line = dict(self.lines.get(product_id) or {"product_id": product_id, "user_id": user_id,
                                                         "quantity": 0, "price": price or 0})
            line["quantity"] = int(line["quantity"]) + quantity
            self.lines[product_id] = line

        return await self._mutate(apply, lambda: self.backend.add(user_id, product_id, quantity),
                                  "Failed to add product to cart")

    async def update_quantity(self, product_id: str, quantity: int) -> bool:
        user_id = self._user("/cart")
        if quantity < 0:
            raise ValidationFailure("Quantity cannot be negative")

        def apply():
            if quantity == 0:
                self.lines.pop(product_id, None)
            elif product_id in self.lines:
                self.lines[product_id] = {**self.lines[product_id], "quantity": quantity}

        return await self._mutate(apply, lambda: self.backend.set_quantity(user_id, product_id, quantity),
                                  "Failed to update cart")

    async def remove(self, product_id: str) -> bool:
        user_id = self._user("/cart")
        return await self._mutate(lambda: self.lines.pop(product_id, None),
                                  lambda: self.backend.remove(user_id, product_id),
                                  "Failed to remove item from cart")

    async def clear(self) -> bool:
        user_id = self._user("/cart")
        return await self._mutate(self.lines.clear, lambda: self.backend.clear(user_id),
                                  "Failed to clear cart")


class WishlistStore(_Store):
    noun = "wishlist items"

    async def add(self, product_id: str) -> bool:
        user_id = self._user("/wishlist")

        def apply():
            self.lines.setdefault(product_id, {"product_id": product_id, "user_id": user_id})

        return await self._mutate(apply, lambda: self.backend.add(user_id, product_id),
                                  "Failed to add product to wishlist")

    async def remove(self, product_id: str) -> bool:
        user_id = self._user("/wishlist")
        return await self._mutate(lambda: self.lines.pop(product_id, None),
                                  lambda: self.backend.remove(user_id, product_id),
                                  "Failed to remove item from wishlist")

    async def toggle(self, product_id: str) -> bool:
        if product_id in self.lines:
            return await self.remove(product_id)
        return await self.add(product_id)
