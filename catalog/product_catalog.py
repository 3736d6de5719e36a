from __future__ import annotations

import logging
import re
import threading
from dataclasses import replace
from typing import Any, Iterable

from catalog import fuzzy_matcher
from core.errors import NotFoundError, ValidationError
from core.models import Product
from store.kv_interface import KeyValueStoreProtocol

logger = logging.getLogger(__name__)

STOCK_KEY_PREFIX = "stock:"
EDITABLE_FIELDS = ("name", "price", "description", "stock", "category")
_PRODUCT_ID = re.compile(r"^[a-z0-9][a-z0-9_-]{0,49}$")


class ProductCatalog:
    """Product metadata in process, stock counters in the key-value store.

    Callers only ever receive ``Product`` snapshots; stock changes go through
    the store's atomic counter primitives.
    """

    def __init__(
        self,
        kv_store: KeyValueStoreProtocol,
        products: Iterable[Product] | None = None,
    ) -> None:
        self.kv_store = kv_store
        self._lock = threading.Lock()
        self._products: dict[str, Product] = {}
        for product in products or []:
            self._register(product, overwrite_stock=False)

    @classmethod
    def from_config(cls, kv_store: KeyValueStoreProtocol, config: dict[str, Any]) -> "ProductCatalog":
        cconf = config.get("catalog", {})
        default_price = int(cconf.get("default_price", 15800))
        products: list[Product] = []
        for raw in cconf.get("products", []) or []:
            if not isinstance(raw, dict):
                continue
            products.append(
                Product(
                    id=str(raw.get("id", "")).strip().lower(),
                    name=str(raw.get("name", "")).strip(),
                    description=str(raw.get("description", "")).strip(),
                    unit_price=int(raw.get("price", default_price)),
                    stock=max(0, int(raw.get("stock", 0))),
                    category=str(raw.get("category", "premium")).strip() or "premium",
                )
            )
        return cls(kv_store, products)

    def list_products(self, category: str | None = None) -> list[Product]:
        with self._lock:
            items = list(self._products.values())
        if category:
            items = [item for item in items if item.category == category]
        return [self._with_stock(item) for item in items]

    def get(self, product_id: str) -> Product | None:
        key = str(product_id or "").strip().lower()
        with self._lock:
            found = self._products.get(key)
        return self._with_stock(found) if found else None

    def find(self, query: str) -> Product | None:
        return fuzzy_matcher.search(self.list_products(), query)

    def stock(self, product_id: str) -> int:
        return int(self.kv_store.get_counter(_stock_key(product_id)) or 0)

    def set_stock(self, product_id: str, quantity: int) -> Product:
        product = self._require(product_id)
        quantity = int(quantity)
        if quantity < 0:
            raise ValidationError("stock quantity must be zero or positive")
        self.kv_store.set_counter(_stock_key(product.id), quantity)
        logger.info("stock-set: product=%s quantity=%s", product.id, quantity)
        return replace(product, stock=quantity)

    def reserve(self, counts: dict[str, int]) -> str | None:
        """Atomically take ``counts`` units per product.

        Returns None on success, otherwise the first product id that could not
        be covered; units already taken in this call are given back.
        """
        taken: list[tuple[str, int]] = []
        for product_id, amount in counts.items():
            if self.kv_store.decrement_if_sufficient(_stock_key(product_id), int(amount)) is None:
                for done_id, done_amount in taken:
                    self.kv_store.incr(_stock_key(done_id), done_amount)
                return product_id
            taken.append((product_id, int(amount)))
        return None

    def release(self, counts: dict[str, int]) -> None:
        for product_id, amount in counts.items():
            self.kv_store.incr(_stock_key(product_id), int(amount))

    def decrement(self, product_id: str, amount: int = 1) -> bool:
        return self.kv_store.decrement_if_sufficient(_stock_key(product_id), int(amount)) is not None

    def add_product(self, product: Product) -> Product:
        if not _PRODUCT_ID.match(product.id):
            raise ValidationError("product id must be lowercase letters, digits, '-' or '_'")
        if not product.name:
            raise ValidationError("product name is required")
        if product.unit_price <= 0:
            raise ValidationError("price must be positive")
        if product.stock < 0:
            raise ValidationError("stock must be zero or positive")
        with self._lock:
            if product.id in self._products:
                raise ValidationError(f"product already exists: {product.id}")
        self._register(product, overwrite_stock=True)
        return self._with_stock(product)

    def edit_product(self, product_id: str, field_name: str, value: str) -> Product:
        product = self._require(product_id)
        name = str(field_name or "").strip().lower()
        if name not in EDITABLE_FIELDS:
            raise ValidationError(f"field must be one of: {', '.join(EDITABLE_FIELDS)}")
        text = str(value or "").strip()
        if not text:
            raise ValidationError("value is required")

        if name == "stock":
            return self.set_stock(product.id, _parse_int(text, "stock"))
        if name == "price":
            price = _parse_int(text, "price")
            if price <= 0:
                raise ValidationError("price must be positive")
            updated = replace(product, unit_price=price)
        elif name == "name":
            updated = replace(product, name=text)
        elif name == "description":
            updated = replace(product, description=text)
        else:
            updated = replace(product, category=text.lower())

        with self._lock:
            self._products[product.id] = updated
        return self._with_stock(updated)

    def remove_product(self, product_id: str) -> Product:
        product = self._require(product_id)
        with self._lock:
            self._products.pop(product.id, None)
        self.kv_store.delete(_stock_key(product.id))
        return product

    def _register(self, product: Product, overwrite_stock: bool) -> None:
        with self._lock:
            self._products[product.id] = product
        key = _stock_key(product.id)
        if overwrite_stock or self.kv_store.get_counter(key) is None:
            self.kv_store.set_counter(key, max(0, int(product.stock)))

    def _require(self, product_id: str) -> Product:
        product = self.get(product_id)
        if product is None:
            raise NotFoundError(f"product not found: {product_id}")
        return product

    def _with_stock(self, product: Product) -> Product:
        return replace(product, stock=self.stock(product.id))


def _stock_key(product_id: str) -> str:
    return f"{STOCK_KEY_PREFIX}{str(product_id or '').strip().lower()}"


def _parse_int(text: str, label: str) -> int:
    try:
        return int(str(text).replace(".", "").replace(",", "").strip())
    except ValueError as exc:
        raise ValidationError(f"{label} must be a number") from exc
