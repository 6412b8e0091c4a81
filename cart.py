"""
Cart engine.

Stock checks here are advisory: they look at availability at the moment of
the call but reserve nothing, so checkout may still fail later. Totals are
re-derived from the item list after every mutation.
"""
import logging
from typing import List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from auth import AuthScope
from catalog import CatalogService, check_options, product_label, resolve_unit_price
from coupons import CouponService, compute_discount, distribute_discount, to_cents
from database import create_document, new_id, now_utc, serialize_doc, to_object_id
from errors import (
    CartAlreadyExists,
    CartItemNotFound,
    CartNotFound,
    InsufficientStock,
    InventoryNotFound,
    ShopError,
    VariantNotFound,
)
from inventory import InventoryService, variant_key
from schemas import Cart, CartCreateBody, CartItemBody, CartItemUpdateBody, CartUpdateBody

logger = logging.getLogger(__name__)

COLLECTION = "cart"

EMPTY_TOTALS = {
    "subtotal": 0,
    "discount_amount": 0,
    "coupon_id": None,
    "coupon_code": None,
    "shipping_cost": 0,
    "tax": 0,
    "total": 0,
}


class CartService:
    def __init__(
        self,
        db,
        catalog: Optional[CatalogService] = None,
        inventory: Optional[InventoryService] = None,
        coupons: Optional[CouponService] = None,
    ):
        self.db = db
        self.carts = db[COLLECTION]
        self.catalog = catalog or CatalogService(db)
        self.inventory = inventory or InventoryService(db, self.catalog)
        self.coupons = coupons or CouponService(db)

    # ----------------------- stock & pricing -----------------------
    def _locate(self, product_id, inventory_id=None, variant_id=None, size=None, colors=None):
        """Return (product, ledger, variant) for a cart line; variant is None for flat-stock lines."""
        product = self.catalog.load_active(product_id)
        check_options(product, size, colors)

        if variant_id:
            oid = to_object_id(inventory_id) if inventory_id else None
            if inventory_id:
                ledger = self.inventory.ledgers.find_one({"_id": oid}) if oid else None
            else:
                ledger = self.inventory.find_ledger(product_id)
            if not ledger or ledger.get("product_id") != str(product["_id"]):
                raise InventoryNotFound(str(inventory_id or product_id))
            variant = self.inventory.get_variant(ledger, variant_id)
            if variant is None:
                raise VariantNotFound(str(variant_id))
            return product, ledger, variant

        if size or colors:
            found = self.inventory.find_variant(product_id, size, colors)
            if found:
                ledger, variant = found
                return product, ledger, variant
            if self.inventory.find_ledger(product_id):
                raise VariantNotFound(f"{size} {colors or []}")
        return product, None, None

    @staticmethod
    def _check_available(product: dict, variant: Optional[dict], quantity: int) -> None:
        available = int(variant["quantity"] if variant else product.get("stock_quantity", 0))
        if quantity > available:
            raise InsufficientStock(
                f"{product_label(product)} - Available: {available}, Requested: {quantity}",
                product=product_label(product),
                available=available,
                requested=quantity,
            )

    def _build_item(self, body: CartItemBody) -> dict:
        product, ledger, variant = self._locate(
            body.product_id, body.inventory_id, body.variant_id, body.size, body.colors
        )
        self._check_available(product, variant, body.quantity)
        unit_price = resolve_unit_price(product, variant)
        return {
            "item_id": new_id(),
            "product_id": str(product["_id"]),
            "inventory_id": str(ledger["_id"]) if ledger else None,
            "variant_id": variant.get("variant_id") if variant else None,
            "product_name": product.get("name_en"),
            "product_name_ar": product.get("name_ar"),
            "sku": product.get("sku"),
            "quantity": body.quantity,
            "size": body.size or (variant or {}).get("size"),
            "colors": list(body.colors or (variant or {}).get("colors") or []),
            "variant_image": (variant or {}).get("image"),
            "unit_price": unit_price,
            "discount": 0,
            "subtotal": to_cents(unit_price * body.quantity),
        }

    @staticmethod
    def _same_line(a: dict, b: dict) -> bool:
        return (
            a["product_id"] == b["product_id"]
            and a.get("variant_id") == b.get("variant_id")
            and variant_key(a.get("size"), a.get("colors")) == variant_key(b.get("size"), b.get("colors"))
        )

    # ----------------------- totals -----------------------
    def _recalculate(self, cart: dict, scope: AuthScope, strict: bool = False) -> dict:
        items = cart.get("items", [])
        for item in items:
            item["discount"] = 0
            item["subtotal"] = to_cents(item["unit_price"] * item["quantity"])
        subtotal = to_cents(sum(item["subtotal"] for item in items))

        discount_amount = 0
        coupon_id = None
        coupon_code = cart.get("coupon_code")
        if coupon_code and items:
            products = self.catalog.find_many({item["product_id"] for item in items})
            try:
                coupon = self.coupons.resolve(coupon_code, scope.user_id, products, scope.segment_ids)
            except ShopError as exc:
                if strict:
                    raise
                logger.warning("dropping coupon %s from cart of %s: %s", coupon_code, scope.user_id, exc.code)
                coupon_code = None
            else:
                discount_amount = compute_discount(coupon, subtotal)
                distribute_discount(items, discount_amount)
                coupon_id = str(coupon["_id"])

        shipping_cost = 0
        tax = 0
        cart.update(
            {
                "items": items,
                "subtotal": subtotal,
                "discount_amount": discount_amount,
                "coupon_id": coupon_id,
                "coupon_code": coupon_code,
                "shipping_cost": shipping_cost,
                "tax": tax,
                "total": to_cents(subtotal - discount_amount + shipping_cost + tax),
            }
        )
        return cart

    def _save(self, cart: dict) -> dict:
        fields = Cart(**cart).model_dump()
        fields["updated_at"] = now_utc()
        saved = self.carts.find_one_and_update(
            {"_id": cart["_id"]}, {"$set": fields}, return_document=ReturnDocument.AFTER
        )
        return serialize_doc(saved)

    # ----------------------- operations -----------------------
    def _load(self, user_id: str) -> dict:
        cart = self.carts.find_one({"user_id": user_id})
        if not cart:
            raise CartNotFound(user_id)
        return cart

    def get(self, scope: AuthScope) -> dict:
        return serialize_doc(self._load(scope.user_id))

    def get_by_id(self, cart_id: str) -> dict:
        oid = to_object_id(cart_id)
        cart = self.carts.find_one({"_id": oid}) if oid else None
        if not cart:
            raise CartNotFound(str(cart_id))
        return serialize_doc(cart)

    def list_all(self, user_id: Optional[str] = None) -> List[dict]:
        query = {"user_id": user_id} if user_id else {}
        return [serialize_doc(c) for c in self.carts.find(query)]

    def create(self, scope: AuthScope, body: CartCreateBody) -> dict:
        if self.carts.find_one({"user_id": scope.user_id}):
            raise CartAlreadyExists(scope.user_id)
        cart = {"user_id": scope.user_id, "items": [self._build_item(i) for i in body.items], **EMPTY_TOTALS}
        cart["coupon_code"] = body.coupon_code or None
        self._recalculate(cart, scope, strict=True)
        try:
            cart_id = create_document(self.db, COLLECTION, Cart(**cart))
        except DuplicateKeyError:
            raise CartAlreadyExists(scope.user_id)
        logger.info("cart created for %s with %s items", scope.user_id, len(cart["items"]))
        return serialize_doc(self.carts.find_one({"_id": to_object_id(cart_id)}))

    def add_item(self, scope: AuthScope, body: CartItemBody) -> dict:
        cart = self.carts.find_one({"user_id": scope.user_id})
        if not cart:
            return self.create(scope, CartCreateBody(items=[body]))

        new_item = self._build_item(body)
        for item in cart.get("items", []):
            if self._same_line(item, new_item):
                combined = item["quantity"] + new_item["quantity"]
                product, _, variant = self._locate(
                    item["product_id"], item.get("inventory_id"), item.get("variant_id"), item.get("size"), item.get("colors")
                )
                self._check_available(product, variant, combined)
                item["quantity"] = combined
                break
        else:
            cart.setdefault("items", []).append(new_item)

        self._recalculate(cart, scope)
        return self._save(cart)

    def update_item(self, scope: AuthScope, item_id: str, body: CartItemUpdateBody) -> dict:
        cart = self._load(scope.user_id)
        item = next((i for i in cart.get("items", []) if i.get("item_id") == item_id), None)
        if item is None:
            raise CartItemNotFound(item_id)
        if body.quantity is not None:
            product, _, variant = self._locate(
                item["product_id"], item.get("inventory_id"), item.get("variant_id"), item.get("size"), item.get("colors")
            )
            self._check_available(product, variant, body.quantity)
            item["quantity"] = body.quantity
        self._recalculate(cart, scope)
        return self._save(cart)

    def remove_item(self, scope: AuthScope, item_id: str) -> dict:
        cart = self._load(scope.user_id)
        items = cart.get("items", [])
        remaining = [i for i in items if i.get("item_id") != item_id]
        if len(remaining) == len(items):
            raise CartItemNotFound(item_id)
        cart["items"] = remaining
        self._recalculate(cart, scope)
        return self._save(cart)

    def update(self, scope: AuthScope, body: CartUpdateBody) -> dict:
        cart = self._load(scope.user_id)
        if body.items is not None:
            cart["items"] = [self._build_item(i) for i in body.items]
        strict = False
        if body.coupon_code is not None:
            cart["coupon_code"] = body.coupon_code or None
            strict = bool(body.coupon_code)
        self._recalculate(cart, scope, strict=strict)
        return self._save(cart)

    def clear(self, scope: AuthScope) -> dict:
        cart = self._load(scope.user_id)
        cart["items"] = []
        cart.update(EMPTY_TOTALS)
        return self._save(cart)

    def remove(self, scope: AuthScope) -> None:
        deleted = self.carts.find_one_and_delete({"user_id": scope.user_id})
        if not deleted:
            raise CartNotFound(scope.user_id)
        logger.info("cart of %s deleted", scope.user_id)
