"""
Order engine: order placement, the status lifecycle and stock restoration.

Placement runs with the per-product stock locks held for every product in
the order: all lines are validated first, the order is persisted with
``stock_reserved`` false, and only then is stock taken. If taking stock
fails part way, the effects already applied are reversed and the order
document is removed, so a failed placement leaves nothing behind.
``stock_reserved`` flips back to false exactly once when stock is returned,
which keeps cancellation and deletion from restoring twice.
"""
import logging
import math
import secrets
import time
from collections import defaultdict
from datetime import datetime
from typing import List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from auth import AuthScope
from catalog import CatalogService, check_options, product_label, resolve_unit_price
from coupons import CouponService, compute_discount, distribute_discount, to_cents
from database import create_document, now_utc, serialize_doc, to_object_id
from errors import (
    AddressNotFound,
    CancellationReasonRequired,
    InsufficientStock,
    InsufficientVariantStock,
    InvalidStatusTransition,
    OrderAccessDenied,
    OrderCannotBeDeleted,
    OrderCannotBeUpdated,
    OrderNotFound,
    OrderNumberUnavailable,
    VariantNotFound,
)
from inventory import InventoryService
from locks import StockLocks, stock_locks
from schemas import Order, OrderCreateBody, OrderItemBody, OrderStatusBody, OrderUpdateBody

logger = logging.getLogger(__name__)

COLLECTION = "order"
ADDRESS_COLLECTION = "customeraddress"
RECONCILIATION_COLLECTION = "stockreconciliation"

STATUS_FLOW = ["pending", "confirmed", "processing", "shipped", "delivered"]
TERMINAL_STATUSES = {"delivered", "cancelled", "refunded"}
DELETABLE_STATUSES = {"pending", "cancelled"}
STATUS_TIMESTAMPS = {
    "confirmed": "confirmed_at",
    "shipped": "shipped_at",
    "delivered": "delivered_at",
    "cancelled": "cancelled_at",
}
ORDER_NUMBER_ATTEMPTS = 5
BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(BASE36[rem])
    return "".join(reversed(digits))


def generate_order_number() -> str:
    timestamp = to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(BASE36) for _ in range(4))
    return f"ORD-{timestamp}-{suffix}"


def can_transition(current: str, requested: str) -> bool:
    if current == requested:
        return True
    if requested == "refunded":
        return current != "refunded"
    if current in TERMINAL_STATUSES:
        return False
    if requested == "cancelled":
        return True
    if current in STATUS_FLOW and requested in STATUS_FLOW:
        return STATUS_FLOW.index(requested) > STATUS_FLOW.index(current)
    return False


class OrderService:
    def __init__(
        self,
        db,
        catalog: Optional[CatalogService] = None,
        inventory: Optional[InventoryService] = None,
        coupons: Optional[CouponService] = None,
        locks: Optional[StockLocks] = None,
    ):
        self.db = db
        self.orders = db[COLLECTION]
        self.addresses = db[ADDRESS_COLLECTION]
        self.catalog = catalog or CatalogService(db)
        self.inventory = inventory or InventoryService(db, self.catalog)
        self.coupons = coupons or CouponService(db)
        self.locks = locks or stock_locks

    # ----------------------- access -----------------------
    def _load(self, order_id: str) -> dict:
        oid = to_object_id(order_id)
        order = self.orders.find_one({"_id": oid}) if oid else None
        if not order:
            raise OrderNotFound(str(order_id))
        return order

    def _seller_can_see(self, order: dict, seller_id: str) -> bool:
        if order.get("seller_id") == seller_id:
            return True
        if any(item.get("seller_id") == seller_id for item in order.get("items", [])):
            return True
        owned = set(self.catalog.seller_product_ids(seller_id))
        return any(item.get("product_id") in owned for item in order.get("items", []))

    def _check_access(self, order: dict, scope: AuthScope) -> None:
        if scope.is_admin:
            return
        if scope.is_seller:
            if not self._seller_can_see(order, scope.user_id):
                raise OrderAccessDenied(str(order["_id"]))
            return
        if order.get("customer_id") != scope.user_id:
            raise OrderAccessDenied(str(order["_id"]))

    def _check_address(self, address_id: str, customer_id: str) -> dict:
        oid = to_object_id(address_id)
        address = self.addresses.find_one({"_id": oid, "user_id": customer_id}) if oid else None
        if not address:
            raise AddressNotFound(str(address_id))
        return address

    # ----------------------- placement -----------------------
    def _validate_line(self, item: OrderItemBody, claimed: dict, now: datetime):
        product = self.catalog.load_active(item.product_id)
        label = product_label(product)
        product_id = str(product["_id"])

        stock = int(product.get("stock_quantity", 0))
        available = stock - claimed[("product", product_id)]
        if item.quantity > available:
            raise InsufficientStock(
                f"{label} - Available: {available}, Requested: {item.quantity}",
                product=label,
                available=available,
                requested=item.quantity,
            )

        check_options(product, item.size, item.colors)

        variant = None
        if item.size or item.colors:
            found = self.inventory.find_variant(product_id, item.size, item.colors)
            if found:
                variant = found[1]
            elif self.inventory.find_ledger(product_id):
                raise VariantNotFound(f"Size {item.size}, Colors {', '.join(item.colors or [])}")
            # a product without a ledger is tracked by its flat counter alone
        if variant is not None:
            variant_available = int(variant.get("quantity", 0)) - claimed[("variant", variant["variant_id"])]
            if item.quantity > variant_available:
                raise InsufficientVariantStock(
                    f"{label} - Available: {variant_available}, Requested: {item.quantity}",
                    product=label,
                    available=variant_available,
                    requested=item.quantity,
                )
            claimed[("variant", variant["variant_id"])] += item.quantity
        claimed[("product", product_id)] += item.quantity

        unit_price = resolve_unit_price(product, variant, now)
        images = product.get("images") or []
        line = {
            "product_id": product_id,
            "variant_id": variant["variant_id"] if variant else None,
            "seller_id": product.get("seller_id"),
            "product_name": product.get("name_en"),
            "product_name_ar": product.get("name_ar"),
            "sku": product.get("sku"),
            "quantity": item.quantity,
            "size": item.size or None,
            "colors": list(item.colors or []),
            "unit_price": unit_price,
            "discount": 0,
            "subtotal": to_cents(unit_price * item.quantity),
            "product_image": (variant or {}).get("image") or (images[0] if images else None),
        }
        return line, product

    def _insert_with_number(self, fields: dict) -> dict:
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            number = generate_order_number()
            if self.orders.find_one({"order_number": number}):
                logger.warning("order number %s already taken, regenerating", number)
                continue
            try:
                order_id = create_document(self.db, COLLECTION, Order(order_number=number, **fields))
            except DuplicateKeyError:
                logger.warning("order number %s collided on insert, regenerating", number)
                continue
            return self.orders.find_one({"_id": to_object_id(order_id)})
        raise OrderNumberUnavailable()

    def _variant_available(self, product_id: str, variant_id: str) -> int:
        ledger = self.inventory.find_ledger(product_id)
        variant = self.inventory.get_variant(ledger, variant_id) if ledger else None
        return int((variant or {}).get("quantity", 0))

    def _take_stock(self, lines: List[dict], applied: List[tuple]) -> None:
        """Take stock line by line, recording each effect in ``applied`` as it lands."""
        for line in lines:
            product_id, quantity = line["product_id"], line["quantity"]
            if not self.catalog.reserve_stock(product_id, quantity):
                raise InsufficientStock(
                    f"{line['product_name']} - Requested: {quantity}",
                    product=line["product_name"],
                    available=self.catalog.get_product(product_id).get("stock_quantity", 0),
                    requested=quantity,
                )
            applied.append(("product", line))
            if line.get("variant_id"):
                if not self.inventory.adjust_variant_quantity(product_id, line["variant_id"], -quantity):
                    raise InsufficientVariantStock(
                        f"{line['product_name']} - Requested: {quantity}",
                        product=line["product_name"],
                        available=self._variant_available(product_id, line["variant_id"]),
                        requested=quantity,
                    )
                applied.append(("variant", line))

    def _give_back(self, applied: List[tuple]) -> None:
        for kind, line in reversed(applied):
            try:
                if kind == "product":
                    self.catalog.release_stock(line["product_id"], line["quantity"])
                else:
                    self.inventory.adjust_variant_quantity(line["product_id"], line["variant_id"], line["quantity"])
            except Exception:
                logger.exception(
                    "could not return %s units of %s %s", line["quantity"], kind, line.get("variant_id") or line["product_id"]
                )

    def create(self, body: OrderCreateBody, scope: AuthScope) -> dict:
        self._check_address(body.shipping_address_id, scope.user_id)
        now = now_utc()

        with self.locks.hold(item.product_id for item in body.items):
            claimed = defaultdict(int)
            lines, products = [], []
            for item in body.items:
                line, product = self._validate_line(item, claimed, now)
                lines.append(line)
                products.append(product)

            subtotal = to_cents(sum(line["subtotal"] for line in lines))
            discount_amount = 0
            coupon_id = None
            coupon_code = None
            if body.coupon_code:
                coupon = self.coupons.resolve(body.coupon_code, scope.user_id, products, scope.segment_ids, now)
                discount_amount = compute_discount(coupon, subtotal)
                distribute_discount(lines, discount_amount)
                coupon_id = str(coupon["_id"])
                coupon_code = coupon.get("code")

            # extension points, both fixed at zero for now
            shipping_cost = 0
            tax = 0
            total = to_cents(subtotal - discount_amount + shipping_cost + tax)

            sellers = {line["seller_id"] for line in lines}
            seller_id = sellers.pop() if len(sellers) == 1 else None

            order = self._insert_with_number(
                {
                    "customer_id": scope.user_id,
                    "items": lines,
                    "shipping_address_id": body.shipping_address_id,
                    "subtotal": subtotal,
                    "discount_amount": discount_amount,
                    "coupon_id": coupon_id,
                    "coupon_code": coupon_code,
                    "shipping_cost": shipping_cost,
                    "tax": tax,
                    "total": total,
                    "payment_method": body.payment_method,
                    "customer_notes": body.customer_notes,
                    "seller_id": seller_id,
                    "stock_reserved": False,
                }
            )
            applied = []
            try:
                self._take_stock(lines, applied)
                order = self.orders.find_one_and_update(
                    {"_id": order["_id"]}, {"$set": {"stock_reserved": True}}, return_document=ReturnDocument.AFTER
                )
            except Exception:
                logger.warning(
                    "placement of %s failed, reversing %s stock effects", order["order_number"], len(applied)
                )
                self._give_back(applied)
                self.orders.delete_one({"_id": order["_id"]})
                raise

        logger.info(
            "order %s placed by %s: %s lines, total %.2f", order["order_number"], scope.user_id, len(lines), total
        )
        return serialize_doc(order)

    # ----------------------- restoration -----------------------
    @staticmethod
    def _restore_steps(order: dict) -> List[dict]:
        steps = []
        for item in order.get("items", []):
            base = {"product_id": item["product_id"], "quantity": item["quantity"]}
            steps.append({"kind": "product", **base})
            if item.get("variant_id") or item.get("size") or item.get("colors"):
                steps.append(
                    {
                        "kind": "variant",
                        "variant_id": item.get("variant_id"),
                        "size": item.get("size"),
                        "colors": item.get("colors") or [],
                        **base,
                    }
                )
        return steps

    def _apply_restore_step(self, step: dict) -> None:
        product_id, quantity = step["product_id"], step["quantity"]
        if step["kind"] == "product":
            self.catalog.release_stock(product_id, quantity)
            return
        variant_id = step.get("variant_id")
        if not variant_id:
            found = self.inventory.find_variant(product_id, step.get("size"), step.get("colors"))
            variant_id = found[1]["variant_id"] if found else None
        if variant_id and not self.inventory.adjust_variant_quantity(product_id, variant_id, quantity):
            logger.warning("variant %s of product %s is gone, restored flat stock only", variant_id, product_id)

    def _restore_stock(self, order: dict) -> bool:
        """Give the order's stock back, at most once per order.

        If a step fails after the order has released its claim, the steps
        still outstanding go to the reconciliation collection before the
        error propagates.
        """
        claimed = self.orders.find_one_and_update(
            {"_id": order["_id"], "stock_reserved": True}, {"$set": {"stock_reserved": False}}
        )
        if not claimed:
            logger.info("order %s holds no stock, nothing to restore", order.get("order_number"))
            return False

        steps = self._restore_steps(order)
        done = 0
        try:
            for step in steps:
                self._apply_restore_step(step)
                done += 1
        except Exception:
            logger.exception(
                "stock restore for order %s stopped after %s of %s steps", order.get("order_number"), done, len(steps)
            )
            create_document(
                self.db,
                RECONCILIATION_COLLECTION,
                {
                    "order_id": str(order["_id"]),
                    "order_number": order.get("order_number"),
                    "pending": steps[done:],
                    "resolved": False,
                },
            )
            raise
        logger.info("stock restored for order %s", order.get("order_number"))
        return True

    # ----------------------- reads -----------------------
    def get(self, order_id: str, scope: AuthScope) -> dict:
        order = self._load(order_id)
        self._check_access(order, scope)
        return serialize_doc(order)

    def list(
        self,
        scope: AuthScope,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        payment_method: Optional[str] = None,
        search: Optional[str] = None,
        customer_id: Optional[str] = None,
        seller_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> dict:
        page = max(page, 1)
        limit = max(limit, 1)
        clauses = []

        if scope.is_customer:
            clauses.append({"customer_id": scope.user_id})
        else:
            if scope.is_seller:
                seller_id = scope.user_id
            elif customer_id:
                clauses.append({"customer_id": customer_id})
            if seller_id:
                clauses.append(
                    {
                        "$or": [
                            {"seller_id": seller_id},
                            {"items.seller_id": seller_id},
                            {"items.product_id": {"$in": self.catalog.seller_product_ids(seller_id)}},
                        ]
                    }
                )

        if status:
            clauses.append({"status": status})
        if payment_status:
            clauses.append({"payment_status": payment_status})
        if payment_method:
            clauses.append({"payment_method": payment_method})
        if search:
            clauses.append(
                {
                    "$or": [
                        {"order_number": {"$regex": search, "$options": "i"}},
                        {"coupon_code": {"$regex": search, "$options": "i"}},
                        {"tracking_number": {"$regex": search, "$options": "i"}},
                    ]
                }
            )
        created = {}
        if start_date:
            created["$gte"] = start_date
        if end_date:
            created["$lte"] = end_date
        if created:
            clauses.append({"created_at": created})

        query = {"$and": clauses} if clauses else {}
        total = self.orders.count_documents(query)
        cursor = self.orders.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
        return {
            "data": [serialize_doc(o) for o in cursor],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    # ----------------------- mutations -----------------------
    def update(self, order_id: str, body: OrderUpdateBody, scope: AuthScope) -> dict:
        order = self._load(order_id)
        if scope.is_seller:
            raise OrderAccessDenied(str(order_id))
        self._check_access(order, scope)
        if order.get("status") != "pending":
            raise OrderCannotBeUpdated(order.get("status", ""))

        changes = {}
        if body.shipping_address_id:
            self._check_address(body.shipping_address_id, order["customer_id"])
            changes["shipping_address_id"] = body.shipping_address_id
        if body.customer_notes is not None:
            changes["customer_notes"] = body.customer_notes
        changes["updated_at"] = now_utc()

        updated = self.orders.find_one_and_update(
            {"_id": order["_id"], "status": "pending"}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        if updated is None:
            raise OrderCannotBeUpdated(str(order_id))
        return serialize_doc(updated)

    def update_status(self, order_id: str, body: OrderStatusBody, scope: AuthScope) -> dict:
        order = self._load(order_id)
        if scope.is_customer:
            raise OrderAccessDenied(str(order_id))
        self._check_access(order, scope)

        with self.locks.hold(item["product_id"] for item in order.get("items", [])):
            order = self._load(order_id)
            current = order.get("status", "pending")
            now = now_utc()
            changes = {}
            cancelling = False

            if body.status and body.status != current:
                if not can_transition(current, body.status):
                    raise InvalidStatusTransition(
                        f"{current} -> {body.status}", current=current, requested=body.status
                    )
                if body.status == "cancelled":
                    reason = body.cancellation_reason or order.get("cancellation_reason")
                    if not reason:
                        raise CancellationReasonRequired()
                    changes["cancellation_reason"] = reason
                    cancelling = True
                changes["status"] = body.status
                stamp_field = STATUS_TIMESTAMPS.get(body.status)
                if stamp_field and not order.get(stamp_field):
                    changes[stamp_field] = now

            if body.payment_status:
                changes["payment_status"] = body.payment_status
                if body.payment_status == "paid" and not order.get("paid_at"):
                    changes["paid_at"] = now
            for field in ("transaction_id", "tracking_number", "shipping_carrier", "estimated_delivery_date"):
                value = getattr(body, field)
                if value:
                    changes[field] = value
            if body.admin_notes is not None:
                changes["admin_notes"] = body.admin_notes
            changes["updated_at"] = now

            updated = self.orders.find_one_and_update(
                {"_id": order["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
            )
            if cancelling:
                self._restore_stock(updated)
                updated = self.orders.find_one({"_id": order["_id"]})
                logger.info("order %s cancelled: %s", updated["order_number"], updated.get("cancellation_reason"))
            elif "status" in changes:
                logger.info("order %s moved %s -> %s", updated["order_number"], current, changes["status"])

        return serialize_doc(updated)

    def remove(self, order_id: str, scope: AuthScope) -> None:
        order = self._load(order_id)
        if scope.is_seller:
            raise OrderAccessDenied(str(order_id))
        self._check_access(order, scope)
        if order.get("status") not in DELETABLE_STATUSES:
            raise OrderCannotBeDeleted(order.get("status", ""))

        with self.locks.hold(item["product_id"] for item in order.get("items", [])):
            order = self._load(order_id)
            if order.get("status") not in DELETABLE_STATUSES:
                raise OrderCannotBeDeleted(order.get("status", ""))
            self._restore_stock(order)
            self.orders.delete_one({"_id": order["_id"]})
        logger.info("order %s deleted", order["order_number"])
