"""
Discount/coupon resolver.

Validation of a coupon against a purchase is stateless: nothing here touches
stock, and a resolved coupon is only recorded on the order or cart that used it.
"""
import logging
import math
import secrets
import string
from datetime import datetime
from typing import Iterable, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from auth import AuthScope
from database import as_utc, create_document, now_utc, serialize_doc, to_object_id
from errors import (
    CouponAccessDenied,
    CouponCodeUnavailable,
    CouponExpired,
    CouponIdsRequired,
    CouponNotApplicableToProducts,
    CouponNotEligible,
    CouponNotFound,
    CouponNotYetActive,
    DiscountCodeRequired,
    DiscountPercentageTooHigh,
    DuplicateCouponCode,
    ShopError,
)
from schemas import Discount, DiscountCreateBody, DiscountUpdateBody

logger = logging.getLogger(__name__)

COLLECTION = "discount"
CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8
CODE_ATTEMPTS = 5


def to_cents(amount: float) -> float:
    return round(float(amount), 2)


def _as_cents(amount: float) -> int:
    return int(round(float(amount) * 100))


def compute_discount(coupon: dict, subtotal: float) -> float:
    value = float(coupon.get("discount_value", 0))
    if coupon.get("discount_type") == "percentage":
        amount = subtotal * value / 100
    else:
        amount = min(value, subtotal)
    return to_cents(min(amount, subtotal))


def distribute_discount(lines: List[dict], discount: float) -> None:
    """Spread ``discount`` over the lines by their share of the subtotal.

    Shares are computed in whole cents and rounded down, so no line is ever
    discounted past its own subtotal. The cents left over by rounding go to
    the lines with room left, starting from the last one. Line discounts add
    up to the discount exactly and line subtotals to subtotal - discount.
    """
    worth = [_as_cents(line["subtotal"]) for line in lines]
    total = sum(worth)
    if not lines or discount <= 0 or total <= 0:
        return
    target = min(_as_cents(discount), total)
    shares = [target * w // total for w in worth]
    leftover = target - sum(shares)
    for index in reversed(range(len(lines))):
        if not leftover:
            break
        extra = min(worth[index] - shares[index], leftover)
        shares[index] += extra
        leftover -= extra
    for line, value, share in zip(lines, worth, shares):
        line["discount"] = share / 100
        line["subtotal"] = (value - share) / 100


class CouponService:
    def __init__(self, db):
        self.db = db
        self.coupons = db[COLLECTION]

    # ----------------------- management -----------------------
    @staticmethod
    def _check_rules(doc: dict) -> None:
        if doc.get("discount_type") == "percentage" and float(doc.get("discount_value", 0)) > 100:
            raise DiscountPercentageTooHigh(str(doc.get("discount_value")))
        if doc.get("method") == "discount_code" and not doc.get("code"):
            raise DiscountCodeRequired()

    def _check_code_free(self, code: str, exclude=None) -> None:
        query = {"code": code}
        if exclude is not None:
            query["_id"] = {"$ne": exclude}
        if self.coupons.find_one(query):
            raise DuplicateCouponCode(code)

    @staticmethod
    def _check_owner(coupon: dict, scope: Optional[AuthScope]) -> None:
        if scope is not None and scope.is_seller and coupon.get("seller_id") != scope.user_id:
            raise CouponAccessDenied(str(coupon.get("_id")))

    def _load(self, coupon_id: str) -> dict:
        oid = to_object_id(coupon_id)
        coupon = self.coupons.find_one({"_id": oid}) if oid else None
        if not coupon:
            raise CouponNotFound(str(coupon_id))
        return coupon

    def create(self, body: DiscountCreateBody, scope: Optional[AuthScope] = None) -> dict:
        discount = Discount(**body.model_dump())
        if scope is not None and scope.is_seller:
            discount.seller_id = scope.user_id
        doc = discount.model_dump()
        self._check_rules(doc)
        if not doc.get("code"):
            # the unique index is sparse, so codeless discounts must omit the key
            doc.pop("code", None)
        else:
            self._check_code_free(doc["code"])
        try:
            coupon_id = create_document(self.db, COLLECTION, doc)
        except DuplicateKeyError:
            raise DuplicateCouponCode(doc.get("code", ""))
        logger.info("discount %s created (%s)", coupon_id, doc.get("code") or "automatic")
        return serialize_doc(self._load(coupon_id))

    def generate_code(self, length: int = CODE_LENGTH) -> str:
        for _ in range(CODE_ATTEMPTS):
            code = "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))
            if not self.coupons.find_one({"code": code}):
                return code
            logger.warning("generated discount code %s already exists, retrying", code)
        raise CouponCodeUnavailable()

    def get(self, coupon_id: str, scope: Optional[AuthScope] = None) -> dict:
        coupon = self._load(coupon_id)
        self._check_owner(coupon, scope)
        return serialize_doc(coupon)

    def get_by_code(self, code: str) -> dict:
        coupon = self.coupons.find_one({"code": code, "active": True})
        if not coupon:
            raise CouponNotFound(code)
        return serialize_doc(coupon)

    def list(
        self,
        scope: Optional[AuthScope] = None,
        active: Optional[bool] = None,
        page: int = 1,
        limit: int = 10,
        search: Optional[str] = None,
        method: Optional[str] = None,
        discount_type: Optional[str] = None,
    ) -> dict:
        page = max(page, 1)
        limit = max(limit, 1)
        filt = {}
        if scope is not None and scope.is_seller:
            filt["seller_id"] = scope.user_id
        if active is not None:
            filt["active"] = active
        if method:
            filt["method"] = method
        if discount_type:
            filt["discount_type"] = discount_type
        if search:
            filt["$or"] = [
                {"name": {"$regex": search, "$options": "i"}},
                {"code": {"$regex": search, "$options": "i"}},
            ]
        total = self.coupons.count_documents(filt)
        cursor = self.coupons.find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
        return {
            "data": [serialize_doc(c) for c in cursor],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    def update(self, coupon_id: str, body: DiscountUpdateBody, scope: Optional[AuthScope] = None) -> dict:
        coupon = self._load(coupon_id)
        self._check_owner(coupon, scope)
        changes = body.model_dump(exclude_unset=True)
        merged = {**coupon, **changes}
        self._check_rules(merged)

        update = {"$set": {k: v for k, v in changes.items() if not (k == "code" and not v)}}
        if "code" in changes and not changes["code"]:
            update["$unset"] = {"code": ""}
        elif changes.get("code") and changes["code"] != coupon.get("code"):
            self._check_code_free(changes["code"], exclude=coupon["_id"])
        update["$set"]["updated_at"] = now_utc()
        try:
            updated = self.coupons.find_one_and_update(
                {"_id": coupon["_id"]}, update, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            raise DuplicateCouponCode(changes.get("code", ""))
        logger.info("discount %s updated: %s", coupon_id, sorted(changes))
        return serialize_doc(updated)

    def update_status(self, coupon_id: str, active: bool, scope: Optional[AuthScope] = None) -> dict:
        coupon = self._load(coupon_id)
        self._check_owner(coupon, scope)
        updated = self.coupons.find_one_and_update(
            {"_id": coupon["_id"]},
            {"$set": {"active": active, "updated_at": now_utc()}},
            return_document=ReturnDocument.AFTER,
        )
        return serialize_doc(updated)

    def remove(self, coupon_id: str, scope: Optional[AuthScope] = None) -> None:
        coupon = self._load(coupon_id)
        self._check_owner(coupon, scope)
        self.coupons.delete_one({"_id": coupon["_id"]})
        logger.info("discount %s deleted", coupon_id)

    def bulk_remove(self, ids: List[str], scope: Optional[AuthScope] = None) -> dict:
        """Delete discounts by id; each id succeeds or fails on its own."""
        if not ids:
            raise CouponIdsRequired()

        deleted_count = 0
        failed_ids = []
        for raw_id in ids:
            coupon_id = str(raw_id)
            try:
                self.remove(coupon_id, scope)
            except ShopError as exc:
                logger.info("bulk discount delete skipped %s: %s", coupon_id, exc.code)
                failed_ids.append(coupon_id)
            else:
                deleted_count += 1
        return {"deleted_count": deleted_count, "failed_ids": failed_ids}

    # ----------------------- resolution -----------------------
    def resolve(
        self,
        code: str,
        customer_id: str,
        products: Iterable[dict],
        segment_ids: Optional[Iterable[str]] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """Find an active coupon by code and check it against the buyer and the items."""
        now = now or now_utc()
        coupon = self.coupons.find_one({"code": code, "active": True})
        if not coupon:
            raise CouponNotFound(code)

        start = as_utc(coupon.get("start_date"))
        end = as_utc(coupon.get("end_date"))
        if start is not None and now < start:
            raise CouponNotYetActive(code)
        if end is not None and now > end:
            raise CouponExpired(code)

        eligibility = coupon.get("eligibility", "all_customers")
        if eligibility == "specific_customers":
            if str(customer_id) not in {str(c) for c in coupon.get("customer_ids", [])}:
                raise CouponNotEligible(code)
        elif eligibility == "specific_customer_segments":
            segments = set(segment_ids or []) | set(self._customer_segments(customer_id))
            if not segments & {str(s) for s in coupon.get("customer_segment_ids", [])}:
                raise CouponNotEligible(code)

        if not self.applies_to(coupon, list(products)):
            raise CouponNotApplicableToProducts(code)
        return coupon

    @staticmethod
    def applies_to(coupon: dict, products: List[dict]) -> bool:
        scope = coupon.get("applies_to", "all_products")
        if scope == "all_products":
            return True
        if scope == "specific_products":
            wanted = {str(p) for p in coupon.get("product_ids", [])}
            return any(str(p["_id"]) in wanted for p in products)
        if scope == "specific_categories":
            wanted = {str(c) for c in coupon.get("category_ids", [])}
            return any(str(p.get("category_id")) in wanted for p in products if p.get("category_id"))
        if scope == "specific_subcategories":
            wanted = {str(c) for c in coupon.get("subcategory_ids", [])}
            return any(str(p.get("subcategory_id")) in wanted for p in products if p.get("subcategory_id"))
        return False

    def _customer_segments(self, customer_id: str) -> List[str]:
        oid = to_object_id(customer_id)
        user = self.db["user"].find_one({"_id": oid}) if oid else None
        return [str(s) for s in (user or {}).get("segment_ids", [])]
