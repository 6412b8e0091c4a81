"""
Product catalog record: authoritative price, flat stock counter and the
legal sizes/colors of each product.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from auth import AuthScope
from database import as_utc, create_document, now_utc, serialize_doc, to_object_id
from errors import DuplicateSku, InvalidColor, InvalidSize, ProductAccessDenied, ProductNotActive, ProductNotFound
from schemas import Product, ProductCreateBody, ProductUpdateBody

logger = logging.getLogger(__name__)

COLLECTION = "product"


def product_label(product: dict) -> str:
    return product.get("name_en") or product.get("sku") or str(product.get("_id"))


def sale_is_active(product: dict, now: datetime) -> bool:
    if product.get("sale_price") is None:
        return False
    start = as_utc(product.get("sale_start_date"))
    end = as_utc(product.get("sale_end_date"))
    if start is not None and now < start:
        return False
    if end is not None and now > end:
        return False
    return True


def resolve_unit_price(product: dict, variant: Optional[dict] = None, now: Optional[datetime] = None) -> float:
    """Variant price override, then an active sale price, then the original price."""
    now = now or now_utc()
    if variant:
        override = (variant.get("attributes") or {}).get("price")
        if override is not None:
            return float(override)
    if sale_is_active(product, now):
        return float(product["sale_price"])
    return float(product["original_price"])


def check_options(product: dict, size: Optional[str], colors: Optional[Iterable[str]]) -> None:
    if size and size not in (product.get("sizes") or []):
        raise InvalidSize(f"{size} not available for {product_label(product)}", size=size, product=product_label(product))
    allowed = product.get("colors") or []
    for color in colors or []:
        if color not in allowed:
            raise InvalidColor(
                f"{color} not available for {product_label(product)}", color=color, product=product_label(product)
            )


class CatalogService:
    def __init__(self, db):
        self.db = db
        self.products = db[COLLECTION]

    # ----------------------- lookups -----------------------
    def get_product(self, product_id: str) -> dict:
        oid = to_object_id(product_id)
        product = self.products.find_one({"_id": oid}) if oid else None
        if not product:
            raise ProductNotFound(str(product_id), product_id=product_id)
        return product

    def load_active(self, product_id: str) -> dict:
        product = self.get_product(product_id)
        if not product.get("active", True):
            raise ProductNotActive(product_label(product), product=product_label(product))
        return product

    def find_many(self, product_ids: Iterable[str]) -> List[dict]:
        oids = [oid for oid in (to_object_id(pid) for pid in product_ids) if oid]
        return list(self.products.find({"_id": {"$in": oids}}))

    def seller_product_ids(self, seller_id: str) -> List[str]:
        return [str(p["_id"]) for p in self.products.find({"seller_id": seller_id}, {"_id": 1})]

    def list_products(self, q: Optional[str] = None, seller_id: Optional[str] = None, active: Optional[bool] = None):
        filt = {}
        if q:
            filt["$or"] = [
                {"name_en": {"$regex": q, "$options": "i"}},
                {"name_ar": {"$regex": q, "$options": "i"}},
                {"sku": {"$regex": q, "$options": "i"}},
            ]
        if seller_id:
            filt["seller_id"] = seller_id
        if active is not None:
            filt["active"] = active
        return [serialize_doc(p) for p in self.products.find(filt).limit(100)]

    # ----------------------- writes -----------------------
    def create_product(self, body: ProductCreateBody, scope: AuthScope) -> dict:
        product = Product(**body.model_dump())
        if scope.is_seller:
            product.seller_id = scope.user_id
        if self.products.find_one({"sku": product.sku}):
            raise DuplicateSku(product.sku)
        try:
            product_id = create_document(self.db, COLLECTION, product)
        except DuplicateKeyError:
            raise DuplicateSku(product.sku)
        logger.info("product %s created with sku %s", product_id, product.sku)
        return serialize_doc(self.products.find_one({"_id": to_object_id(product_id)}))

    def update_product(self, product_id: str, body: ProductUpdateBody, scope: AuthScope) -> dict:
        product = self.get_product(product_id)
        if scope.is_seller and product.get("seller_id") != scope.user_id:
            raise ProductAccessDenied(str(product_id))
        update = body.model_dump(exclude_none=True)
        update["updated_at"] = now_utc()
        updated = self.products.find_one_and_update(
            {"_id": product["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER
        )
        return serialize_doc(updated)

    # ----------------------- stock -----------------------
    def reserve_stock(self, product_id: str, quantity: int) -> bool:
        """Decrement the flat counter only if enough stock remains."""
        result = self.products.update_one(
            {"_id": to_object_id(product_id), "stock_quantity": {"$gte": quantity}},
            {"$inc": {"stock_quantity": -quantity}, "$set": {"updated_at": now_utc()}},
        )
        return result.modified_count == 1

    def release_stock(self, product_id: str, quantity: int) -> bool:
        result = self.products.update_one(
            {"_id": to_object_id(product_id)},
            {"$inc": {"stock_quantity": quantity}, "$set": {"updated_at": now_utc()}},
        )
        if result.matched_count == 0:
            logger.warning("cannot restore %s units: product %s no longer exists", quantity, product_id)
        return result.matched_count == 1
