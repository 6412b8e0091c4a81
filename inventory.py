"""
Inventory ledger: one document per product holding its size/color variants.

``total_quantity`` is always recomputed from the variant list on write and is
the field stock-status filters run against. Writes to an existing ledger go
through a ``version`` guard (optimistic concurrency) so concurrent quantity
adjustments never overwrite each other.
"""
import logging
import math
from typing import Iterable, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from auth import AuthScope
from catalog import CatalogService, check_options
from database import create_document, new_id, now_utc, serialize_doc, to_object_id
from errors import (
    DuplicateVariantCombination,
    InventoryAccessDenied,
    InventoryAlreadyExists,
    InventoryExceedsProductStock,
    InventoryIdsRequired,
    InventoryNotFound,
    ShopError,
    VariantNotFound,
)
from schemas import (
    InventoryCreateBody,
    InventoryUpdateBody,
    InventoryVariant,
    ProductInventory,
    VariantBody,
    VariantUpdateBody,
)

logger = logging.getLogger(__name__)

COLLECTION = "productinventory"
MAX_WRITE_ATTEMPTS = 5


def variant_key(size: Optional[str], colors: Optional[Iterable[str]]) -> Tuple[str, Tuple[str, ...]]:
    return (size or "", tuple(sorted(colors or [])))


def total_of(variants: List[dict]) -> int:
    return sum(int(v.get("quantity", 0)) for v in variants)


def _version_filter(ledger: dict) -> dict:
    if "version" in ledger:
        return {"_id": ledger["_id"], "version": ledger["version"]}
    return {"_id": ledger["_id"], "version": {"$exists": False}}


class InventoryService:
    def __init__(self, db, catalog: Optional[CatalogService] = None):
        self.db = db
        self.ledgers = db[COLLECTION]
        self.catalog = catalog or CatalogService(db)

    # ----------------------- validation -----------------------
    def validate_variants(self, variants: List[dict], product: dict) -> None:
        for variant in variants:
            check_options(product, variant.get("size"), variant.get("colors"))

    @staticmethod
    def check_unique(variants: List[dict]) -> None:
        keys = [variant_key(v.get("size"), v.get("colors")) for v in variants]
        if len(keys) != len(set(keys)):
            raise DuplicateVariantCombination()

    @staticmethod
    def check_within_stock(variants: List[dict], product: dict) -> int:
        total = total_of(variants)
        stock = int(product.get("stock_quantity", 0))
        if total > stock:
            raise InventoryExceedsProductStock(f"{total} > {stock}", total=total, stock=stock)
        return total

    def _check_owner(self, product: dict, scope: Optional[AuthScope]) -> None:
        if scope is not None and scope.is_seller and product.get("seller_id") != scope.user_id:
            raise InventoryAccessDenied(str(product.get("_id")))

    @staticmethod
    def _build_variants(bodies: List[VariantBody], existing: Optional[List[dict]] = None) -> List[dict]:
        # a replacement variant keeps the id of the existing variant with the same key
        known = {variant_key(v.get("size"), v.get("colors")): v.get("variant_id") for v in existing or []}
        variants = []
        for body in bodies:
            variant_id = known.get(variant_key(body.size, body.colors)) or new_id()
            variants.append(InventoryVariant(variant_id=variant_id, **body.model_dump()).model_dump())
        return variants

    # ----------------------- reads -----------------------
    def _load(self, inventory_id: str) -> dict:
        oid = to_object_id(inventory_id)
        ledger = self.ledgers.find_one({"_id": oid}) if oid else None
        if not ledger:
            raise InventoryNotFound(str(inventory_id))
        return ledger

    def _present(self, ledger: dict) -> dict:
        data = serialize_doc(ledger)
        oid = to_object_id(ledger.get("product_id"))
        product = self.catalog.products.find_one({"_id": oid}) if oid else None
        if product:
            data["product"] = {
                "id": str(product["_id"]),
                "name_en": product.get("name_en"),
                "name_ar": product.get("name_ar"),
                "sku": product.get("sku"),
                "sizes": product.get("sizes", []),
                "colors": product.get("colors", []),
                "stock_quantity": product.get("stock_quantity", 0),
            }
        return data

    def get(self, inventory_id: str, scope: Optional[AuthScope] = None) -> dict:
        ledger = self._load(inventory_id)
        if scope is not None and scope.is_seller:
            self._check_owner(self.catalog.get_product(ledger["product_id"]), scope)
        return self._present(ledger)

    def get_by_product(self, product_id: str, scope: Optional[AuthScope] = None) -> dict:
        ledger = self.find_ledger(product_id)
        if not ledger:
            raise InventoryNotFound(str(product_id))
        if scope is not None and scope.is_seller:
            self._check_owner(self.catalog.get_product(product_id), scope)
        return self._present(ledger)

    def list(
        self,
        scope: Optional[AuthScope] = None,
        page: int = 1,
        limit: int = 10,
        search: Optional[str] = None,
        product_id: Optional[str] = None,
        status: Optional[str] = None,
        min_quantity: Optional[int] = None,
        max_quantity: Optional[int] = None,
        active: Optional[bool] = None,
    ) -> dict:
        page = max(page, 1)
        limit = max(limit, 1)
        query = {}

        allowed = None
        if product_id:
            allowed = {product_id}
        if scope is not None and scope.is_seller:
            owned = set(self.catalog.seller_product_ids(scope.user_id))
            allowed = owned if allowed is None else allowed & owned
        if search:
            matches = {p["id"] for p in self.catalog.list_products(q=search)}
            allowed = matches if allowed is None else allowed & matches
        if allowed is not None:
            query["product_id"] = {"$in": sorted(allowed)}

        if active is not None:
            query["active"] = active

        quantity = {}
        if status == "in_stock":
            quantity["$gt"] = 0
        elif status == "out_of_stock":
            quantity["$lte"] = 0
        if min_quantity is not None:
            if "$gt" in quantity:
                quantity["$gte"] = max(min_quantity, 1)
                del quantity["$gt"]
            elif "$lte" in quantity:
                quantity["$gte"] = min(min_quantity, 0)
            else:
                quantity["$gte"] = min_quantity
        if max_quantity is not None:
            if "$lte" in quantity:
                quantity["$lte"] = min(max_quantity, 0)
            else:
                quantity["$lte"] = max_quantity
        if quantity:
            query["total_quantity"] = quantity

        total = self.ledgers.count_documents(query)
        cursor = self.ledgers.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
        return {
            "data": [self._present(ledger) for ledger in cursor],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    def find_ledger(self, product_id: str) -> Optional[dict]:
        return self.ledgers.find_one({"product_id": str(product_id)})

    def find_variant(self, product_id: str, size: Optional[str], colors: Optional[Iterable[str]]):
        """Match on size and colors-as-a-set. Returns (ledger, variant) or None."""
        ledger = self.find_ledger(product_id)
        if not ledger:
            return None
        wanted = variant_key(size, colors)
        for variant in ledger.get("variants", []):
            if variant_key(variant.get("size"), variant.get("colors")) == wanted:
                return ledger, variant
        return None

    @staticmethod
    def get_variant(ledger: dict, variant_id: str) -> Optional[dict]:
        for variant in ledger.get("variants", []):
            if variant.get("variant_id") == str(variant_id):
                return variant
        return None

    # ----------------------- writes -----------------------
    def create(self, body: InventoryCreateBody, scope: Optional[AuthScope] = None) -> dict:
        product = self.catalog.get_product(body.product_id)
        self._check_owner(product, scope)
        if self.find_ledger(body.product_id):
            raise InventoryAlreadyExists(body.product_id)

        variants = self._build_variants(body.variants)
        self.validate_variants(variants, product)
        self.check_unique(variants)
        total = self.check_within_stock(variants, product)

        ledger = ProductInventory(product_id=str(product["_id"]), variants=variants, total_quantity=total)
        try:
            ledger_id = create_document(self.db, COLLECTION, ledger)
        except DuplicateKeyError:
            raise InventoryAlreadyExists(body.product_id)
        logger.info("inventory %s created for product %s (%s units)", ledger_id, ledger.product_id, total)
        return self._present(self._load(ledger_id))

    def update(self, inventory_id: str, body: InventoryUpdateBody, scope: Optional[AuthScope] = None) -> dict:
        for _ in range(MAX_WRITE_ATTEMPTS):
            ledger = self._load(inventory_id)
            current = self.catalog.get_product(ledger["product_id"])
            self._check_owner(current, scope)

            changes = {}
            product = current
            if body.product_id and body.product_id != ledger["product_id"]:
                product = self.catalog.get_product(body.product_id)
                self._check_owner(product, scope)
                if self.find_ledger(body.product_id):
                    raise InventoryAlreadyExists(body.product_id)
                changes["product_id"] = str(product["_id"])

            variants = ledger.get("variants", [])
            if body.variants is not None:
                variants = self._build_variants(body.variants, existing=variants)
                self.validate_variants(variants, product)
                self.check_unique(variants)
            elif "product_id" in changes:
                self.validate_variants(variants, product)
            changes["variants"] = variants
            changes["total_quantity"] = self.check_within_stock(variants, product)
            changes["updated_at"] = now_utc()

            updated = self.ledgers.find_one_and_update(
                _version_filter(ledger), {"$set": changes, "$inc": {"version": 1}}, return_document=ReturnDocument.AFTER
            )
            if updated is not None:
                logger.info("inventory %s updated (%s units)", inventory_id, changes["total_quantity"])
                return self._present(updated)
            logger.warning("inventory %s changed during update, retrying", inventory_id)
        raise InventoryNotFound(str(inventory_id))

    def update_status(self, inventory_id: str, active: bool, scope: Optional[AuthScope] = None) -> dict:
        ledger = self._load(inventory_id)
        self._check_owner(self.catalog.get_product(ledger["product_id"]), scope)
        updated = self.ledgers.find_one_and_update(
            {"_id": ledger["_id"]},
            {"$set": {"active": active, "updated_at": now_utc()}},
            return_document=ReturnDocument.AFTER,
        )
        return self._present(updated)

    def update_variant(
        self, inventory_id: str, variant_id: str, body: VariantUpdateBody, scope: Optional[AuthScope] = None
    ) -> dict:
        for _ in range(MAX_WRITE_ATTEMPTS):
            ledger = self._load(inventory_id)
            product = self.catalog.get_product(ledger["product_id"])
            self._check_owner(product, scope)
            variants = ledger.get("variants", [])
            variant = self.get_variant(ledger, variant_id)
            if variant is None:
                raise VariantNotFound(str(variant_id))
            if body.quantity is not None:
                variant["quantity"] = body.quantity
            if body.attributes is not None:
                variant["attributes"] = body.attributes.model_dump()
            if body.image is not None:
                variant["image"] = body.image
            total = self.check_within_stock(variants, product)
            updated = self.ledgers.find_one_and_update(
                _version_filter(ledger),
                {"$set": {"variants": variants, "total_quantity": total, "updated_at": now_utc()}, "$inc": {"version": 1}},
                return_document=ReturnDocument.AFTER,
            )
            if updated is not None:
                return self._present(updated)
            logger.warning("inventory %s changed during variant update, retrying", inventory_id)
        raise InventoryNotFound(str(inventory_id))

    def adjust_variant_quantity(self, product_id: str, variant_id: str, delta: int) -> bool:
        """Apply ``delta`` to one variant and the ledger total.

        Returns False when the ledger or variant is gone or when the change
        would take the variant below zero; the caller decides what that means.
        """
        for _ in range(MAX_WRITE_ATTEMPTS):
            ledger = self.find_ledger(product_id)
            if not ledger:
                return False
            variants = ledger.get("variants", [])
            variant = self.get_variant(ledger, variant_id)
            if variant is None:
                return False
            quantity = int(variant.get("quantity", 0)) + delta
            if quantity < 0:
                return False
            variant["quantity"] = quantity
            result = self.ledgers.update_one(
                _version_filter(ledger),
                {
                    "$set": {"variants": variants, "total_quantity": total_of(variants), "updated_at": now_utc()},
                    "$inc": {"version": 1},
                },
            )
            if result.modified_count == 1:
                return True
            logger.warning("inventory for product %s changed concurrently, retrying adjustment", product_id)
        logger.error("gave up adjusting variant %s of product %s by %s", variant_id, product_id, delta)
        return False

    def remove(self, inventory_id: str, scope: Optional[AuthScope] = None) -> None:
        ledger = self._load(inventory_id)
        self._check_owner(self.catalog.get_product(ledger["product_id"]), scope)
        self.ledgers.delete_one({"_id": ledger["_id"]})
        logger.info("inventory %s deleted", inventory_id)

    def _remove_variant(self, ledger: dict, variant_id: str) -> bool:
        variants = [v for v in ledger.get("variants", []) if v.get("variant_id") != variant_id]
        result = self.ledgers.update_one(
            _version_filter(ledger),
            {
                "$set": {"variants": variants, "total_quantity": total_of(variants), "updated_at": now_utc()},
                "$inc": {"version": 1},
            },
        )
        return result.modified_count == 1

    def bulk_remove(self, ids: List[str], scope: Optional[AuthScope] = None) -> dict:
        """Delete ledgers or single variants by id; each id succeeds or fails on its own."""
        if not ids:
            raise InventoryIdsRequired()

        failed_ids = []
        deleted_count = 0
        for raw_id in ids:
            item_id = str(raw_id)
            try:
                oid = to_object_id(item_id)
                ledger = self.ledgers.find_one({"_id": oid}) if oid else None
                if ledger:
                    self._check_owner(self.catalog.get_product(ledger["product_id"]), scope)
                    self.ledgers.delete_one({"_id": ledger["_id"]})
                    deleted_count += 1
                    continue
                ledger = self.ledgers.find_one({"variants.variant_id": item_id})
                if ledger:
                    self._check_owner(self.catalog.get_product(ledger["product_id"]), scope)
                    if self._remove_variant(ledger, item_id):
                        deleted_count += 1
                        continue
                failed_ids.append(item_id)
            except ShopError as exc:
                logger.info("bulk delete skipped %s: %s", item_id, exc.code)
                failed_ids.append(item_id)

        logger.info("bulk inventory delete: %s deleted, %s failed", deleted_count, len(failed_ids))
        return {"deleted_count": deleted_count, "failed_ids": failed_ids}
