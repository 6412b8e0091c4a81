import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import database
from auth import AuthScope, get_scope, require_roles
from cart import CartService
from catalog import CatalogService
from coupons import CouponService
from database import as_utc, create_document, ensure_indexes, get_documents, serialize_doc, to_object_id
from errors import ShopError
from inventory import InventoryService
from messages import pick_language, translate
from orders import OrderService
from schemas import (
    AddressCreateBody,
    BulkDeleteBody,
    CartCreateBody,
    CartItemBody,
    CartItemUpdateBody,
    CartUpdateBody,
    CustomerAddress,
    DiscountCreateBody,
    DiscountStatusBody,
    DiscountUpdateBody,
    InventoryCreateBody,
    InventoryStatusBody,
    InventoryUpdateBody,
    OrderCreateBody,
    OrderStatusBody,
    OrderUpdateBody,
    ProductCreateBody,
    ProductUpdateBody,
    VariantUpdateBody,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

API_PREFIX = os.getenv("API_PREFIX", "/api/v1")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes(database.db)
    yield


app = FastAPI(title="Shop Orders & Inventory", lifespan=lifespan)
router = APIRouter(prefix=API_PREFIX)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


HTTP_REASONS = {401: "UNAUTHORIZED", 403: "FORBIDDEN", 404: "NOT_FOUND", 500: "DATABASE_UNAVAILABLE"}


# ----------------------- Plumbing -----------------------
def get_db():
    if database.db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return database.db


def get_lang(x_lang: Optional[str] = Header(None), accept_language: Optional[str] = Header(None)) -> str:
    return pick_language(x_lang, accept_language)


def respond(data, code: str, lang: str, **params):
    return {"status": "success", "data": data, "message": translate(code, lang, **params)}


def _request_lang(request: Request) -> str:
    return pick_language(request.headers.get("x-lang"), request.headers.get("accept-language"))


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "status": "error",
            "data": None,
            "message": translate(exc.code, _request_lang(request), **exc.params),
            "reason": exc.code,
        },
    )


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "status": "error",
            "data": None,
            "message": exc.detail,
            "reason": HTTP_REASONS.get(exc.status_code, "HTTP_ERROR"),
        },
        headers=getattr(exc, "headers", None),
    )


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Shop orders & inventory API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = database.db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Products -----------------------
@router.get("/products")
def list_products(q: Optional[str] = None, seller_id: Optional[str] = None, active: Optional[bool] = None,
                  db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(CatalogService(db).list_products(q, seller_id, active), "PRODUCT_RETRIEVED", lang)


@router.get("/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(serialize_doc(CatalogService(db).get_product(product_id)), "PRODUCT_RETRIEVED", lang)


@router.post("/products", status_code=201)
def create_product(body: ProductCreateBody, scope: AuthScope = Depends(require_roles("seller", "admin")),
                   db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(CatalogService(db).create_product(body, scope), "PRODUCT_CREATED", lang)


@router.patch("/products/{product_id}")
def update_product(product_id: str, body: ProductUpdateBody,
                   scope: AuthScope = Depends(require_roles("seller", "admin")),
                   db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(CatalogService(db).update_product(product_id, body, scope), "PRODUCT_UPDATED", lang)


# ----------------------- Addresses -----------------------
@router.post("/addresses", status_code=201)
def create_address(body: AddressCreateBody, scope: AuthScope = Depends(get_scope),
                   db=Depends(get_db), lang: str = Depends(get_lang)):
    address = CustomerAddress(user_id=scope.user_id, **body.model_dump())
    address_id = create_document(db, "customeraddress", address)
    created = db["customeraddress"].find_one({"_id": to_object_id(address_id)})
    return respond(serialize_doc(created), "ADDRESS_CREATED", lang)


@router.get("/addresses")
def list_addresses(scope: AuthScope = Depends(get_scope), db=Depends(get_db), lang: str = Depends(get_lang)):
    addresses = get_documents(db, "customeraddress", {"user_id": scope.user_id})
    return respond([serialize_doc(a) for a in addresses], "ADDRESS_RETRIEVED", lang)


# ----------------------- Coupons -----------------------
coupon_roles = require_roles("seller", "admin")


@router.post("/coupons", status_code=201)
def create_coupon(body: DiscountCreateBody, scope: AuthScope = Depends(coupon_roles),
                  db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(CouponService(db).create(body, scope), "COUPON_CREATED", lang)


@router.get("/coupons")
def list_coupons(page: int = 1, limit: int = 10, active: Optional[bool] = None, search: Optional[str] = None,
                 method: Optional[str] = None, discount_type: Optional[str] = None,
                 scope: AuthScope = Depends(coupon_roles), db=Depends(get_db), lang: str = Depends(get_lang)):
    result = CouponService(db).list(scope, active, page, limit, search, method, discount_type)
    return respond(result, "COUPON_RETRIEVED", lang)


@router.delete("/coupons")
def bulk_delete_coupons(ids: List[str] = Query(default=[]), scope: AuthScope = Depends(coupon_roles),
                        db=Depends(get_db), lang: str = Depends(get_lang)):
    # accepts ?ids=a&ids=b as well as ?ids=a,b
    flat = [part.strip() for raw in ids for part in raw.split(",") if part.strip()]
    result = CouponService(db).bulk_remove(flat, scope)
    return respond(result, "COUPON_BULK_DELETED", lang, deleted_count=result["deleted_count"])


@router.get("/coupons/generate-code")
def generate_coupon_code(scope: AuthScope = Depends(coupon_roles),
                         db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond({"code": CouponService(db).generate_code()}, "COUPON_CODE_GENERATED", lang)


@router.get("/coupons/code/{code}")
def get_coupon_by_code(code: str, scope: AuthScope = Depends(get_scope),
                       db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(CouponService(db).get_by_code(code), "COUPON_RETRIEVED", lang)


@router.get("/coupons/{coupon_id}")
def get_coupon(coupon_id: str, scope: AuthScope = Depends(coupon_roles),
               db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(CouponService(db).get(coupon_id, scope), "COUPON_RETRIEVED", lang)


@router.put("/coupons/{coupon_id}")
def update_coupon(coupon_id: str, body: DiscountUpdateBody, scope: AuthScope = Depends(coupon_roles),
                  db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(CouponService(db).update(coupon_id, body, scope), "COUPON_UPDATED", lang)


@router.patch("/coupons/{coupon_id}/status")
def update_coupon_status(coupon_id: str, body: DiscountStatusBody, scope: AuthScope = Depends(coupon_roles),
                         db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(CouponService(db).update_status(coupon_id, body.active, scope), "COUPON_STATUS_UPDATED", lang)


@router.delete("/coupons/{coupon_id}")
def delete_coupon(coupon_id: str, scope: AuthScope = Depends(coupon_roles),
                  db=Depends(get_db), lang: str = Depends(get_lang)):
    CouponService(db).remove(coupon_id, scope)
    return respond(None, "COUPON_DELETED", lang)


# ----------------------- Inventory -----------------------
inventory_roles = require_roles("seller", "admin")


@router.post("/inventory", status_code=201)
def create_inventory(body: InventoryCreateBody, scope: AuthScope = Depends(inventory_roles),
                     db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(InventoryService(db).create(body, scope), "INVENTORY_CREATED", lang)


@router.get("/inventory")
def list_inventory(page: int = 1, limit: int = 10, search: Optional[str] = None, product_id: Optional[str] = None,
                   status: Optional[str] = None, min_quantity: Optional[int] = None,
                   max_quantity: Optional[int] = None, active: Optional[bool] = None,
                   scope: AuthScope = Depends(inventory_roles), db=Depends(get_db), lang: str = Depends(get_lang)):
    result = InventoryService(db).list(
        scope, page, limit, search, product_id, status, min_quantity, max_quantity, active
    )
    return respond(result, "INVENTORY_RETRIEVED", lang)


@router.post("/inventory/bulk-delete")
def bulk_delete_inventory(body: BulkDeleteBody, scope: AuthScope = Depends(inventory_roles),
                          db=Depends(get_db), lang: str = Depends(get_lang)):
    result = InventoryService(db).bulk_remove(body.ids, scope)
    return respond(result, "INVENTORY_BULK_DELETED", lang, deleted_count=result["deleted_count"])


@router.get("/inventory/product/{product_id}")
def get_inventory_by_product(product_id: str, scope: AuthScope = Depends(inventory_roles),
                             db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(InventoryService(db).get_by_product(product_id, scope), "INVENTORY_RETRIEVED", lang)


@router.get("/inventory/{inventory_id}")
def get_inventory(inventory_id: str, scope: AuthScope = Depends(inventory_roles),
                  db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(InventoryService(db).get(inventory_id, scope), "INVENTORY_RETRIEVED", lang)


@router.patch("/inventory/{inventory_id}")
def update_inventory(inventory_id: str, body: InventoryUpdateBody, scope: AuthScope = Depends(inventory_roles),
                     db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(InventoryService(db).update(inventory_id, body, scope), "INVENTORY_UPDATED", lang)


@router.patch("/inventory/{inventory_id}/status")
def update_inventory_status(inventory_id: str, body: InventoryStatusBody, scope: AuthScope = Depends(inventory_roles),
                            db=Depends(get_db), lang: str = Depends(get_lang)):
    result = InventoryService(db).update_status(inventory_id, body.active, scope)
    return respond(result, "INVENTORY_STATUS_UPDATED", lang)


@router.patch("/inventory/{inventory_id}/variant/{variant_id}")
def update_inventory_variant(inventory_id: str, variant_id: str, body: VariantUpdateBody,
                             scope: AuthScope = Depends(inventory_roles),
                             db=Depends(get_db), lang: str = Depends(get_lang)):
    result = InventoryService(db).update_variant(inventory_id, variant_id, body, scope)
    return respond(result, "INVENTORY_VARIANT_UPDATED", lang)


@router.delete("/inventory/{inventory_id}")
def delete_inventory(inventory_id: str, scope: AuthScope = Depends(inventory_roles),
                     db=Depends(get_db), lang: str = Depends(get_lang)):
    InventoryService(db).remove(inventory_id, scope)
    return respond(None, "INVENTORY_DELETED", lang)


# ----------------------- Cart -----------------------
@router.post("/cart", status_code=201)
def create_cart(body: CartCreateBody, scope: AuthScope = Depends(get_scope),
                db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(CartService(db).create(scope, body), "CART_CREATED", lang)


@router.get("/cart")
def list_carts(user_id: Optional[str] = None, scope: AuthScope = Depends(require_roles("admin")),
               db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(CartService(db).list_all(user_id), "CART_RETRIEVED", lang)


@router.get("/cart/me")
def get_my_cart(scope: AuthScope = Depends(get_scope), db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(CartService(db).get(scope), "CART_RETRIEVED", lang)


@router.post("/cart/items")
def add_cart_item(body: CartItemBody, scope: AuthScope = Depends(get_scope),
                  db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(CartService(db).add_item(scope, body), "CART_ITEM_ADDED", lang)


@router.patch("/cart/items/{item_id}")
def update_cart_item(item_id: str, body: CartItemUpdateBody, scope: AuthScope = Depends(get_scope),
                     db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(CartService(db).update_item(scope, item_id, body), "CART_ITEM_UPDATED", lang)


@router.delete("/cart/items/{item_id}")
def remove_cart_item(item_id: str, scope: AuthScope = Depends(get_scope),
                     db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(CartService(db).remove_item(scope, item_id), "CART_ITEM_REMOVED", lang)


@router.patch("/cart")
def update_cart(body: CartUpdateBody, scope: AuthScope = Depends(get_scope),
                db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(CartService(db).update(scope, body), "CART_UPDATED", lang)


@router.delete("/cart/clear")
def clear_cart(scope: AuthScope = Depends(get_scope), db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(CartService(db).clear(scope), "CART_CLEARED", lang)


@router.delete("/cart")
def delete_cart(scope: AuthScope = Depends(get_scope), db=Depends(get_db), lang: str = Depends(get_lang)):
    CartService(db).remove(scope)
    return respond(None, "CART_DELETED", lang)


@router.get("/cart/{cart_id}")
def get_cart(cart_id: str, scope: AuthScope = Depends(require_roles("admin")),
             db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(CartService(db).get_by_id(cart_id), "CART_RETRIEVED", lang)


# ----------------------- Orders -----------------------
@router.post("/orders", status_code=201)
def create_order(body: OrderCreateBody, scope: AuthScope = Depends(require_roles("user")),
                 db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(OrderService(db).create(body, scope), "ORDER_CREATED", lang)


@router.get("/orders")
def list_orders(page: int = 1, limit: int = 10, status: Optional[str] = None,
                payment_status: Optional[str] = None, payment_method: Optional[str] = None,
                search: Optional[str] = None, customer_id: Optional[str] = None, seller_id: Optional[str] = None,
                start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
                scope: AuthScope = Depends(get_scope), db=Depends(get_db), lang: str = Depends(get_lang)):
    result = OrderService(db).list(
        scope,
        page=page,
        limit=limit,
        status=status,
        payment_status=payment_status,
        payment_method=payment_method,
        search=search,
        customer_id=customer_id,
        seller_id=seller_id,
        start_date=as_utc(start_date),
        end_date=as_utc(end_date),
    )
    return respond(result, "ORDERS_RETRIEVED", lang)


@router.get("/orders/{order_id}")
def get_order(order_id: str, scope: AuthScope = Depends(get_scope), db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(OrderService(db).get(order_id, scope), "ORDER_RETRIEVED", lang)


@router.patch("/orders/{order_id}")
def update_order(order_id: str, body: OrderUpdateBody, scope: AuthScope = Depends(require_roles("user", "admin")),
                 db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(OrderService(db).update(order_id, body, scope), "ORDER_UPDATED", lang)


@router.patch("/orders/{order_id}/status")
def update_order_status(order_id: str, body: OrderStatusBody,
                        scope: AuthScope = Depends(require_roles("seller", "admin")),
                        db=Depends(get_db), lang: str = Depends(get_lang)):
    return respond(OrderService(db).update_status(order_id, body, scope), "ORDER_STATUS_UPDATED", lang)


@router.delete("/orders/{order_id}")
def delete_order(order_id: str, scope: AuthScope = Depends(require_roles("user", "admin")),
                 db=Depends(get_db), lang: str = Depends(get_lang)):
    OrderService(db).remove(order_id, scope)
    return respond(None, "ORDER_DELETED", lang)


app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
