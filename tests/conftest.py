import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import AuthScope, create_token
from cart import CartService
from catalog import CatalogService
from coupons import CouponService
from database import create_document, ensure_indexes, to_object_id
from inventory import InventoryService
from locks import StockLocks
from orders import OrderService
from schemas import CustomerAddress, InventoryCreateBody, VariantBody

CUSTOMER = AuthScope(user_id="64b000000000000000000001", role="user")
OTHER_CUSTOMER = AuthScope(user_id="64b000000000000000000002", role="user")
SELLER = AuthScope(user_id="64b0000000000000000000a1", role="seller")
OTHER_SELLER = AuthScope(user_id="64b0000000000000000000a2", role="seller")
ADMIN = AuthScope(user_id="64b0000000000000000000ff", role="admin")


@pytest.fixture
def db():
    database = mongomock.MongoClient()["shop_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def catalog(db):
    return CatalogService(db)


@pytest.fixture
def inventory(db, catalog):
    return InventoryService(db, catalog)


@pytest.fixture
def coupons(db):
    return CouponService(db)


@pytest.fixture
def carts(db, catalog, inventory, coupons):
    return CartService(db, catalog, inventory, coupons)


@pytest.fixture
def orders(db, catalog, inventory, coupons):
    return OrderService(db, catalog, inventory, coupons, StockLocks())


@pytest.fixture
def make_product(db):
    counter = {"n": 0}

    def factory(**overrides):
        counter["n"] += 1
        doc = {
            "name_en": f"Shirt {counter['n']}",
            "name_ar": f"قميص {counter['n']}",
            "sku": f"SKU-{counter['n']}",
            "original_price": 100.0,
            "sale_price": None,
            "sale_start_date": None,
            "sale_end_date": None,
            "stock_quantity": 10,
            "sizes": ["S", "M", "L"],
            "colors": ["red", "blue", "green"],
            "images": ["https://img.example/shirt.jpg"],
            "category_id": None,
            "subcategory_id": None,
            "seller_id": SELLER.user_id,
            "active": True,
        }
        doc.update(overrides)
        product_id = create_document(db, "product", doc)
        return db["product"].find_one({"_id": to_object_id(product_id)})

    return factory


@pytest.fixture
def make_ledger(inventory):
    def factory(product, variants):
        body = InventoryCreateBody(
            product_id=str(product["_id"]),
            variants=[VariantBody(**v) for v in variants],
        )
        return inventory.create(body)

    return factory


@pytest.fixture
def address(db):
    def factory(scope=CUSTOMER):
        return create_document(
            db,
            "customeraddress",
            CustomerAddress(user_id=scope.user_id, full_name="Sara Ali", phone="0500000000",
                            line1="1 Market St", city="Riyadh", country="SA"),
        )

    return factory


def bearer(scope: AuthScope) -> dict:
    token = create_token({"id": scope.user_id, "role": scope.role, "segment_ids": list(scope.segment_ids)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(db):
    from main import app, get_db

    app.dependency_overrides[get_db] = lambda: db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
