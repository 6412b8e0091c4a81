from datetime import timedelta

import pytest
from pymongo.errors import PyMongoError

from conftest import ADMIN, CUSTOMER, OTHER_CUSTOMER, OTHER_SELLER, SELLER
from database import now_utc
from errors import (
    AddressNotFound,
    CancellationReasonRequired,
    CouponNotApplicableToProducts,
    InsufficientStock,
    InsufficientVariantStock,
    InvalidColor,
    InvalidStatusTransition,
    OrderAccessDenied,
    OrderCannotBeDeleted,
    OrderCannotBeUpdated,
    OrderNotFound,
    OrderNumberUnavailable,
    ProductNotActive,
    VariantNotFound,
)
from orders import can_transition, generate_order_number
from schemas import DiscountCreateBody, OrderCreateBody, OrderItemBody, OrderStatusBody, OrderUpdateBody


def place(orders, address_id, items, scope=CUSTOMER, **extra):
    body = OrderCreateBody(
        items=[OrderItemBody(**item) for item in items],
        shipping_address_id=address_id,
        payment_method="cash_on_delivery",
        **extra,
    )
    return orders.create(body, scope)


def stock_of(db, product):
    return db["product"].find_one({"_id": product["_id"]})["stock_quantity"]


def variant_quantity(db, product, index=0):
    ledger = db["productinventory"].find_one({"product_id": str(product["_id"])})
    return ledger["variants"][index]["quantity"], ledger["total_quantity"]


def test_order_number_format():
    number = generate_order_number()
    prefix, stamp, suffix = number.split("-")
    assert prefix == "ORD"
    assert stamp.isalnum() and stamp.upper() == stamp
    assert len(suffix) == 4


def test_create_with_variant_decrements_both_counters(db, orders, make_product, make_ledger, address):
    product = make_product(stock_quantity=10, original_price=25)
    make_ledger(product, [{"size": "M", "colors": ["red"], "quantity": 5}])

    order = place(orders, address(), [
        {"product_id": str(product["_id"]), "quantity": 2, "size": "M", "colors": ["red"]}
    ])

    assert order["status"] == "pending"
    assert order["stock_reserved"] is True
    assert order["total"] == 50
    assert order["items"][0]["variant_id"]
    assert order["seller_id"] == SELLER.user_id
    assert stock_of(db, product) == 8
    assert variant_quantity(db, product) == (3, 3)


def test_flat_only_product(db, orders, make_product, address):
    product = make_product(stock_quantity=4)
    order = place(orders, address(), [{"product_id": str(product["_id"]), "quantity": 4}])
    assert order["items"][0]["variant_id"] is None
    assert stock_of(db, product) == 0


def test_rejections_leave_stock_untouched(db, orders, make_product, make_ledger, address):
    product = make_product(stock_quantity=10)
    make_ledger(product, [{"size": "M", "colors": ["red"], "quantity": 5}])
    pid = str(product["_id"])
    address_id = address()

    with pytest.raises(InsufficientStock) as exc:
        place(orders, address_id, [{"product_id": pid, "quantity": 11}])
    assert exc.value.params == {"product": product["name_en"], "available": 10, "requested": 11}
    with pytest.raises(InsufficientVariantStock):
        place(orders, address_id, [{"product_id": pid, "quantity": 6, "size": "M", "colors": ["red"]}])
    with pytest.raises(VariantNotFound):
        place(orders, address_id, [{"product_id": pid, "quantity": 1, "size": "L", "colors": ["red"]}])
    with pytest.raises(InvalidColor):
        place(orders, address_id, [{"product_id": pid, "quantity": 1, "size": "M", "colors": ["black"]}])

    assert stock_of(db, product) == 10
    assert variant_quantity(db, product) == (5, 5)
    assert db["order"].count_documents({}) == 0


def test_later_line_failure_takes_no_stock_from_earlier_lines(db, orders, make_product, address):
    first = make_product(stock_quantity=5)
    second = make_product(stock_quantity=1)
    with pytest.raises(InsufficientStock):
        place(orders, address(), [
            {"product_id": str(first["_id"]), "quantity": 2},
            {"product_id": str(second["_id"]), "quantity": 2},
        ])
    assert stock_of(db, first) == 5
    assert stock_of(db, second) == 1


def fail_on_call(original, call, result):
    """Wrap ``original`` so its ``call``-th invocation returns or raises ``result``."""
    calls = {"n": 0}

    def wrapper(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == call:
            if isinstance(result, Exception):
                raise result
            return result
        return original(*args, **kwargs)

    return wrapper


def test_database_error_mid_placement_gives_stock_back(db, orders, make_product, address, monkeypatch):
    first = make_product(stock_quantity=5)
    second = make_product(stock_quantity=5)
    monkeypatch.setattr(
        orders.catalog, "reserve_stock", fail_on_call(orders.catalog.reserve_stock, 2, PyMongoError("write failed"))
    )

    with pytest.raises(PyMongoError):
        place(orders, address(), [
            {"product_id": str(first["_id"]), "quantity": 2},
            {"product_id": str(second["_id"]), "quantity": 1},
        ])
    assert stock_of(db, first) == 5
    assert stock_of(db, second) == 5
    assert db["order"].count_documents({}) == 0


def test_lost_flat_stock_race_reverses_earlier_lines(db, orders, make_product, make_ledger, address, monkeypatch):
    first = make_product(stock_quantity=5)
    make_ledger(first, [{"size": "M", "colors": ["red"], "quantity": 3}])
    second = make_product(stock_quantity=5)
    monkeypatch.setattr(orders.catalog, "reserve_stock", fail_on_call(orders.catalog.reserve_stock, 2, False))

    with pytest.raises(InsufficientStock):
        place(orders, address(), [
            {"product_id": str(first["_id"]), "quantity": 2, "size": "M", "colors": ["red"]},
            {"product_id": str(second["_id"]), "quantity": 1},
        ])
    assert stock_of(db, first) == 5
    assert variant_quantity(db, first) == (3, 3)
    assert stock_of(db, second) == 5
    assert db["order"].count_documents({}) == 0


def test_lost_variant_race_reports_what_is_left(db, orders, make_product, make_ledger, address, monkeypatch):
    first = make_product(stock_quantity=5)
    second = make_product(stock_quantity=5)
    make_ledger(second, [{"size": "M", "colors": ["red"], "quantity": 4}])
    monkeypatch.setattr(orders.inventory, "adjust_variant_quantity", lambda *args: False)

    with pytest.raises(InsufficientVariantStock) as exc:
        place(orders, address(), [
            {"product_id": str(first["_id"]), "quantity": 1},
            {"product_id": str(second["_id"]), "quantity": 2, "size": "M", "colors": ["red"]},
        ])
    assert exc.value.params == {"product": second["name_en"], "available": 4, "requested": 2}
    assert stock_of(db, first) == 5
    assert stock_of(db, second) == 5
    assert db["order"].count_documents({}) == 0


def test_order_number_collision_is_regenerated(orders, make_product, address, monkeypatch):
    product = make_product(stock_quantity=5)
    address_id = address()
    existing = place(orders, address_id, [{"product_id": str(product["_id"]), "quantity": 1}])

    numbers = iter([existing["order_number"], "ORD-FRESH-0001"])
    monkeypatch.setattr("orders.generate_order_number", lambda: next(numbers))
    order = place(orders, address_id, [{"product_id": str(product["_id"]), "quantity": 1}])
    assert order["order_number"] == "ORD-FRESH-0001"


def test_order_number_gives_up_after_five_collisions(db, orders, make_product, address, monkeypatch):
    product = make_product(stock_quantity=5)
    address_id = address()
    existing = place(orders, address_id, [{"product_id": str(product["_id"]), "quantity": 1}])
    attempts = []

    def same_number():
        attempts.append(1)
        return existing["order_number"]

    monkeypatch.setattr("orders.generate_order_number", same_number)
    with pytest.raises(OrderNumberUnavailable):
        place(orders, address_id, [{"product_id": str(product["_id"]), "quantity": 1}])
    assert len(attempts) == 5
    assert stock_of(db, product) == 4
    assert db["order"].count_documents({}) == 1


def test_failed_restore_is_recorded_for_reconciliation(db, orders, make_product, address, monkeypatch):
    first = make_product(stock_quantity=5)
    second = make_product(stock_quantity=5)
    order = place(orders, address(), [
        {"product_id": str(first["_id"]), "quantity": 2},
        {"product_id": str(second["_id"]), "quantity": 3},
    ])
    monkeypatch.setattr(
        orders.catalog, "release_stock", fail_on_call(orders.catalog.release_stock, 2, PyMongoError("write failed"))
    )

    with pytest.raises(PyMongoError):
        orders.update_status(order["id"], OrderStatusBody(status="cancelled", cancellation_reason="dup"), ADMIN)

    assert stock_of(db, first) == 5
    assert stock_of(db, second) == 2
    record = db["stockreconciliation"].find_one({"order_id": order["id"]})
    assert record["resolved"] is False
    assert record["pending"] == [{"kind": "product", "product_id": str(second["_id"]), "quantity": 3}]
    assert db["order"].find_one({"order_number": order["order_number"]})["stock_reserved"] is False


def test_repeated_product_lines_count_together(db, orders, make_product, address):
    product = make_product(stock_quantity=5)
    pid = str(product["_id"])
    with pytest.raises(InsufficientStock):
        place(orders, address(), [
            {"product_id": pid, "quantity": 3, "size": "M"},
            {"product_id": pid, "quantity": 3, "size": "L"},
        ])
    assert stock_of(db, product) == 5


def test_inactive_product_and_foreign_address(db, orders, make_product, address):
    inactive = make_product(active=False)
    with pytest.raises(ProductNotActive):
        place(orders, address(), [{"product_id": str(inactive["_id"]), "quantity": 1}])

    product = make_product()
    with pytest.raises(AddressNotFound):
        place(orders, address(OTHER_CUSTOMER), [{"product_id": str(product["_id"]), "quantity": 1}])


def test_sale_price_and_variant_override(orders, make_product, make_ledger, address):
    now = now_utc()
    on_sale = make_product(
        original_price=100, sale_price=70,
        sale_start_date=now - timedelta(days=1), sale_end_date=now + timedelta(days=1),
    )
    expired_sale = make_product(original_price=100, sale_price=70, sale_end_date=now - timedelta(days=1))
    overridden = make_product(original_price=100, sale_price=70)
    make_ledger(overridden, [{"size": "M", "colors": ["red"], "quantity": 3, "attributes": {"price": 55}}])

    order = place(orders, address(), [
        {"product_id": str(on_sale["_id"]), "quantity": 1},
        {"product_id": str(expired_sale["_id"]), "quantity": 1},
        {"product_id": str(overridden["_id"]), "quantity": 1, "size": "M", "colors": ["red"]},
    ])
    assert [item["unit_price"] for item in order["items"]] == [70, 100, 55]
    assert order["subtotal"] == 225


def test_price_is_frozen_after_placement(db, orders, make_product, address):
    product = make_product(original_price=40)
    order = place(orders, address(), [{"product_id": str(product["_id"]), "quantity": 1}])
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"original_price": 99}})
    assert orders.get(order["id"], CUSTOMER)["items"][0]["unit_price"] == 40


def test_coupon_discount_is_distributed(orders, coupons, make_product, address):
    coupons.create(DiscountCreateBody(
        name="Ten", method="discount_code", code="TEN", discount_type="percentage", discount_value=10
    ))
    first = make_product(original_price=33.33)
    second = make_product(original_price=66.67)

    order = place(orders, address(), [
        {"product_id": str(first["_id"]), "quantity": 1},
        {"product_id": str(second["_id"]), "quantity": 1},
    ], coupon_code="TEN")

    assert order["discount_amount"] == 10
    assert order["coupon_code"] == "TEN"
    assert round(sum(item["subtotal"] for item in order["items"]), 2) == order["total"] == 90
    assert round(sum(item["discount"] for item in order["items"]), 2) == 10


def test_inapplicable_coupon_fails_without_side_effects(db, orders, coupons, make_product, address):
    coupons.create(DiscountCreateBody(
        name="Shoes", method="discount_code", code="SHOES", discount_type="fixed", discount_value=5,
        applies_to="specific_categories", category_ids=["shoes"],
    ))
    product = make_product(category_id="shirts", stock_quantity=3)
    with pytest.raises(CouponNotApplicableToProducts):
        place(orders, address(), [{"product_id": str(product["_id"]), "quantity": 1}], coupon_code="SHOES")
    assert stock_of(db, product) == 3


def test_mixed_sellers_leave_order_seller_empty(orders, make_product, address):
    first = make_product(seller_id=SELLER.user_id)
    second = make_product(seller_id=OTHER_SELLER.user_id)
    order = place(orders, address(), [
        {"product_id": str(first["_id"]), "quantity": 1},
        {"product_id": str(second["_id"]), "quantity": 1},
    ])
    assert order["seller_id"] is None
    assert orders.get(order["id"], OTHER_SELLER)["id"] == order["id"]


def test_transition_table():
    assert can_transition("pending", "confirmed")
    assert can_transition("pending", "shipped")
    assert can_transition("processing", "cancelled")
    assert can_transition("delivered", "refunded")
    assert can_transition("cancelled", "refunded")
    assert can_transition("shipped", "shipped")
    assert not can_transition("shipped", "confirmed")
    assert not can_transition("delivered", "cancelled")
    assert not can_transition("cancelled", "pending")
    assert not can_transition("refunded", "pending")


def test_status_updates_stamp_once(orders, make_product, address):
    product = make_product()
    order = place(orders, address(), [{"product_id": str(product["_id"]), "quantity": 1}])

    confirmed = orders.update_status(order["id"], OrderStatusBody(status="confirmed"), ADMIN)
    first_stamp = confirmed["confirmed_at"]
    again = orders.update_status(order["id"], OrderStatusBody(status="confirmed", admin_notes="checked"), ADMIN)
    assert again["confirmed_at"] == first_stamp
    assert again["admin_notes"] == "checked"

    paid = orders.update_status(order["id"], OrderStatusBody(payment_status="paid", transaction_id="tx-1"), ADMIN)
    paid_again = orders.update_status(order["id"], OrderStatusBody(payment_status="paid"), ADMIN)
    assert paid["paid_at"] == paid_again["paid_at"]

    shipped = orders.update_status(
        order["id"], OrderStatusBody(status="shipped", tracking_number="TRK1", shipping_carrier="DHL"), SELLER
    )
    assert shipped["shipped_at"] and shipped["tracking_number"] == "TRK1"
    with pytest.raises(InvalidStatusTransition):
        orders.update_status(order["id"], OrderStatusBody(status="confirmed"), ADMIN)


def test_cancellation_restores_stock_exactly_once(db, orders, make_product, make_ledger, address):
    product = make_product(stock_quantity=10)
    make_ledger(product, [{"size": "M", "colors": ["red"], "quantity": 5}])
    order = place(orders, address(), [
        {"product_id": str(product["_id"]), "quantity": 2, "size": "M", "colors": ["red"]}
    ])

    with pytest.raises(CancellationReasonRequired):
        orders.update_status(order["id"], OrderStatusBody(status="cancelled"), ADMIN)

    cancelled = orders.update_status(
        order["id"], OrderStatusBody(status="cancelled", cancellation_reason="customer request"), ADMIN
    )
    assert cancelled["status"] == "cancelled"
    assert cancelled["cancelled_at"]
    assert cancelled["stock_reserved"] is False
    assert stock_of(db, product) == 10
    assert variant_quantity(db, product) == (5, 5)

    orders.update_status(order["id"], OrderStatusBody(status="refunded"), ADMIN)
    assert stock_of(db, product) == 10


def test_delete_pending_order_restores_stock(db, orders, make_product, address):
    product = make_product(stock_quantity=6)
    order = place(orders, address(), [{"product_id": str(product["_id"]), "quantity": 4}])
    orders.remove(order["id"], CUSTOMER)
    assert stock_of(db, product) == 6
    with pytest.raises(OrderNotFound):
        orders.get(order["id"], CUSTOMER)


def test_delete_cancelled_order_does_not_restore_twice(db, orders, make_product, address):
    product = make_product(stock_quantity=6)
    order = place(orders, address(), [{"product_id": str(product["_id"]), "quantity": 4}])
    orders.update_status(order["id"], OrderStatusBody(status="cancelled", cancellation_reason="dup"), ADMIN)
    orders.remove(order["id"], ADMIN)
    assert stock_of(db, product) == 6


def test_only_pending_orders_edit_or_delete(orders, make_product, address):
    product = make_product()
    order = place(orders, address(), [{"product_id": str(product["_id"]), "quantity": 1}])
    updated = orders.update(order["id"], OrderUpdateBody(customer_notes="ring twice"), CUSTOMER)
    assert updated["customer_notes"] == "ring twice"

    orders.update_status(order["id"], OrderStatusBody(status="shipped"), ADMIN)
    with pytest.raises(OrderCannotBeUpdated):
        orders.update(order["id"], OrderUpdateBody(customer_notes="late"), CUSTOMER)
    with pytest.raises(OrderCannotBeDeleted):
        orders.remove(order["id"], CUSTOMER)


def test_access_rules(orders, make_product, address):
    product = make_product(seller_id=SELLER.user_id)
    order = place(orders, address(), [{"product_id": str(product["_id"]), "quantity": 1}])

    assert orders.get(order["id"], ADMIN)["id"] == order["id"]
    assert orders.get(order["id"], SELLER)["id"] == order["id"]
    with pytest.raises(OrderAccessDenied):
        orders.get(order["id"], OTHER_CUSTOMER)
    with pytest.raises(OrderAccessDenied):
        orders.get(order["id"], OTHER_SELLER)
    with pytest.raises(OrderAccessDenied):
        orders.update_status(order["id"], OrderStatusBody(status="confirmed"), CUSTOMER)
    with pytest.raises(OrderNotFound):
        orders.get("64b0000000000000000000ee", OTHER_CUSTOMER)


def test_list_is_scoped_by_role(orders, make_product, address):
    mine = make_product(seller_id=SELLER.user_id)
    theirs = make_product(seller_id=OTHER_SELLER.user_id)
    place(orders, address(), [{"product_id": str(mine["_id"]), "quantity": 1}])
    place(orders, address(OTHER_CUSTOMER), [{"product_id": str(theirs["_id"]), "quantity": 1}], scope=OTHER_CUSTOMER)

    assert orders.list(CUSTOMER)["total"] == 1
    assert orders.list(SELLER)["total"] == 1
    assert orders.list(ADMIN)["total"] == 2
    assert orders.list(ADMIN, customer_id=OTHER_CUSTOMER.user_id)["total"] == 1
    assert orders.list(ADMIN, status="shipped")["total"] == 0
