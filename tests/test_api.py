from conftest import ADMIN, CUSTOMER, SELLER, bearer


def test_health(client):
    assert client.get("/").status_code == 200
    assert client.get("/test").json()["backend"] == "✅ Running"


def test_order_flow_over_http(client, db, make_product):
    product = make_product(stock_quantity=3, original_price=15)
    address = client.post(
        "/api/v1/addresses",
        json={"full_name": "Sara Ali", "phone": "0500000000", "line1": "1 Market St", "city": "Riyadh", "country": "SA"},
        headers=bearer(CUSTOMER),
    ).json()["data"]

    created = client.post(
        "/api/v1/orders",
        json={
            "items": [{"product_id": str(product["_id"]), "quantity": 2}],
            "shipping_address_id": address["id"],
            "payment_method": "cash_on_delivery",
        },
        headers=bearer(CUSTOMER),
    )
    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "success"
    assert body["message"] == "Order created successfully"
    order = body["data"]
    assert order["total"] == 30

    listed = client.get("/api/v1/orders", headers=bearer(CUSTOMER)).json()["data"]
    assert listed["total"] == 1

    shipped = client.patch(f"/api/v1/orders/{order['id']}/status", json={"status": "shipped"}, headers=bearer(SELLER))
    assert shipped.json()["data"]["status"] == "shipped"


def test_insufficient_stock_is_localized(client, db, make_product, address):
    product = make_product(stock_quantity=1)
    payload = {
        "items": [{"product_id": str(product["_id"]), "quantity": 2}],
        "shipping_address_id": address(),
        "payment_method": "cash_on_delivery",
    }

    response = client.post("/api/v1/orders", json=payload, headers=bearer(CUSTOMER))
    assert response.status_code == 409
    body = response.json()
    assert body["status"] == "error"
    assert body["data"] is None
    assert body["reason"] == "INSUFFICIENT_STOCK"
    assert product["name_en"] in body["message"]
    assert "1" in body["message"] and "2" in body["message"]

    arabic = client.post("/api/v1/orders", json=payload, headers={**bearer(CUSTOMER), "x-lang": "ar"}).json()
    assert arabic["reason"] == "INSUFFICIENT_STOCK"
    assert arabic["message"] != body["message"]


def test_role_gating(client, make_product):
    product = make_product()
    response = client.post(
        "/api/v1/inventory",
        json={"product_id": str(product["_id"]), "variants": [{"size": "M", "colors": ["red"], "quantity": 1}]},
        headers=bearer(CUSTOMER),
    )
    assert response.status_code == 403
    assert response.json()["reason"] == "FORBIDDEN"

    created = client.post(
        "/api/v1/inventory",
        json={"product_id": str(product["_id"]), "variants": [{"size": "M", "colors": ["red"], "quantity": 1}]},
        headers=bearer(SELLER),
    )
    assert created.status_code == 201
    assert created.json()["data"]["total_quantity"] == 1


def test_missing_order_is_404(client):
    response = client.get("/api/v1/orders/64b0000000000000000000ee", headers=bearer(ADMIN))
    assert response.status_code == 404
    assert response.json()["reason"] == "ORDER_NOT_FOUND"


def test_bulk_delete_message_counts(client, make_product, make_ledger):
    ledger = make_ledger(make_product(), [{"size": "M", "colors": ["red"], "quantity": 1}])
    response = client.post(
        "/api/v1/inventory/bulk-delete", json={"ids": [ledger["id"], "nope"]}, headers=bearer(ADMIN)
    ).json()
    assert response["data"] == {"deleted_count": 1, "failed_ids": ["nope"]}
    assert "1" in response["message"]


def test_resource_routes_live_under_api_prefix(client):
    assert client.get("/orders", headers=bearer(ADMIN)).status_code == 404
    assert client.get("/api/v1/orders", headers=bearer(ADMIN)).status_code == 200


def test_coupon_management_over_http(client):
    generated = client.get("/api/v1/coupons/generate-code", headers=bearer(SELLER)).json()
    code = generated["data"]["code"]
    assert len(code) == 8

    created = client.post(
        "/api/v1/coupons",
        json={"name": "Ten", "method": "discount_code", "code": code,
              "discount_type": "percentage", "discount_value": 10},
        headers=bearer(SELLER),
    )
    assert created.status_code == 201
    coupon = created.json()["data"]
    assert coupon["seller_id"] == SELLER.user_id

    by_code = client.get(f"/api/v1/coupons/code/{code}", headers=bearer(CUSTOMER)).json()
    assert by_code["data"]["id"] == coupon["id"]

    updated = client.put(f"/api/v1/coupons/{coupon['id']}", json={"discount_value": 15}, headers=bearer(SELLER))
    assert updated.json()["data"]["discount_value"] == 15

    listed = client.get("/api/v1/coupons", params={"search": code}, headers=bearer(SELLER)).json()["data"]
    assert listed["total"] == 1

    removed = client.delete("/api/v1/coupons", params={"ids": f"{coupon['id']},nope"}, headers=bearer(ADMIN)).json()
    assert removed["data"] == {"deleted_count": 1, "failed_ids": ["nope"]}
    assert "1" in removed["message"]


def test_customers_cannot_manage_coupons(client):
    response = client.get("/api/v1/coupons/generate-code", headers=bearer(CUSTOMER))
    assert response.status_code == 403
