import pytest

import schemas
from conftest import PASSWORD, auth_headers, order_data, product_data, user_data

NEW_USER = {
    "username": "newbie",
    "name": "New Bie",
    "email": "newbie@example.com",
    "password": "hunter22",
}


@pytest.fixture
def product(storage):
    return storage.create_product(product_data())


def checkout(total_amount=1999.0):
    return {"total_amount": total_amount, "shipping_address": "1 Main St", "payment_method": "UPI"}


# --- Auth ---
def test_register_returns_token_and_public_user(client, storage):
    response = client.post("/api/register", json={**NEW_USER, "is_admin": True})

    assert response.status_code == 201
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["username"] == "newbie"
    assert body["user"]["is_admin"] is False
    assert "password" not in body["user"]
    assert storage.get_user_by_username("newbie").password != "hunter22"


def test_register_rejects_duplicates(client, customer):
    response = client.post("/api/register", json={**NEW_USER, "username": customer.username})
    assert response.status_code == 400
    assert response.json()["detail"] == "Username already exists"

    response = client.post("/api/register", json={**NEW_USER, "email": customer.email})
    assert response.status_code == 400
    assert response.json()["detail"] == "Email already registered"


def test_register_with_name_of_deleted_user(client, storage, customer):
    storage.delete_user(customer.id)

    response = client.post("/api/register", json={**NEW_USER, "username": customer.username})

    assert response.status_code == 400


def test_login_and_read_current_user(client, customer):
    response = client.post("/api/login", json={"username": "jane", "password": PASSWORD})
    assert response.status_code == 200
    token = response.json()["access_token"]

    response = client.get("/api/user", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json()["id"] == customer.id
    assert "password" not in response.json()


def test_update_profile(client, storage, customer):
    headers = auth_headers(customer)

    response = client.put("/api/user", json={"city": "Pune", "pincode": "411001"}, headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["city"] == "Pune"
    assert body["pincode"] == "411001"
    assert body["name"] == customer.name
    assert "password" not in body
    stored = storage.get_user(customer.id)
    assert stored.created_at == customer.created_at
    assert stored.password == customer.password


def test_update_profile_rejects_taken_email_and_nulls(client, storage, customer):
    storage.create_user(user_data("sam"))
    headers = auth_headers(customer)

    assert client.put("/api/user", json={"email": "sam@example.com"}, headers=headers).status_code == 400
    assert client.put("/api/user", json={"email": customer.email}, headers=headers).status_code == 200
    assert client.put("/api/user", json={"name": None}, headers=headers).status_code == 422
    assert client.put("/api/user", json={"city": "Pune"}).status_code == 401


def test_update_profile_cannot_grant_admin(client, storage, customer):
    client.put("/api/user", json={"is_admin": True}, headers=auth_headers(customer))

    assert storage.get_user(customer.id).is_admin is False


def test_login_with_wrong_password(client, customer):
    response = client.post("/api/login", json={"username": "jane", "password": "wrong"})

    assert response.status_code == 401


@pytest.mark.parametrize("headers", [
    {},
    {"Authorization": "Bearer not-a-jwt"},
    {"Authorization": "Basic amFuZTpwYXNz"},
])
def test_protected_routes_require_a_valid_token(client, headers):
    assert client.get("/api/user", headers=headers).status_code == 401


def test_token_of_deleted_user_is_rejected(client, storage, customer):
    storage.delete_user(customer.id)

    assert client.get("/api/user", headers=auth_headers(customer)).status_code == 401


def test_admin_routes_forbid_customers(client, customer):
    headers = auth_headers(customer)

    assert client.get("/api/admin/users", headers=headers).status_code == 403
    assert client.get("/api/admin/analytics", headers=headers).status_code == 403
    assert client.get("/api/check-admin", headers=headers).json() == {"is_admin": False}


# --- Catalogue ---
def test_catalogue_listing(client, storage):
    storage.create_category(schemas.CategoryCreate(name="Home", image="home.png"))
    storage.create_banner(schemas.BannerCreate(image="a.jpg", link="/a"))
    storage.create_banner(schemas.BannerCreate(image="b.jpg", link="/b", active=False))
    storage.create_product(product_data(title="Lamp", category="Home"))
    storage.create_product(product_data(title="Mouse"))

    assert [c["name"] for c in client.get("/api/categories").json()] == ["Home"]
    assert [b["link"] for b in client.get("/api/banners").json()] == ["/a"]
    assert [p["title"] for p in client.get("/api/products").json()] == ["Lamp", "Mouse"]
    assert [p["title"] for p in client.get("/api/products", params={"limit": 1}).json()] == ["Lamp"]
    assert [p["title"] for p in client.get("/api/products", params={"category": "Home"}).json()] == ["Lamp"]
    assert [p["title"] for p in client.get("/api/products/category/Electronics").json()] == ["Mouse"]


def test_read_product(client, product):
    response = client.get(f"/api/products/{product.id}")

    assert response.status_code == 200
    assert response.json()["title"] == product.title
    assert client.get("/api/products/999").status_code == 404


# --- Reviews ---
def test_review_updates_rating(client, customer, product):
    headers = auth_headers(customer)

    response = client.post(f"/api/products/{product.id}/reviews", json={"rating": 5, "comment": "Great"}, headers=headers)
    assert response.status_code == 201
    client.post(f"/api/products/{product.id}/reviews", json={"rating": 4}, headers=headers)

    assert client.get(f"/api/products/{product.id}").json()["rating"] == 4.5
    reviews = client.get(f"/api/products/{product.id}/reviews").json()
    assert [(r["user"]["username"], r["rating"]) for r in reviews] == [("jane", 5), ("jane", 4)]


def test_review_validation(client, customer, product):
    headers = auth_headers(customer)

    assert client.post(f"/api/products/{product.id}/reviews", json={"rating": 6}, headers=headers).status_code == 422
    assert client.post("/api/products/999/reviews", json={"rating": 3}, headers=headers).status_code == 404
    assert client.post(f"/api/products/{product.id}/reviews", json={"rating": 3}).status_code == 401


# --- Cart ---
def test_cart_flow(client, customer, product):
    headers = auth_headers(customer)

    assert client.get("/api/cart", headers=headers).json()["items"] == []

    first = client.post("/api/cart/items", json={"product_id": product.id, "quantity": 2}, headers=headers)
    second = client.post("/api/cart/items", json={"product_id": product.id}, headers=headers)
    assert first.status_code == 201
    assert second.json()["id"] == first.json()["id"]
    assert second.json()["quantity"] == 3

    item_id = first.json()["id"]
    response = client.put(f"/api/cart/items/{item_id}", json={"quantity": 7}, headers=headers)
    assert response.json()["quantity"] == 7

    cart = client.get("/api/cart", headers=headers).json()
    assert [(i["product"]["title"], i["quantity"]) for i in cart["items"]] == [(product.title, 7)]

    assert client.delete(f"/api/cart/items/{item_id}", headers=headers).status_code == 204
    assert client.get("/api/cart", headers=headers).json()["items"] == []


def test_cart_rejects_unknown_product_and_bad_quantity(client, customer, product):
    headers = auth_headers(customer)

    assert client.post("/api/cart/items", json={"product_id": 999}, headers=headers).status_code == 404
    assert client.post("/api/cart/items", json={"product_id": product.id, "quantity": 0}, headers=headers).status_code == 422


def test_cart_items_of_other_users_are_hidden(client, storage, customer, product):
    other = storage.create_user(user_data("sam"))
    cart = storage.get_or_create_cart(other.id)
    item = storage.add_item_to_cart(schemas.CartItemCreate(cart_id=cart.id, product_id=product.id))
    headers = auth_headers(customer)

    assert client.put(f"/api/cart/items/{item.id}", json={"quantity": 9}, headers=headers).status_code == 404
    assert client.delete(f"/api/cart/items/{item.id}", headers=headers).status_code == 404
    assert storage.get_cart_item(item.id).quantity == 1


# --- Orders ---
def test_place_order_empties_cart(client, customer, product):
    headers = auth_headers(customer)
    client.post("/api/cart/items", json={"product_id": product.id, "quantity": 2}, headers=headers)

    response = client.post("/api/orders", json=checkout(3998.0), headers=headers)

    assert response.status_code == 201
    body = response.json()
    assert body["order"]["status"] == "pending"
    assert body["order"]["total_amount"] == 3998.0
    assert [(i["product_id"], i["quantity"], i["price"]) for i in body["items"]] == [(product.id, 2, product.price)]
    assert client.get("/api/cart", headers=headers).json()["items"] == []

    orders = client.get("/api/orders", headers=headers).json()
    assert [o["id"] for o in orders] == [body["order"]["id"]]
    assert client.get(f"/api/orders/{body['order']['id']}", headers=headers).json() == body


def test_orders_of_other_users_are_forbidden(client, storage, customer):
    other = storage.create_user(user_data("sam"))
    order = storage.create_order(order_data(other.id))

    assert client.get(f"/api/orders/{order.id}", headers=auth_headers(customer)).status_code == 403
    assert client.get("/api/orders/999", headers=auth_headers(customer)).status_code == 404


def test_dangling_reference_is_a_server_error(client, storage, customer):
    cart = storage.get_or_create_cart(customer.id)
    storage.add_item_to_cart(schemas.CartItemCreate(cart_id=cart.id, product_id=404))

    response = client.get("/api/cart", headers=auth_headers(customer))

    assert response.status_code == 500
    assert response.json() == {"detail": "Product not found: 404"}


# --- Admin ---
def test_admin_manages_users(client, storage, admin, customer):
    headers = auth_headers(admin)

    assert [u["username"] for u in client.get("/api/admin/users", headers=headers).json()] == ["root", "jane"]

    response = client.post("/api/admin/users", json={**NEW_USER, "is_admin": True}, headers=headers)
    assert response.status_code == 201
    assert response.json()["is_admin"] is True
    assert client.post("/api/admin/users", json=NEW_USER, headers=headers).status_code == 400

    response = client.patch(f"/api/admin/users/{customer.id}", json={"is_admin": True}, headers=headers)
    assert response.json()["is_admin"] is True
    assert client.patch("/api/admin/users/999", json={"is_admin": True}, headers=headers).status_code == 404

    assert client.delete(f"/api/admin/users/{customer.id}", headers=headers).status_code == 204
    assert client.delete(f"/api/admin/users/{customer.id}", headers=headers).status_code == 404
    assert storage.get_user(customer.id) is None


def test_admin_cannot_demote_or_delete_self(client, admin):
    headers = auth_headers(admin)

    assert client.patch(f"/api/admin/users/{admin.id}", json={"is_admin": False}, headers=headers).status_code == 400
    assert client.delete(f"/api/admin/users/{admin.id}", headers=headers).status_code == 400
    assert client.get("/api/check-admin", headers=headers).json() == {"is_admin": True}


def test_admin_manages_products(client, storage, admin):
    headers = auth_headers(admin)
    payload = product_data(title="Kettle", stock=5).model_dump()

    created = client.post("/api/admin/products", json=payload, headers=headers)
    assert created.status_code == 201
    product_id = created.json()["id"]

    response = client.patch(f"/api/admin/products/{product_id}", json={"price": 899.0}, headers=headers)
    assert response.json()["price"] == 899.0
    assert response.json()["stock"] == 5

    response = client.patch(f"/api/admin/products/{product_id}", json={"price": None}, headers=headers)
    assert response.status_code == 422
    assert storage.get_product(product_id).price == 899.0

    low = client.get("/api/admin/products/low-stock", headers=headers).json()
    assert [p["id"] for p in low] == [product_id]

    discounted = client.post(
        "/api/admin/products/discount",
        json={"product_ids": [product_id, 999], "discount_percentage": 15},
        headers=headers,
    ).json()
    assert [(p["id"], p["discount_percentage"]) for p in discounted] == [(product_id, 15.0)]

    assert client.delete(f"/api/admin/products/{product_id}", headers=headers).status_code == 204
    assert client.get(f"/api/products/{product_id}").status_code == 404
    assert client.patch(f"/api/admin/products/{product_id}", json={"price": 1.0}, headers=headers).status_code == 404


def test_admin_bulk_import(client, storage, admin):
    headers = auth_headers(admin)
    csv_text = "title,description,price,stock,brand,category,thumbnail\nMug,Coffee mug,199,300,Milton,Home,mug.jpg"

    response = client.post("/api/admin/products/bulk", json={"csv": csv_text}, headers=headers)
    assert response.status_code == 201
    assert response.json()["created"] == 1
    assert storage.get_products()[0].images == ["mug.jpg"]

    response = client.post("/api/admin/products/bulk", json={"csv": "title\nMug"}, headers=headers)
    assert response.status_code == 400
    assert response.json()["detail"].startswith("Missing required columns")


def test_admin_orders_and_analytics(client, storage, admin, customer, product):
    storage.create_order(order_data(customer.id, total_amount=100.0))
    order = storage.create_order(order_data(admin.id, total_amount=50.0))
    storage.add_order_item(schemas.OrderItemCreate(order_id=order.id, product_id=product.id, quantity=3, price=product.price))
    headers = auth_headers(admin)

    assert len(client.get("/api/admin/orders", headers=headers).json()) == 2

    body = client.get("/api/admin/analytics", params={"timeframe": "30d"}, headers=headers).json()
    assert body["timeframe"] == "30d"
    assert body["user_count"] == 2
    assert body["order_count"] == 2
    assert body["product_count"] == 1
    assert body["revenue"] == 150.0
    assert len(body["order_stats"]) == 30
    assert body["order_stats"][-1] == {"date": "15/03", "count": 2, "revenue": 150.0}
    assert body["top_products"] == [{"id": product.id, "title": product.title, "total_sold": 3, "revenue": 3 * product.price}]


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy", "database": "ok"}
