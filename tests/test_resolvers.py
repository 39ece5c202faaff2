import pytest

import schemas
from conftest import order_data, product_data, user_data
from storage import InconsistentReferenceError


def test_cart_with_items_joins_current_products(storage, customer):
    mouse = storage.create_product(product_data(title="Mouse"))
    shoes = storage.create_product(product_data(title="Shoes"))
    cart = storage.get_or_create_cart(customer.id)
    storage.add_item_to_cart(schemas.CartItemCreate(cart_id=cart.id, product_id=shoes.id, quantity=2))
    storage.add_item_to_cart(schemas.CartItemCreate(cart_id=cart.id, product_id=mouse.id))
    storage.update_product(mouse.id, {"title": "Wireless Mouse"})

    view = storage.get_cart_with_items(customer.id)

    assert view.cart == cart
    assert [(item.product.title, item.quantity) for item in view.items] == [("Shoes", 2), ("Wireless Mouse", 1)]


def test_cart_with_items_without_cart(storage, customer):
    assert storage.get_cart_with_items(customer.id) is None


def test_cart_with_items_empty_cart(storage, customer):
    storage.get_or_create_cart(customer.id)

    assert storage.get_cart_with_items(customer.id).items == []


def test_cart_with_dangling_product_raises(storage, customer):
    cart = storage.get_or_create_cart(customer.id)
    storage.add_item_to_cart(schemas.CartItemCreate(cart_id=cart.id, product_id=404))

    with pytest.raises(InconsistentReferenceError) as exc_info:
        storage.get_cart_with_items(customer.id)

    assert exc_info.value.entity == "Product"
    assert exc_info.value.entity_id == 404
    assert str(exc_info.value) == "Product not found: 404"


def test_order_with_items_in_insertion_order(storage, customer):
    first = storage.create_product(product_data(title="First", price=10.0))
    second = storage.create_product(product_data(title="Second", price=20.0))
    order = storage.create_order(order_data(customer.id, total_amount=50.0))
    storage.add_order_item(schemas.OrderItemCreate(order_id=order.id, product_id=second.id, quantity=1, price=20.0))
    storage.add_order_item(schemas.OrderItemCreate(order_id=order.id, product_id=first.id, quantity=3, price=10.0))

    view = storage.get_order_with_items(order.id)

    assert view.order == order
    assert [item.product.title for item in view.items] == ["Second", "First"]


def test_order_with_items_missing_order(storage):
    assert storage.get_order_with_items(1) is None


def test_order_keeps_soft_deleted_products(storage, customer):
    product = storage.create_product(product_data(title="Discontinued"))
    order = storage.create_order(order_data(customer.id))
    storage.add_order_item(schemas.OrderItemCreate(order_id=order.id, product_id=product.id, quantity=1, price=10.0))
    storage.delete_product(product.id)

    view = storage.get_order_with_items(order.id)

    assert view.items[0].product.title == "Discontinued"


def test_order_with_dangling_product_raises(storage, customer):
    order = storage.create_order(order_data(customer.id))
    storage.add_order_item(schemas.OrderItemCreate(order_id=order.id, product_id=77, quantity=1, price=10.0))

    with pytest.raises(InconsistentReferenceError):
        storage.get_order_with_items(order.id)


def test_product_reviews_include_authors(storage, customer):
    other = storage.create_user(user_data("sam"))
    product = storage.create_product(product_data())
    storage.create_review(schemas.ReviewCreate(user_id=customer.id, product_id=product.id, rating=5, comment="Great"))
    storage.create_review(schemas.ReviewCreate(user_id=other.id, product_id=product.id, rating=3))

    reviews = storage.get_product_reviews(product.id)

    assert [(r.user.username, r.rating, r.comment) for r in reviews] == [("jane", 5, "Great"), ("sam", 3, None)]
    assert "password" not in reviews[0].user.model_dump()


def test_product_reviews_keep_deleted_authors(storage, customer):
    product = storage.create_product(product_data())
    storage.create_review(schemas.ReviewCreate(user_id=customer.id, product_id=product.id, rating=4))
    storage.delete_user(customer.id)

    assert storage.get_product_reviews(product.id)[0].user.username == "jane"


def test_product_reviews_for_unknown_product(storage):
    assert storage.get_product_reviews(12) == []


def test_review_with_dangling_user_raises(storage):
    product = storage.create_product(product_data())
    storage.create_review(schemas.ReviewCreate(user_id=31, product_id=product.id, rating=2))

    with pytest.raises(InconsistentReferenceError, match="User not found: 31"):
        storage.get_product_reviews(product.id)
