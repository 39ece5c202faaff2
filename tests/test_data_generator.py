from datetime import timedelta

import analytics
import data_generator
from auth import verify_password
from conftest import NOW
from storage import Storage


def seeded_store(seed=7):
    store = Storage(clock=lambda: NOW)
    data_generator.generate_initial_data(store, seed=seed)
    return store


def test_seeds_demo_catalogue(storage):
    data_generator.generate_initial_data(storage, seed=1)

    assert analytics.user_count(storage) == 6
    assert analytics.product_count(storage) == 18
    assert len(storage.get_categories()) == 9
    assert len(storage.get_banners()) == 5
    assert analytics.order_count(storage) == 15


def test_seeds_one_admin(storage):
    data_generator.generate_initial_data(storage, seed=1)

    admins = [user for user in storage.get_all_users() if user.is_admin]

    assert [user.username for user in admins] == ["admin"]


def test_demo_password_verifies(storage):
    data_generator.generate_initial_data(storage, seed=1)

    user = storage.get_user_by_username("user1")

    assert verify_password(data_generator.DEMO_PASSWORD, user.password)
    assert user.password != data_generator.DEMO_PASSWORD


def test_seeded_orders_are_well_formed(storage):
    data_generator.generate_initial_data(storage, seed=3)
    ordered_ids = {p.id for p in storage.get_products()[:data_generator.ORDERED_PRODUCT_COUNT]}
    admin = storage.get_user_by_username("admin")

    for order in storage.get_all_orders():
        view = storage.get_order_with_items(order.id)
        assert 1 <= len(view.items) <= 3
        assert order.user_id != admin.id
        assert order.status in data_generator.ORDER_STATUSES
        assert order.payment_method in data_generator.PAYMENT_METHODS
        assert 1000 <= order.total_amount <= 10999
        assert NOW - timedelta(days=data_generator.ORDER_HISTORY_DAYS) < order.created_at <= NOW
        for item in view.items:
            assert item.product_id in ordered_ids
            assert 1 <= item.quantity <= 3
            assert item.price == item.product.price


def test_same_seed_gives_same_orders():
    first, second = seeded_store(), seeded_store()
    try:
        assert first.get_all_orders() == second.get_all_orders()
        assert analytics.top_products(first) == analytics.top_products(second)
    finally:
        first.dispose()
        second.dispose()


def test_skips_when_users_exist(storage, customer):
    data_generator.generate_initial_data(storage, seed=1)

    assert analytics.user_count(storage) == 1
    assert analytics.product_count(storage) == 0
    assert analytics.order_count(storage) == 0


def test_second_run_is_a_no_op(storage):
    data_generator.generate_initial_data(storage, seed=1)
    data_generator.generate_initial_data(storage, seed=2)

    assert analytics.user_count(storage) == 6
    assert analytics.order_count(storage) == 15
