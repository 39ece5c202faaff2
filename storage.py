"""
In-process entity store for the storefront.

A single Storage is built at startup and handed to every request handler.
Each public method runs in its own transaction under one re-entrant lock, so
read-modify-write operations (cart upsert, admin toggle, rating
recomputation, order placement) never interleave.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, Iterator, List, Optional, Union

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

import models
import schemas
from database import create_session_factory, create_store_engine, init_db

logger = logging.getLogger(__name__)

# Never overwritten by a partial update
PROTECTED_FIELDS = {"id", "created_at", "deleted_at"}

Changes = Union[BaseModel, dict]


class StoreError(Exception):
    """Base class for errors raised by the store."""


class InconsistentReferenceError(StoreError):
    """A stored foreign key points at a record that does not exist."""

    def __init__(self, entity: str, entity_id: int):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


def resolve(session: Session, model, entity_id: int):
    """
    Follows a foreign key. Soft-deleted targets still resolve; a key with no
    row behind it at all raises InconsistentReferenceError.
    """
    record = session.get(model, entity_id)
    if record is None:
        logger.error(f"Inconsistent reference: {model.__name__} {entity_id} does not exist")
        raise InconsistentReferenceError(model.__name__, entity_id)
    return record


def average_rating(ratings: Iterable[int]) -> Optional[float]:
    """
    Arithmetic mean rounded half-up to one decimal place. Rounds the exact
    binary value of the float mean, so 1.65 (stored as 1.6499...) gives 1.6.
    """
    ratings = list(ratings)
    if not ratings:
        return None
    mean = Decimal(sum(ratings) / len(ratings))
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def _changes_to_dict(changes: Changes) -> dict:
    if isinstance(changes, BaseModel):
        data = changes.model_dump(exclude_unset=True)
    else:
        data = dict(changes)
    return {key: value for key, value in data.items() if key not in PROTECTED_FIELDS}


class Storage:
    def __init__(self, engine: Optional[Engine] = None, clock: Callable[[], datetime] = datetime.now):
        self.engine = engine if engine is not None else create_store_engine()
        init_db(self.engine)
        self.SessionFactory = create_session_factory(self.engine)
        self.clock = clock
        self._lock = threading.RLock()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """One locked transaction: committed on success, rolled back on any error."""
        with self._lock:
            with self.SessionFactory.begin() as session:
                yield session

    def ping(self) -> None:
        with self.session() as session:
            session.execute(select(1))

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("Database engine disposed.")

    # --- Lookups shared by several operations ---
    @staticmethod
    def _live(session: Session, model, entity_id: int):
        record = session.get(model, entity_id)
        if record is None or getattr(record, "deleted_at", None) is not None:
            return None
        return record

    @staticmethod
    def _find_cart(session: Session, user_id: int) -> Optional[models.Cart]:
        return session.execute(
            select(models.Cart).where(models.Cart.user_id == user_id)
        ).scalars().first()

    @staticmethod
    def _items_of_cart(session: Session, cart_id: int) -> List[models.CartItem]:
        return session.execute(
            select(models.CartItem).where(models.CartItem.cart_id == cart_id).order_by(models.CartItem.id)
        ).scalars().all()

    def _new_cart(self, session: Session, user_id: int) -> models.Cart:
        cart = models.Cart(user_id=user_id, created_at=self.clock())
        session.add(cart)
        session.flush()
        logger.info(f"Cart created: ID {cart.id} for User {user_id}")
        return cart

    def _order_view(self, session: Session, order: models.Order) -> schemas.OrderWithItems:
        order_items = session.execute(
            select(models.OrderItem).where(models.OrderItem.order_id == order.id).order_by(models.OrderItem.id)
        ).scalars().all()
        items = []
        for item in order_items:
            product = resolve(session, models.Product, item.product_id)
            items.append(schemas.OrderItemWithProduct(
                **schemas.OrderItem.model_validate(item).model_dump(),
                product=schemas.Product.model_validate(product),
            ))
        return schemas.OrderWithItems(order=schemas.Order.model_validate(order), items=items)

    # --- Users ---
    def get_user(self, user_id: int) -> Optional[schemas.UserInDB]:
        with self.session() as session:
            user = self._live(session, models.User, user_id)
            return schemas.UserInDB.model_validate(user) if user else None

    def get_user_by_username(self, username: str) -> Optional[schemas.UserInDB]:
        with self.session() as session:
            user = session.execute(
                select(models.User).where(models.User.username == username, models.User.deleted_at.is_(None))
            ).scalars().first()
            return schemas.UserInDB.model_validate(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[schemas.UserInDB]:
        with self.session() as session:
            user = session.execute(
                select(models.User).where(models.User.email == email, models.User.deleted_at.is_(None))
            ).scalars().first()
            return schemas.UserInDB.model_validate(user) if user else None

    def get_all_users(self) -> List[schemas.UserInDB]:
        with self.session() as session:
            users = session.execute(
                select(models.User).where(models.User.deleted_at.is_(None)).order_by(models.User.id)
            ).scalars().all()
            return [schemas.UserInDB.model_validate(user) for user in users]

    def create_user(self, user_in: schemas.UserCreate) -> schemas.UserInDB:
        with self.session() as session:
            user = models.User(**user_in.model_dump(), created_at=self.clock())
            session.add(user)
            session.flush()
            record = schemas.UserInDB.model_validate(user)
        logger.info(f"User created: {record.username} (ID: {record.id})")
        return record

    def update_user(self, user_id: int, changes: Changes) -> Optional[schemas.UserInDB]:
        with self.session() as session:
            user = self._live(session, models.User, user_id)
            if user is None:
                return None
            for key, value in _changes_to_dict(changes).items():
                setattr(user, key, value)
            session.flush()
            record = schemas.UserInDB.model_validate(user)
        logger.info(f"User updated: {record.username} (ID: {record.id})")
        return record

    def update_user_admin_status(self, user_id: int, is_admin: bool) -> Optional[schemas.UserInDB]:
        logger.info(f"Updating admin status of user {user_id} to {is_admin}")
        return self.update_user(user_id, {"is_admin": is_admin})

    def delete_user(self, user_id: int) -> bool:
        """Soft-deletes the user and drops their cart. Orders and reviews stay."""
        with self.session() as session:
            user = self._live(session, models.User, user_id)
            if user is None:
                return False
            user.deleted_at = self.clock()
            cart = self._find_cart(session, user_id)
            if cart is not None:
                for item in self._items_of_cart(session, cart.id):
                    session.delete(item)
                session.delete(cart)
        logger.info(f"User deleted: ID {user_id}")
        return True

    # --- Products ---
    def get_product(self, product_id: int) -> Optional[schemas.Product]:
        with self.session() as session:
            product = self._live(session, models.Product, product_id)
            return schemas.Product.model_validate(product) if product else None

    def get_products(self, limit: Optional[int] = None, category: Optional[str] = None) -> List[schemas.Product]:
        query = select(models.Product).where(models.Product.deleted_at.is_(None))
        if category:
            query = query.where(models.Product.category == category)
        query = query.order_by(models.Product.id)
        if limit:
            query = query.limit(limit)
        with self.session() as session:
            return [schemas.Product.model_validate(p) for p in session.execute(query).scalars().all()]

    def get_products_by_category(self, category: str) -> List[schemas.Product]:
        return self.get_products(category=category)

    def get_low_stock_products(self, threshold: int = 10) -> List[schemas.Product]:
        with self.session() as session:
            products = session.execute(
                select(models.Product)
                .where(models.Product.deleted_at.is_(None), models.Product.stock <= threshold)
                .order_by(models.Product.id)
            ).scalars().all()
            return [schemas.Product.model_validate(p) for p in products]

    def create_product(self, product_in: schemas.ProductCreate) -> schemas.Product:
        with self.session() as session:
            product = models.Product(**product_in.model_dump(), created_at=self.clock())
            session.add(product)
            session.flush()
            record = schemas.Product.model_validate(product)
        logger.info(f"Product created: {record.title} (ID: {record.id})")
        return record

    def update_product(self, product_id: int, changes: Changes) -> Optional[schemas.Product]:
        with self.session() as session:
            product = self._live(session, models.Product, product_id)
            if product is None:
                return None
            for key, value in _changes_to_dict(changes).items():
                setattr(product, key, value)
            session.flush()
            record = schemas.Product.model_validate(product)
        logger.info(f"Product updated: {record.title} (ID: {record.id})")
        return record

    def apply_discount(self, product_ids: Iterable[int], discount_percentage: float) -> List[schemas.Product]:
        """Sets one discount on many products; unknown ids are skipped."""
        updated = []
        with self.session() as session:
            for product_id in product_ids:
                product = self._live(session, models.Product, product_id)
                if product is None:
                    logger.warning(f"Discount skipped: product {product_id} not found")
                    continue
                product.discount_percentage = discount_percentage
                session.flush()
                updated.append(schemas.Product.model_validate(product))
        logger.info(f"Discount of {discount_percentage}% applied to {len(updated)} products")
        return updated

    def delete_product(self, product_id: int) -> bool:
        """Soft-deletes the product and removes it from every cart."""
        with self.session() as session:
            product = self._live(session, models.Product, product_id)
            if product is None:
                return False
            product.deleted_at = self.clock()
            stale_items = session.execute(
                select(models.CartItem).where(models.CartItem.product_id == product_id)
            ).scalars().all()
            for item in stale_items:
                session.delete(item)
        logger.info(f"Product deleted: ID {product_id}")
        return True

    # --- Categories ---
    def get_categories(self) -> List[schemas.Category]:
        with self.session() as session:
            categories = session.execute(select(models.Category).order_by(models.Category.id)).scalars().all()
            return [schemas.Category.model_validate(c) for c in categories]

    def create_category(self, category_in: schemas.CategoryCreate) -> schemas.Category:
        with self.session() as session:
            category = models.Category(**category_in.model_dump(), created_at=self.clock())
            session.add(category)
            session.flush()
            return schemas.Category.model_validate(category)

    def get_category(self, category_id: int) -> Optional[schemas.Category]:
        with self.session() as session:
            category = session.get(models.Category, category_id)
            return schemas.Category.model_validate(category) if category else None

    # --- Banners ---
    def get_banner(self, banner_id: int) -> Optional[schemas.Banner]:
        """Any banner, active or not."""
        with self.session() as session:
            banner = session.get(models.Banner, banner_id)
            return schemas.Banner.model_validate(banner) if banner else None

    def get_banners(self) -> List[schemas.Banner]:
        """Active banners only."""
        with self.session() as session:
            banners = session.execute(
                select(models.Banner).where(models.Banner.active.is_(True)).order_by(models.Banner.id)
            ).scalars().all()
            return [schemas.Banner.model_validate(b) for b in banners]

    def create_banner(self, banner_in: schemas.BannerCreate) -> schemas.Banner:
        with self.session() as session:
            banner = models.Banner(**banner_in.model_dump(), created_at=self.clock())
            session.add(banner)
            session.flush()
            return schemas.Banner.model_validate(banner)

    # --- Carts ---
    def get_cart(self, user_id: int) -> Optional[schemas.Cart]:
        with self.session() as session:
            cart = self._find_cart(session, user_id)
            return schemas.Cart.model_validate(cart) if cart else None

    def get_cart_by_id(self, cart_id: int) -> Optional[schemas.Cart]:
        with self.session() as session:
            cart = session.get(models.Cart, cart_id)
            return schemas.Cart.model_validate(cart) if cart else None

    def create_cart(self, user_id: int) -> schemas.Cart:
        with self.session() as session:
            return schemas.Cart.model_validate(self._new_cart(session, user_id))

    def get_or_create_cart(self, user_id: int) -> schemas.Cart:
        with self.session() as session:
            cart = self._find_cart(session, user_id) or self._new_cart(session, user_id)
            return schemas.Cart.model_validate(cart)

    def get_cart_items(self, cart_id: int) -> List[schemas.CartItem]:
        with self.session() as session:
            return [schemas.CartItem.model_validate(item) for item in self._items_of_cart(session, cart_id)]

    def get_cart_item(self, item_id: int) -> Optional[schemas.CartItem]:
        with self.session() as session:
            item = session.get(models.CartItem, item_id)
            return schemas.CartItem.model_validate(item) if item else None

    def add_item_to_cart(self, item_in: schemas.CartItemCreate) -> schemas.CartItem:
        """
        Upsert by (cart_id, product_id): an existing row gets the new quantity
        added to it instead of a second row being inserted.
        """
        quantity = item_in.quantity or 1
        with self.session() as session:
            item = session.execute(
                select(models.CartItem).where(
                    models.CartItem.cart_id == item_in.cart_id,
                    models.CartItem.product_id == item_in.product_id,
                )
            ).scalars().first()
            if item is not None:
                item.quantity += quantity
            else:
                item = models.CartItem(
                    cart_id=item_in.cart_id,
                    product_id=item_in.product_id,
                    quantity=quantity,
                    created_at=self.clock(),
                )
                session.add(item)
            session.flush()
            return schemas.CartItem.model_validate(item)

    def update_cart_item(self, item_id: int, quantity: int) -> Optional[schemas.CartItem]:
        with self.session() as session:
            item = session.get(models.CartItem, item_id)
            if item is None:
                return None
            item.quantity = quantity
            session.flush()
            return schemas.CartItem.model_validate(item)

    def remove_cart_item(self, item_id: int) -> bool:
        with self.session() as session:
            item = session.get(models.CartItem, item_id)
            if item is None:
                return False
            session.delete(item)
            return True

    # --- Orders ---
    def get_orders(self, user_id: int) -> List[schemas.Order]:
        with self.session() as session:
            orders = session.execute(
                select(models.Order).where(models.Order.user_id == user_id).order_by(models.Order.id)
            ).scalars().all()
            return [schemas.Order.model_validate(o) for o in orders]

    def get_all_orders(self) -> List[schemas.Order]:
        with self.session() as session:
            orders = session.execute(select(models.Order).order_by(models.Order.id)).scalars().all()
            return [schemas.Order.model_validate(o) for o in orders]

    def get_order(self, order_id: int) -> Optional[schemas.Order]:
        with self.session() as session:
            order = session.get(models.Order, order_id)
            return schemas.Order.model_validate(order) if order else None

    def get_order_item(self, item_id: int) -> Optional[schemas.OrderItem]:
        with self.session() as session:
            item = session.get(models.OrderItem, item_id)
            return schemas.OrderItem.model_validate(item) if item else None

    def create_order(self, order_in: schemas.OrderCreate, created_at: Optional[datetime] = None) -> schemas.Order:
        # total_amount is taken as given, never recomputed from the items
        with self.session() as session:
            order = models.Order(**order_in.model_dump(), created_at=created_at or self.clock())
            session.add(order)
            session.flush()
            record = schemas.Order.model_validate(order)
        logger.info(f"Order created: ID {record.id} for User {record.user_id}")
        return record

    def add_order_item(self, item_in: schemas.OrderItemCreate, created_at: Optional[datetime] = None) -> schemas.OrderItem:
        with self.session() as session:
            item = models.OrderItem(**item_in.model_dump(), created_at=created_at or self.clock())
            session.add(item)
            session.flush()
            return schemas.OrderItem.model_validate(item)

    def place_order(self, user_id: int, checkout: schemas.CheckoutRequest) -> schemas.OrderWithItems:
        """
        Creates the order, copies every cart item into it at the product's
        current price and empties the cart, all in one transaction. If any
        step fails nothing is written.
        """
        with self.session() as session:
            now = self.clock()
            order = models.Order(user_id=user_id, **checkout.model_dump(), created_at=now)
            session.add(order)
            session.flush()
            cart = self._find_cart(session, user_id)
            cart_items = self._items_of_cart(session, cart.id) if cart is not None else []
            for cart_item in cart_items:
                product = resolve(session, models.Product, cart_item.product_id)
                session.add(models.OrderItem(
                    order_id=order.id,
                    product_id=cart_item.product_id,
                    quantity=cart_item.quantity,
                    price=product.price,
                    created_at=now,
                ))
                session.delete(cart_item)
            session.flush()
            view = self._order_view(session, order)
        logger.info(f"Order placed: ID {view.order.id} for User {user_id} with {len(view.items)} items")
        return view

    # --- Reviews ---
    def get_review(self, review_id: int) -> Optional[schemas.Review]:
        with self.session() as session:
            review = session.get(models.Review, review_id)
            return schemas.Review.model_validate(review) if review else None

    def create_review(self, review_in: schemas.ReviewCreate) -> schemas.Review:
        """Stores the review and recomputes the product's average rating."""
        with self.session() as session:
            review = models.Review(**review_in.model_dump(), created_at=self.clock())
            session.add(review)
            session.flush()
            product = session.get(models.Product, review_in.product_id)
            if product is not None:
                ratings = session.execute(
                    select(models.Review.rating).where(models.Review.product_id == product.id)
                ).scalars().all()
                product.rating = average_rating(ratings)
            record = schemas.Review.model_validate(review)
        logger.info(f"Review created: ID {record.id} for Product {record.product_id} by User {record.user_id}")
        return record

    # --- Relationship resolvers ---
    def get_cart_with_items(self, user_id: int) -> Optional[schemas.CartWithItems]:
        with self.session() as session:
            cart = self._find_cart(session, user_id)
            if cart is None:
                return None
            items = []
            for item in self._items_of_cart(session, cart.id):
                product = resolve(session, models.Product, item.product_id)
                items.append(schemas.CartItemWithProduct(
                    **schemas.CartItem.model_validate(item).model_dump(),
                    product=schemas.Product.model_validate(product),
                ))
            return schemas.CartWithItems(cart=schemas.Cart.model_validate(cart), items=items)

    def get_order_with_items(self, order_id: int) -> Optional[schemas.OrderWithItems]:
        with self.session() as session:
            order = session.get(models.Order, order_id)
            if order is None:
                return None
            return self._order_view(session, order)

    def get_product_reviews(self, product_id: int) -> List[schemas.ReviewWithUser]:
        with self.session() as session:
            reviews = session.execute(
                select(models.Review).where(models.Review.product_id == product_id).order_by(models.Review.id)
            ).scalars().all()
            result = []
            for review in reviews:
                user = resolve(session, models.User, review.user_id)
                result.append(schemas.ReviewWithUser(
                    **schemas.Review.model_validate(review).model_dump(),
                    user=schemas.User.model_validate(user),
                ))
            return result
