from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text

from database import Base # Import Base from database.py

# SQLite only guarantees ids are never reused with AUTOINCREMENT tables
TABLE_ARGS = {"sqlite_autoincrement": True}


class User(Base):
    __tablename__ = "users"
    __table_args__ = TABLE_ARGS

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    username = Column(String(100), unique=True, index=True, nullable=False)
    password = Column(String(255), nullable=False) # hashed, never plain text
    name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(30), nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    pincode = Column(String(20), nullable=True)
    is_admin = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}')>"


class Product(Base):
    __tablename__ = "products"
    __table_args__ = TABLE_ARGS

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    title = Column(String(255), index=True, nullable=False)
    description = Column(Text, nullable=False)
    price = Column(Float, nullable=False)
    discount_percentage = Column(Float, nullable=True)
    rating = Column(Float, nullable=True) # recomputed from reviews
    stock = Column(Integer, nullable=False, default=0)
    brand = Column(String(100), nullable=False)
    category = Column(String(100), index=True, nullable=False)
    thumbnail = Column(String(500), nullable=False)
    images = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Product(id={self.id}, title='{self.title}', price={self.price})>"


class Category(Base):
    __tablename__ = "categories"
    __table_args__ = TABLE_ARGS

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False)
    image = Column(String(500), nullable=False)
    created_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<Category(id={self.id}, name='{self.name}')>"


class Cart(Base):
    __tablename__ = "carts"
    __table_args__ = TABLE_ARGS

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False) # one cart per user
    created_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<Cart(id={self.id}, user_id={self.user_id})>"


class CartItem(Base):
    __tablename__ = "cart_items"
    __table_args__ = TABLE_ARGS

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    cart_id = Column(Integer, ForeignKey("carts.id"), index=True, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<CartItem(id={self.id}, cart_id={self.cart_id}, product_id={self.product_id}, quantity={self.quantity})>"


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = TABLE_ARGS

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    total_amount = Column(Float, nullable=False) # supplied by the caller, not derived from items
    status = Column(String(50), nullable=False, default="pending") # pending, processing, shipped, delivered, cancelled
    shipping_address = Column(Text, nullable=False)
    payment_method = Column(String(50), nullable=False)
    created_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<Order(id={self.id}, user_id={self.user_id}, status='{self.status}')>"


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = TABLE_ARGS

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), index=True, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Float, nullable=False) # snapshot at order time
    created_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<OrderItem(id={self.id}, order_id={self.order_id}, product_id={self.product_id})>"


class Banner(Base):
    __tablename__ = "banners"
    __table_args__ = TABLE_ARGS

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    image = Column(String(500), nullable=False)
    link = Column(String(255), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<Banner(id={self.id}, link='{self.link}', active={self.active})>"


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = TABLE_ARGS

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), index=True, nullable=False)
    rating = Column(Integer, nullable=False) # 1 to 5
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<Review(id={self.id}, product_id={self.product_id}, user_id={self.user_id}, rating={self.rating})>"
