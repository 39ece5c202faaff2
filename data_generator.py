import logging
import random
from datetime import timedelta
from typing import Optional

from faker import Faker

import schemas
from auth import hash_password
from storage import Storage

logger = logging.getLogger(__name__)

# Every seeded account logs in with this password
DEMO_PASSWORD = "password123"
DEMO_PASSWORD_HASH = hash_password(DEMO_PASSWORD)

ORDER_STATUSES = ["pending", "processing", "shipped", "delivered", "cancelled"]
PAYMENT_METHODS = ["UPI", "Credit Card", "Cash on Delivery"]
SEED_ORDER_COUNT = 15
ORDER_HISTORY_DAYS = 90
# Seeded orders draw from the first ten products
ORDERED_PRODUCT_COUNT = 10

ADMIN_USER = {"username": "admin", "name": "Admin", "email": "admin@example.com", "is_admin": True}

REGULAR_USERS = [
    {"username": "user1", "name": "John Doe", "email": "john@example.com"},
    {"username": "user2", "name": "Jane Smith", "email": "jane@example.com"},
    {"username": "user3", "name": "Robert Johnson", "email": "robert@example.com"},
    {"username": "user4", "name": "Emily Davis", "email": "emily@example.com"},
    {"username": "user5", "name": "Michael Wilson", "email": "michael@example.com"},
]

CATEGORY_IMAGE_URL = "https://rukminim1.flixcart.com/flap/128/128/image/{}"
CATEGORIES = [
    ("Grocery", "29327f40e9c4d26b.png"),
    ("Mobiles", "22fddf3c7da4c4f4.png"),
    ("Fashion", "c12afc017e6f24cb.png"),
    ("Electronics", "69c6589653afdb9a.png"),
    ("Home", "ab7e2b022a4587dd.jpg"),
    ("Appliances", "0ff199d1bd27eb98.png"),
    ("Travel", "71050627a56b4693.png"),
    ("Top Offers", "f15c02bfeb02d15d.png"),
    ("Beauty", "dff3f7adcf3a90c6.png"),
]

BANNER_IMAGE_URL = "https://images.unsplash.com/photo-{}?w=1200&h=300&fit=crop"
BANNERS = [
    ("1593642632823-8f785ba67e45", "/electronics"),
    ("1445205170230-053b83016050", "/fashion"),
    ("1607083206870-f8b9affcd026", "/offers"),
    ("1513506003901-1e6a229e2d15", "/home"),
    ("1607082348824-0a96f2a4b9da", "/top-offers"),
]

PRODUCT_IMAGE_URL = "https://images.unsplash.com/photo-{}?w=400&h=400&fit=crop"
# (title, description, price, discount %, rating, stock, brand, category, [image photo ids])
PRODUCTS = [
    ("Wireless Earbuds", "High quality wireless earbuds with noise cancellation", 1499, 25, 4.5, 100, "boAt", "Electronics",
     ["1606220588913-b3aacb4d2f46", "1572569511254-d8f925fe2cbb"]),
    ("Gaming Mouse", "Ergonomic gaming mouse with customizable RGB lights", 1999, 40, 4.7, 50, "Logitech", "Electronics",
     ["1605773527852-c546a8584ea3", "1615663245857-ac93bb7c39e7"]),
    ("Bluetooth Speakers", "Portable Bluetooth speaker with 20 hours battery life", 2499, 70, 4.3, 75, "JBL", "Electronics",
     ["1608043152269-423dbba4e7e1", "1589003077984-894e133dabab"]),
    ("4K Smart TV", "55-inch 4K Ultra HD Smart LED TV with HDR", 45999, 15, 4.6, 30, "Samsung", "Electronics",
     ["1593359677879-a4bb92f829d1", "1601944177325-f8867652837f"]),
    ("Trimmer", "Rechargeable trimmer with multiple attachments", 1299, 35, 4.2, 120, "Philips", "Electronics",
     ["1585914643208-46d2eaec3030", "1589782431097-ffc26baa6fc9"]),
    ("Gaming Laptop", "15.6-inch gaming laptop with dedicated GPU", 76990, 10, 4.8, 25, "Asus", "Electronics",
     ["1603302576837-37561b2e2302", "1511385348-a52b4a160dc2"]),
    ("Casual Shirts", "100% cotton casual shirts for men", 799, 50, 4.1, 200, "Allen Solly", "Fashion",
     ["1596755094514-f87e34085b2c", "1598032895397-b9472444bf93"]),
    ("Women's Tops", "Stylish tops for women in various colors", 599, 50, 4.4, 150, "H&M", "Fashion",
     ["1567401893414-76b7b1e5a7a5", "1619603364904-c0498317e145"]),
    ("Running Shoes", "Lightweight running shoes with cushioned insoles", 2999, 60, 4.6, 80, "Nike", "Fashion",
     ["1542291026-7eec264c27ff", "1607522370275-f14206abe5d3"]),
    ("Watches", "Stainless steel analog watches for men", 2499, 30, 4.5, 60, "Fossil", "Fashion",
     ["1524805444758-089113d48a6d", "1522312346375-d1a52e2b99b3"]),
    ("Denim Jeans", "Slim-fit denim jeans for men", 1499, 45, 4.3, 100, "Levi's", "Fashion",
     ["1542272604-787c3835535d", "1541099649105-f69ad21f3246"]),
    ("Sunglasses", "UV protected sunglasses with polarized lenses", 1299, 25, 4.2, 70, "Ray-Ban", "Fashion",
     ["1572635196237-14b3f281503f", "1511499767150-a48a237f0083"]),
    ("Mixer Grinders", "750W mixer grinder with 3 jars", 2499, 40, 4.3, 50, "Prestige", "Home",
     ["1626806787461-102c1a75f344", "1577460551100-d3f8103db5f1"]),
    ("Cotton Bedsheets", "King size 100% cotton bedsheets with 2 pillow covers", 1299, 50, 4.5, 100, "Bombay Dyeing", "Home",
     ["1629949009714-fd4df7ae10f8", "1584100936595-c0654b55a2e2"]),
    ("Steel Water Bottles", "Insulated stainless steel water bottle, 750ml", 899, 60, 4.2, 150, "Milton", "Home",
     ["1589365278144-c9e705f843ba", "1610824352934-c10d87b700cc"]),
    ("Induction Cooktops", "1800W induction cooktop with auto shut-off", 2999, 35, 4.4, 40, "Prestige", "Home",
     ["1596223575327-89789efe0469", "1495433324511-bf8e92934d90"]),
    ("Cookware Sets", "5-piece non-stick cookware set", 2499, 45, 4.6, 30, "Hawkins", "Home",
     ["1584283626938-86939326ae65", "1590794056486-986bf7f3473f"]),
    ("Air Fryers", "Digital air fryer with 4.5L capacity", 4999, 25, 4.7, 20, "Philips", "Home",
     ["1648649893252-296c7123646b", "1600367163359-d51d40bcb5f8"]),
]


# --- Helper Functions for Data Generation ---

def create_users(storage: Storage) -> list[schemas.UserInDB]:
    """Creates the admin and the five regular demo users."""
    users = [storage.create_user(schemas.UserCreate(**ADMIN_USER, password=DEMO_PASSWORD_HASH))]
    for user in REGULAR_USERS:
        users.append(storage.create_user(schemas.UserCreate(**user, password=DEMO_PASSWORD_HASH)))
    logger.info(f"Generated and saved {len(users)} users.")
    return users


def create_catalog(storage: Storage) -> list[schemas.Product]:
    """Creates categories, banners and products."""
    for name, image in CATEGORIES:
        storage.create_category(schemas.CategoryCreate(name=name, image=CATEGORY_IMAGE_URL.format(image)))
    for photo, link in BANNERS:
        storage.create_banner(schemas.BannerCreate(image=BANNER_IMAGE_URL.format(photo), link=link, active=True))

    products = []
    for title, description, price, discount, rating, stock, brand, category, photos in PRODUCTS:
        images = [PRODUCT_IMAGE_URL.format(photo) for photo in photos]
        products.append(storage.create_product(schemas.ProductCreate(
            title=title,
            description=description,
            price=price,
            discount_percentage=discount,
            rating=rating,
            stock=stock,
            brand=brand,
            category=category,
            thumbnail=images[0],
            images=images,
        )))
    logger.info(f"Generated {len(CATEGORIES)} categories, {len(BANNERS)} banners and {len(products)} products.")
    return products


def create_order_history(
    storage: Storage,
    customers: list[schemas.UserInDB],
    products: list[schemas.Product],
    rng: random.Random,
    fake: Faker,
    count: int = SEED_ORDER_COUNT,
) -> list[schemas.Order]:
    """
    Generates past orders spread over the last ORDER_HISTORY_DAYS days,
    each with 1-3 items priced at the product's current price.
    """
    if not customers or not products:
        logger.warning("Cannot create orders without users and products.")
        return []

    now = storage.clock()
    orders = []
    for _ in range(count):
        created_at = now - timedelta(days=rng.randrange(ORDER_HISTORY_DAYS))
        customer = rng.choice(customers)
        order = storage.create_order(
            schemas.OrderCreate(
                user_id=customer.id,
                total_amount=rng.randint(1000, 10999),
                status=rng.choice(ORDER_STATUSES),
                shipping_address=f"{fake.street_address()}, {fake.city()}, {fake.state()}, {fake.postcode()}",
                payment_method=rng.choice(PAYMENT_METHODS),
            ),
            created_at=created_at,
        )
        for _ in range(rng.randint(1, 3)):
            product = rng.choice(products)
            storage.add_order_item(
                schemas.OrderItemCreate(
                    order_id=order.id,
                    product_id=product.id,
                    quantity=rng.randint(1, 3),
                    price=product.price,
                ),
                created_at=created_at,
            )
        orders.append(order)
    logger.info(f"Generated and saved {len(orders)} orders.")
    return orders


# --- Main Data Generation Function ---
def generate_initial_data(storage: Storage, seed: Optional[int] = None) -> None:
    """
    Populates a fresh store with the demo catalogue and order history.
    Pass `seed` to make the generated orders reproducible.
    Does nothing if the store already has users.
    """
    if storage.get_all_users():
        logger.info("Data already exists. Skipping generation.")
        return

    rng = random.Random(seed)
    fake = Faker()
    if seed is not None:
        fake.seed_instance(seed)

    logger.info("Starting initial data generation...")
    users = create_users(storage)
    products = create_catalog(storage)
    customers = [user for user in users if not user.is_admin]
    create_order_history(storage, customers, products[:ORDERED_PRODUCT_COUNT], rng, fake)
    logger.info("Initial data generation completed successfully.")
