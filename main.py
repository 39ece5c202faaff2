import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Path, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

import analytics
import schemas
from auth import create_token, get_current_admin, get_current_user, hash_password, verify_password
from bulk_import import BulkImportError, import_products
from data_generator import generate_initial_data
from database import DATABASE_URL, create_store_engine, get_storage
from storage import InconsistentReferenceError, Storage

# --- Configuration ---
SEED_ON_STARTUP = os.getenv("SEED_ON_STARTUP", "true").lower() in ("1", "true", "yes")
SEED_RANDOM = os.getenv("SEED_RANDOM") # integer seed for reproducible demo orders
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Logging Setup ---
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)


def build_storage() -> Storage:
    storage = Storage(create_store_engine(DATABASE_URL))
    if SEED_ON_STARTUP:
        logger.info("Populating initial data...")
        generate_initial_data(storage, seed=int(SEED_RANDOM) if SEED_RANDOM else None)
    return storage


# --- Lifespan Management for the Store ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup: initializing the store...")
    if getattr(app.state, "storage", None) is None:
        app.state.storage = build_storage()

    yield # Application is running

    app.state.storage.dispose()
    logger.info("Application shutdown complete.")


async def inconsistent_reference_handler(request: Request, exc: InconsistentReferenceError):
    logger.error(f"{request.method} {request.url.path} hit a dangling reference: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def public(user: schemas.UserInDB) -> schemas.User:
    return schemas.User(**user.model_dump(exclude={"password"}))


router = APIRouter(prefix="/api")

# --- Auth Endpoints ---
@router.post("/register", response_model=schemas.Token, status_code=201, tags=["Auth"])
def register(user_in: schemas.UserCreate, storage: Storage = Depends(get_storage)):
    """
    Create a customer account and log it in.
    - **username** and **email**: Must be unique.
    """
    if storage.get_user_by_username(user_in.username):
        raise HTTPException(status_code=400, detail="Username already exists")
    if storage.get_user_by_email(user_in.email):
        raise HTTPException(status_code=400, detail="Email already registered")
    try:
        user = storage.create_user(user_in.model_copy(update={
            "password": hash_password(user_in.password),
            "is_admin": False,
        }))
    except IntegrityError:
        # taken by a deleted account
        raise HTTPException(status_code=400, detail="Username or email is no longer available")
    return schemas.Token(access_token=create_token(user.id), user=public(user))

@router.post("/login", response_model=schemas.Token, tags=["Auth"])
def login(credentials: schemas.LoginRequest, storage: Storage = Depends(get_storage)):
    user = storage.get_user_by_username(credentials.username)
    if user is None or not verify_password(credentials.password, user.password):
        logger.warning(f"Failed login for {credentials.username}")
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return schemas.Token(access_token=create_token(user.id), user=public(user))

@router.get("/user", response_model=schemas.User, tags=["Auth"])
def read_current_user(user: schemas.UserInDB = Depends(get_current_user)):
    return user

@router.put("/user", response_model=schemas.User, tags=["Auth"])
def update_current_user(
    user_in: schemas.UserUpdate,
    user: schemas.UserInDB = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    """
    Update the current user's profile.
    Only the fields sent are changed; **email** must stay unique.
    """
    if user_in.email is not None and user_in.email != user.email:
        if storage.get_user_by_email(user_in.email):
            raise HTTPException(status_code=400, detail="Email already registered")
    try:
        updated = storage.update_user(user.id, user_in)
    except IntegrityError:
        raise HTTPException(status_code=400, detail="Username or email is no longer available")
    if updated is None:
        raise HTTPException(status_code=404, detail="User not found")
    return updated

# --- Catalogue Endpoints ---
@router.get("/categories", response_model=List[schemas.Category], tags=["Catalogue"])
def read_categories(storage: Storage = Depends(get_storage)):
    return storage.get_categories()

@router.get("/banners", response_model=List[schemas.Banner], tags=["Catalogue"])
def read_banners(storage: Storage = Depends(get_storage)):
    """Active banners only."""
    return storage.get_banners()

@router.get("/products", response_model=List[schemas.Product], tags=["Products"])
def read_products(
    limit: Optional[int] = Query(None, ge=1, description="Maximum number of products to return"),
    category: Optional[str] = Query(None, description="Filter by exact category name"),
    storage: Storage = Depends(get_storage),
):
    return storage.get_products(limit=limit, category=category)

@router.get("/products/category/{category}", response_model=List[schemas.Product], tags=["Products"])
def read_products_by_category(category: str, storage: Storage = Depends(get_storage)):
    return storage.get_products_by_category(category)

@router.get("/products/{product_id}", response_model=schemas.Product, tags=["Products"])
def read_product(product_id: int = Path(..., ge=1), storage: Storage = Depends(get_storage)):
    product = storage.get_product(product_id)
    if product is None:
        logger.warning(f"Product with ID {product_id} not found.")
        raise HTTPException(status_code=404, detail="Product not found")
    return product

# --- Review Endpoints ---
@router.get("/products/{product_id}/reviews", response_model=List[schemas.ReviewWithUser], tags=["Reviews"])
def read_product_reviews(product_id: int = Path(..., ge=1), storage: Storage = Depends(get_storage)):
    return storage.get_product_reviews(product_id)

@router.post("/products/{product_id}/reviews", response_model=schemas.Review, status_code=201, tags=["Reviews"])
def create_review(
    review_in: schemas.ReviewBody,
    product_id: int = Path(..., ge=1),
    user: schemas.UserInDB = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    """
    Review a product as the current user.
    The product's rating is recomputed from all of its reviews.
    """
    if storage.get_product(product_id) is None:
        raise HTTPException(status_code=404, detail=f"Product with id {product_id} not found")
    return storage.create_review(schemas.ReviewCreate(**review_in.model_dump(), product_id=product_id, user_id=user.id))

# --- Cart Endpoints ---
def _own_cart_item(storage: Storage, user: schemas.UserInDB, item_id: int) -> schemas.CartItem:
    item = storage.get_cart_item(item_id)
    cart = storage.get_cart(user.id)
    if item is None or cart is None or item.cart_id != cart.id:
        raise HTTPException(status_code=404, detail="Cart item not found")
    return item

@router.get("/cart", response_model=schemas.CartWithItems, tags=["Cart"])
def read_cart(user: schemas.UserInDB = Depends(get_current_user), storage: Storage = Depends(get_storage)):
    """The current user's cart, created on first access."""
    storage.get_or_create_cart(user.id)
    return storage.get_cart_with_items(user.id)

@router.post("/cart/items", response_model=schemas.CartItem, status_code=201, tags=["Cart"])
def add_cart_item(
    item_in: schemas.CartItemAdd,
    user: schemas.UserInDB = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    """
    Add a product to the cart.
    Adding a product that is already in the cart increases its quantity.
    """
    if storage.get_product(item_in.product_id) is None:
        raise HTTPException(status_code=404, detail=f"Product with id {item_in.product_id} not found")
    cart = storage.get_or_create_cart(user.id)
    return storage.add_item_to_cart(schemas.CartItemCreate(cart_id=cart.id, **item_in.model_dump()))

@router.put("/cart/items/{item_id}", response_model=schemas.CartItem, tags=["Cart"])
def update_cart_item(
    item_in: schemas.CartItemUpdate,
    item_id: int = Path(..., ge=1),
    user: schemas.UserInDB = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    _own_cart_item(storage, user, item_id)
    item = storage.update_cart_item(item_id, item_in.quantity)
    if item is None:
        raise HTTPException(status_code=404, detail="Cart item not found")
    return item

@router.delete("/cart/items/{item_id}", status_code=204, tags=["Cart"])
def delete_cart_item(
    item_id: int = Path(..., ge=1),
    user: schemas.UserInDB = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    _own_cart_item(storage, user, item_id)
    if not storage.remove_cart_item(item_id):
        raise HTTPException(status_code=404, detail="Cart item not found")
    return Response(status_code=204)

# --- Order Endpoints ---
@router.get("/orders", response_model=List[schemas.Order], tags=["Orders"])
def read_orders(user: schemas.UserInDB = Depends(get_current_user), storage: Storage = Depends(get_storage)):
    return storage.get_orders(user.id)

@router.get("/orders/{order_id}", response_model=schemas.OrderWithItems, tags=["Orders"])
def read_order(
    order_id: int = Path(..., ge=1),
    user: schemas.UserInDB = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    order = storage.get_order_with_items(order_id)
    if order is None:
        logger.warning(f"Order with ID {order_id} not found.")
        raise HTTPException(status_code=404, detail="Order not found")
    if order.order.user_id != user.id:
        raise HTTPException(status_code=403, detail="Forbidden")
    return order

@router.post("/orders", response_model=schemas.OrderWithItems, status_code=201, tags=["Orders"])
def place_order(
    checkout: schemas.CheckoutRequest,
    user: schemas.UserInDB = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    """
    Place an order for everything in the cart.
    - **total_amount** is stored as sent.
    - The cart is emptied in the same transaction.
    """
    return storage.place_order(user.id, checkout)

# --- Admin Endpoints ---
@router.get("/check-admin", tags=["Admin"])
def check_admin(user: schemas.UserInDB = Depends(get_current_user)):
    return {"is_admin": user.is_admin}

@router.get("/admin/users", response_model=List[schemas.User], tags=["Admin"])
def admin_read_users(admin: schemas.UserInDB = Depends(get_current_admin), storage: Storage = Depends(get_storage)):
    return storage.get_all_users()

@router.post("/admin/users", response_model=schemas.User, status_code=201, tags=["Admin"])
def admin_create_user(
    user_in: schemas.UserCreate,
    admin: schemas.UserInDB = Depends(get_current_admin),
    storage: Storage = Depends(get_storage),
):
    if storage.get_user_by_username(user_in.username):
        raise HTTPException(status_code=400, detail="Username already exists")
    if storage.get_user_by_email(user_in.email):
        raise HTTPException(status_code=400, detail="Email already registered")
    try:
        return storage.create_user(user_in.model_copy(update={"password": hash_password(user_in.password)}))
    except IntegrityError:
        raise HTTPException(status_code=400, detail="Username or email is no longer available")

@router.patch("/admin/users/{user_id}", response_model=schemas.User, tags=["Admin"])
def admin_update_user(
    status_in: schemas.AdminStatusUpdate,
    user_id: int = Path(..., ge=1),
    admin: schemas.UserInDB = Depends(get_current_admin),
    storage: Storage = Depends(get_storage),
):
    """Grant or revoke admin rights. Admins cannot demote themselves."""
    if user_id == admin.id and not status_in.is_admin:
        raise HTTPException(status_code=400, detail="Cannot remove your own admin privileges")
    user = storage.update_user_admin_status(user_id, status_in.is_admin)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user

@router.delete("/admin/users/{user_id}", status_code=204, tags=["Admin"])
def admin_delete_user(
    user_id: int = Path(..., ge=1),
    admin: schemas.UserInDB = Depends(get_current_admin),
    storage: Storage = Depends(get_storage),
):
    if user_id == admin.id:
        raise HTTPException(status_code=400, detail="Cannot delete yourself")
    if not storage.delete_user(user_id):
        raise HTTPException(status_code=404, detail="User not found")
    return Response(status_code=204)

@router.get("/admin/orders", response_model=List[schemas.Order], tags=["Admin"])
def admin_read_orders(admin: schemas.UserInDB = Depends(get_current_admin), storage: Storage = Depends(get_storage)):
    return storage.get_all_orders()

@router.post("/admin/products", response_model=schemas.Product, status_code=201, tags=["Admin"])
def admin_create_product(
    product_in: schemas.ProductCreate,
    admin: schemas.UserInDB = Depends(get_current_admin),
    storage: Storage = Depends(get_storage),
):
    return storage.create_product(product_in)

@router.get("/admin/products/low-stock", response_model=List[schemas.Product], tags=["Admin"])
def admin_low_stock(
    threshold: int = Query(10, ge=0, description="Report products with stock at or below this level"),
    admin: schemas.UserInDB = Depends(get_current_admin),
    storage: Storage = Depends(get_storage),
):
    return storage.get_low_stock_products(threshold)

@router.post("/admin/products/discount", response_model=List[schemas.Product], tags=["Admin"])
def admin_apply_discount(
    discount_in: schemas.DiscountRequest,
    admin: schemas.UserInDB = Depends(get_current_admin),
    storage: Storage = Depends(get_storage),
):
    return storage.apply_discount(discount_in.product_ids, discount_in.discount_percentage)

@router.post("/admin/products/bulk", response_model=schemas.BulkImportResult, status_code=201, tags=["Admin"])
def admin_bulk_import(
    upload: schemas.BulkImportRequest,
    admin: schemas.UserInDB = Depends(get_current_admin),
    storage: Storage = Depends(get_storage),
):
    try:
        products = import_products(storage, upload.csv)
    except BulkImportError as e:
        logger.warning(f"Bulk import rejected: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    return schemas.BulkImportResult(created=len(products), products=products)

@router.patch("/admin/products/{product_id}", response_model=schemas.Product, tags=["Admin"])
def admin_update_product(
    product_in: schemas.ProductUpdate,
    product_id: int = Path(..., ge=1),
    admin: schemas.UserInDB = Depends(get_current_admin),
    storage: Storage = Depends(get_storage),
):
    """
    Update an existing product.
    Allows partial updates.
    """
    product = storage.update_product(product_id, product_in)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return product

@router.delete("/admin/products/{product_id}", status_code=204, tags=["Admin"])
def admin_delete_product(
    product_id: int = Path(..., ge=1),
    admin: schemas.UserInDB = Depends(get_current_admin),
    storage: Storage = Depends(get_storage),
):
    if not storage.delete_product(product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    return Response(status_code=204)

@router.get("/admin/analytics", response_model=schemas.Analytics, tags=["Admin"])
def admin_analytics(
    timeframe: str = Query(analytics.DEFAULT_TIMEFRAME, description="One of 7d, 30d, 90d"),
    admin: schemas.UserInDB = Depends(get_current_admin),
    storage: Storage = Depends(get_storage),
):
    return analytics.get_analytics(storage, timeframe)


def create_app(storage: Optional[Storage] = None) -> FastAPI:
    """
    Builds the API. Pass a Storage to serve it as-is; otherwise one is built
    (and seeded) at startup.
    """
    app = FastAPI(
        title="Storefront API",
        description="Storefront and admin dashboard API over an in-memory store.",
        version="1.0.0",
        lifespan=lifespan,
    )
    if storage is not None:
        app.state.storage = storage

    # --- CORS Middleware ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(InconsistentReferenceError, inconsistent_reference_handler)
    app.include_router(router)

    # --- Health Check Endpoint ---
    @app.get("/health", status_code=200, tags=["Health"])
    def health_check(store: Storage = Depends(get_storage)):
        try:
            store.ping()
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            raise HTTPException(status_code=503, detail={"status": "unhealthy", "database": "error"})
        return {"status": "healthy", "database": "ok"}

    return app


app = create_app()

if __name__ == "__main__":
    # For production, use Uvicorn: uvicorn main:app --host 0.0.0.0 --port 8000
    import uvicorn
    logger.info("Starting application with Uvicorn (for local testing only)...")
    uvicorn.run(app, host="0.0.0.0", port=8000)
