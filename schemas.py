from typing import Optional, List, Literal
from pydantic import BaseModel, EmailStr, Field, conint, field_validator
from datetime import datetime

OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]

# --- Users ---
class UserBase(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    is_admin: bool = False

class UserCreate(UserBase):
    password: str = Field(..., min_length=1) # hashed by the caller before it reaches the store

class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None

    @field_validator("name", "email")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not null")
        return v

class User(UserBase):
    id: int
    created_at: datetime

    class Config:
        from_attributes = True

class UserInDB(User):
    password: str

class AdminStatusUpdate(BaseModel):
    is_admin: bool

class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: User

# --- Products ---
class ProductBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str
    price: float = Field(..., gt=0)
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)
    rating: Optional[float] = Field(None, ge=0, le=5)
    stock: int = Field(..., ge=0)
    brand: str
    category: str
    thumbnail: str
    images: List[str] = Field(..., min_length=1)

class ProductCreate(ProductBase):
    pass

class ProductUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)
    rating: Optional[float] = Field(None, ge=0, le=5)
    stock: Optional[int] = Field(None, ge=0)
    brand: Optional[str] = None
    category: Optional[str] = None
    thumbnail: Optional[str] = None
    images: Optional[List[str]] = Field(None, min_length=1)

    # discount_percentage and rating may be cleared; the rest are required columns
    @field_validator("title", "description", "price", "stock", "brand", "category", "thumbnail", "images")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not null")
        return v

class Product(ProductBase):
    id: int
    created_at: datetime

    class Config:
        from_attributes = True

class DiscountRequest(BaseModel):
    product_ids: List[int] = Field(..., min_length=1)
    discount_percentage: float = Field(..., ge=0, le=100)

# --- Categories & Banners ---
class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    image: str

class Category(CategoryCreate):
    id: int
    created_at: datetime

    class Config:
        from_attributes = True

class BannerCreate(BaseModel):
    image: str
    link: str
    active: bool = True

class Banner(BannerCreate):
    id: int
    created_at: datetime

    class Config:
        from_attributes = True

# --- Carts ---
class Cart(BaseModel):
    id: int
    user_id: int
    created_at: datetime

    class Config:
        from_attributes = True

class CartItemCreate(BaseModel):
    cart_id: int
    product_id: int
    quantity: Optional[conint(ge=1)] = None # missing means 1

class CartItemAdd(BaseModel):
    product_id: int
    quantity: Optional[conint(ge=1)] = None

class CartItemUpdate(BaseModel):
    quantity: conint(ge=1)

class CartItem(BaseModel):
    id: int
    cart_id: int
    product_id: int
    quantity: int
    created_at: datetime

    class Config:
        from_attributes = True

class CartItemWithProduct(CartItem):
    product: Product

class CartWithItems(BaseModel):
    cart: Cart
    items: List[CartItemWithProduct]

# --- Orders ---
class CheckoutRequest(BaseModel):
    total_amount: float = Field(..., ge=0)
    shipping_address: str = Field(..., min_length=1)
    payment_method: str = Field(..., min_length=1, examples=["UPI", "Credit Card", "Cash on Delivery"])
    status: OrderStatus = "pending"

class OrderCreate(CheckoutRequest):
    user_id: int

class Order(OrderCreate):
    id: int
    created_at: datetime

    class Config:
        from_attributes = True

class OrderItemCreate(BaseModel):
    order_id: int
    product_id: int
    quantity: conint(gt=0)
    price: float = Field(..., ge=0)

class OrderItem(OrderItemCreate):
    id: int
    created_at: datetime

    class Config:
        from_attributes = True

class OrderItemWithProduct(OrderItem):
    product: Product

class OrderWithItems(BaseModel):
    order: Order
    items: List[OrderItemWithProduct]

# --- Reviews ---
class ReviewBody(BaseModel):
    rating: conint(ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)

class ReviewCreate(ReviewBody):
    user_id: int
    product_id: int

class Review(ReviewCreate):
    id: int
    created_at: datetime

    class Config:
        from_attributes = True

class ReviewWithUser(Review):
    user: User

# --- Analytics ---
class OrderStat(BaseModel):
    date: str # DD/MM
    count: int
    revenue: float

class TopProduct(BaseModel):
    id: int
    title: str
    total_sold: int
    revenue: float

class Analytics(BaseModel):
    user_count: int
    order_count: int
    product_count: int
    revenue: float
    order_stats: List[OrderStat]
    top_products: List[TopProduct]
    timeframe: str

class BulkImportResult(BaseModel):
    created: int
    products: List[Product]

class BulkImportRequest(BaseModel):
    csv: str = Field(..., min_length=1)
