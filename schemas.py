"""
Database Schemas for the shop backend

Each collection model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.
Request bodies for the API live at the bottom of the file.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "refunded"]
PaymentMethod = Literal["cash_on_delivery", "credit_card", "debit_card", "paypal", "bank_transfer", "wallet"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
DiscountMethod = Literal["discount_code", "automatic_discount"]
DiscountType = Literal["percentage", "fixed"]
AppliesTo = Literal["all_products", "specific_products", "specific_categories", "specific_subcategories"]
Eligibility = Literal["all_customers", "specific_customer_segments", "specific_customers"]

# ----------------------- Collections -----------------------
class CustomerAddress(BaseModel):
    user_id: str
    full_name: str
    phone: str
    line1: str
    line2: Optional[str] = None
    city: str
    country: str
    postal_code: Optional[str] = None


class Product(BaseModel):
    name_en: str
    name_ar: str
    sku: str = Field(..., description="Globally unique stock keeping unit")
    original_price: float = Field(..., ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    sale_start_date: Optional[datetime] = None
    sale_end_date: Optional[datetime] = None
    stock_quantity: int = Field(0, ge=0, description="Flat authoritative stock counter")
    sizes: List[str] = []
    colors: List[str] = []
    images: List[str] = []
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    seller_id: Optional[str] = None
    active: bool = True


class VariantAttributes(BaseModel):
    """Per-variant overrides; anything beyond the known fields goes in ``extra``."""
    price: Optional[float] = Field(None, ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    weight: Optional[float] = Field(None, ge=0)
    sku: Optional[str] = None
    extra: Dict[str, Any] = {}


class InventoryVariant(BaseModel):
    variant_id: str
    size: str
    colors: List[str]
    quantity: int = Field(..., ge=0)
    image: Optional[str] = None
    attributes: VariantAttributes = VariantAttributes()


class ProductInventory(BaseModel):
    product_id: str
    variants: List[InventoryVariant] = []
    total_quantity: int = Field(0, ge=0, description="Sum of all variant quantities")
    active: bool = True
    version: int = 0


class CartItem(BaseModel):
    item_id: str
    product_id: str
    inventory_id: Optional[str] = None
    variant_id: Optional[str] = None
    product_name: str
    product_name_ar: str
    sku: str
    quantity: int = Field(..., ge=1)
    size: Optional[str] = None
    colors: List[str] = []
    variant_image: Optional[str] = None
    unit_price: float
    discount: float = 0
    subtotal: float


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = []
    subtotal: float = 0
    discount_amount: float = 0
    coupon_id: Optional[str] = None
    coupon_code: Optional[str] = None
    shipping_cost: float = 0
    tax: float = 0
    total: float = 0


class OrderItem(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    seller_id: Optional[str] = None
    product_name: str
    product_name_ar: str
    sku: str
    quantity: int = Field(..., ge=1)
    size: Optional[str] = None
    colors: List[str] = []
    unit_price: float = Field(..., description="Price frozen at purchase time")
    discount: float = 0
    subtotal: float = Field(..., description="unit_price * quantity - discount")
    product_image: Optional[str] = None


class Order(BaseModel):
    order_number: str
    customer_id: str
    items: List[OrderItem]
    shipping_address_id: str
    subtotal: float
    discount_amount: float = 0
    coupon_id: Optional[str] = None
    coupon_code: Optional[str] = None
    shipping_cost: float = 0
    tax: float = 0
    total: float
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    status: OrderStatus = "pending"
    confirmed_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    tracking_number: Optional[str] = None
    shipping_carrier: Optional[str] = None
    estimated_delivery_date: Optional[str] = None
    customer_notes: Optional[str] = None
    admin_notes: Optional[str] = None
    seller_id: Optional[str] = None
    stock_reserved: bool = False


class Discount(BaseModel):
    name: str
    method: DiscountMethod = "automatic_discount"
    code: Optional[str] = None
    discount_type: DiscountType
    discount_value: float = Field(..., ge=0)
    applies_to: AppliesTo = "all_products"
    product_ids: List[str] = []
    category_ids: List[str] = []
    subcategory_ids: List[str] = []
    eligibility: Eligibility = "all_customers"
    customer_ids: List[str] = []
    customer_segment_ids: List[str] = []
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    active: bool = True
    seller_id: Optional[str] = None


# ----------------------- Request bodies -----------------------
class ProductCreateBody(Product):
    pass


class ProductUpdateBody(BaseModel):
    name_en: Optional[str] = None
    name_ar: Optional[str] = None
    original_price: Optional[float] = Field(None, ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    sale_start_date: Optional[datetime] = None
    sale_end_date: Optional[datetime] = None
    stock_quantity: Optional[int] = Field(None, ge=0)
    sizes: Optional[List[str]] = None
    colors: Optional[List[str]] = None
    images: Optional[List[str]] = None
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    active: Optional[bool] = None


class AddressCreateBody(BaseModel):
    full_name: str
    phone: str
    line1: str
    line2: Optional[str] = None
    city: str
    country: str
    postal_code: Optional[str] = None


class VariantBody(BaseModel):
    size: str = Field(..., min_length=1)
    colors: List[str] = Field(..., min_length=1)
    quantity: int = Field(..., ge=0)
    image: Optional[str] = None
    attributes: VariantAttributes = VariantAttributes()


class InventoryCreateBody(BaseModel):
    product_id: str
    variants: List[VariantBody] = Field(..., min_length=1)


class InventoryUpdateBody(BaseModel):
    product_id: Optional[str] = None
    variants: Optional[List[VariantBody]] = Field(None, min_length=1)


class InventoryStatusBody(BaseModel):
    active: bool


class VariantUpdateBody(BaseModel):
    quantity: Optional[int] = Field(None, ge=0)
    attributes: Optional[VariantAttributes] = None
    image: Optional[str] = None


class BulkDeleteBody(BaseModel):
    ids: List[str]


class CartItemBody(BaseModel):
    product_id: str
    inventory_id: Optional[str] = None
    variant_id: Optional[str] = None
    quantity: int = Field(..., ge=1)
    size: Optional[str] = None
    colors: Optional[List[str]] = None


class CartCreateBody(BaseModel):
    items: List[CartItemBody] = Field(..., min_length=1)
    coupon_code: Optional[str] = None


class CartItemUpdateBody(BaseModel):
    quantity: Optional[int] = Field(None, ge=1)


class CartUpdateBody(BaseModel):
    items: Optional[List[CartItemBody]] = None
    # empty string clears the coupon
    coupon_code: Optional[str] = None


class OrderItemBody(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    size: Optional[str] = None
    colors: Optional[List[str]] = None


class OrderCreateBody(BaseModel):
    items: List[OrderItemBody] = Field(..., min_length=1)
    shipping_address_id: str
    payment_method: PaymentMethod
    coupon_code: Optional[str] = None
    customer_notes: Optional[str] = None


class OrderUpdateBody(BaseModel):
    shipping_address_id: Optional[str] = None
    customer_notes: Optional[str] = None


class OrderStatusBody(BaseModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    transaction_id: Optional[str] = None
    tracking_number: Optional[str] = None
    shipping_carrier: Optional[str] = None
    estimated_delivery_date: Optional[str] = None
    admin_notes: Optional[str] = None
    cancellation_reason: Optional[str] = None


class DiscountCreateBody(Discount):
    pass


class DiscountStatusBody(BaseModel):
    active: bool


class DiscountUpdateBody(BaseModel):
    name: Optional[str] = None
    method: Optional[DiscountMethod] = None
    code: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = Field(None, ge=0)
    applies_to: Optional[AppliesTo] = None
    product_ids: Optional[List[str]] = None
    category_ids: Optional[List[str]] = None
    subcategory_ids: Optional[List[str]] = None
    eligibility: Optional[Eligibility] = None
    customer_ids: Optional[List[str]] = None
    customer_segment_ids: Optional[List[str]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    active: Optional[bool] = None
