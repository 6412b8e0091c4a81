"""
User-facing messages for reason codes, per language.

Templates use str.format placeholders; a missing parameter renders as an
empty string rather than failing the response.
"""
import os
from typing import Optional

DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "en")

MESSAGES = {
    "en": {
        # errors
        "PRODUCT_NOT_FOUND": "Product {product_id} was not found",
        "PRODUCT_NOT_ACTIVE": "{product} is not available for purchase",
        "ORDER_NOT_FOUND": "Order not found",
        "CART_NOT_FOUND": "Cart not found",
        "CART_ITEM_NOT_FOUND": "Cart item not found",
        "INVENTORY_NOT_FOUND": "Inventory not found",
        "VARIANT_NOT_FOUND": "The requested variant is not available",
        "COUPON_NOT_FOUND": "Coupon not found",
        "SHIPPING_ADDRESS_NOT_FOUND": "Shipping address not found",
        "INVALID_SIZE": "Size {size} is not available for {product}",
        "INVALID_COLOR": "Color {color} is not available for {product}",
        "DUPLICATE_VARIANT_COMBINATIONS": "Two variants share the same size and colors",
        "DISCOUNT_PERCENTAGE_TOO_HIGH": "A percentage discount cannot exceed 100%",
        "DISCOUNT_CODE_REQUIRED": "A discount code is required for code-based discounts",
        "CANCELLATION_REASON_REQUIRED": "A cancellation reason is required",
        "INVENTORY_IDS_REQUIRED": "At least one inventory id is required",
        "INSUFFICIENT_STOCK": "Not enough stock for {product}: available {available}, requested {requested}",
        "INSUFFICIENT_VARIANT_STOCK": "Not enough stock for this variant of {product}: available {available}, requested {requested}",
        "INVENTORY_EXCEEDS_PRODUCT_STOCK": "Variant quantities ({total}) exceed product stock ({stock})",
        "INVENTORY_ALREADY_EXISTS": "Inventory already exists for this product",
        "CART_ALREADY_EXISTS": "A cart already exists for this user",
        "DUPLICATE_SKU": "A product with this SKU already exists",
        "DUPLICATE_COUPON_CODE": "A discount with this code already exists",
        "ORDER_ACCESS_DENIED": "You do not have access to this order",
        "INVENTORY_NOT_OWNED_BY_SELLER": "This inventory belongs to another seller",
        "PRODUCT_NOT_OWNED_BY_SELLER": "This product belongs to another seller",
        "COUPON_NOT_OWNED_BY_SELLER": "This discount belongs to another seller",
        "COUPON_IDS_REQUIRED": "At least one discount id is required",
        "ORDER_CANNOT_BE_UPDATED": "Only pending orders can be edited",
        "ORDER_CANNOT_BE_DELETED": "Only pending or cancelled orders can be deleted",
        "INVALID_STATUS_TRANSITION": "An order cannot move from {current} to {requested}",
        "COUPON_NOT_YET_ACTIVE": "This coupon is not active yet",
        "COUPON_EXPIRED": "This coupon has expired",
        "COUPON_NOT_ELIGIBLE": "You are not eligible for this coupon",
        "COUPON_NOT_APPLICABLE_TO_PRODUCTS": "This coupon does not apply to the selected products",
        "ORDER_NUMBER_UNAVAILABLE": "Could not allocate an order number, please retry",
        "COUPON_CODE_UNAVAILABLE": "Could not generate a unique discount code, please retry",
        "INTERNAL_ERROR": "Something went wrong",
        # success
        "ORDER_CREATED": "Order created successfully",
        "ORDER_RETRIEVED": "Order retrieved successfully",
        "ORDERS_RETRIEVED": "Orders retrieved successfully",
        "ORDER_UPDATED": "Order updated successfully",
        "ORDER_STATUS_UPDATED": "Order status updated successfully",
        "ORDER_DELETED": "Order deleted successfully",
        "CART_RETRIEVED": "Cart retrieved successfully",
        "CART_CREATED": "Cart created successfully",
        "CART_UPDATED": "Cart updated successfully",
        "CART_ITEM_ADDED": "Item added to cart",
        "CART_ITEM_UPDATED": "Cart item updated",
        "CART_ITEM_REMOVED": "Item removed from cart",
        "CART_CLEARED": "Cart cleared",
        "CART_DELETED": "Cart deleted",
        "INVENTORY_CREATED": "Inventory created successfully",
        "INVENTORY_RETRIEVED": "Inventory retrieved successfully",
        "INVENTORY_UPDATED": "Inventory updated successfully",
        "INVENTORY_STATUS_UPDATED": "Inventory status updated successfully",
        "INVENTORY_VARIANT_UPDATED": "Inventory variant updated successfully",
        "INVENTORY_DELETED": "Inventory deleted successfully",
        "INVENTORY_BULK_DELETED": "{deleted_count} inventory records deleted",
        "PRODUCT_CREATED": "Product created successfully",
        "PRODUCT_RETRIEVED": "Product retrieved successfully",
        "PRODUCT_UPDATED": "Product updated successfully",
        "COUPON_CREATED": "Discount created successfully",
        "COUPON_RETRIEVED": "Discount retrieved successfully",
        "COUPON_STATUS_UPDATED": "Discount status updated successfully",
        "COUPON_UPDATED": "Discount updated successfully",
        "COUPON_DELETED": "Discount deleted successfully",
        "COUPON_BULK_DELETED": "{deleted_count} discounts deleted",
        "COUPON_CODE_GENERATED": "Discount code generated successfully",
        "ADDRESS_CREATED": "Address saved successfully",
        "ADDRESS_RETRIEVED": "Addresses retrieved successfully",
    },
    "ar": {
        "PRODUCT_NOT_FOUND": "المنتج {product_id} غير موجود",
        "PRODUCT_NOT_ACTIVE": "{product} غير متاح للشراء",
        "ORDER_NOT_FOUND": "الطلب غير موجود",
        "CART_NOT_FOUND": "سلة التسوق غير موجودة",
        "CART_ITEM_NOT_FOUND": "العنصر غير موجود في السلة",
        "INVENTORY_NOT_FOUND": "المخزون غير موجود",
        "VARIANT_NOT_FOUND": "النوع المطلوب غير متوفر",
        "COUPON_NOT_FOUND": "القسيمة غير موجودة",
        "SHIPPING_ADDRESS_NOT_FOUND": "عنوان الشحن غير موجود",
        "INVALID_SIZE": "المقاس {size} غير متوفر لـ {product}",
        "INVALID_COLOR": "اللون {color} غير متوفر لـ {product}",
        "DUPLICATE_VARIANT_COMBINATIONS": "يوجد نوعان بنفس المقاس والألوان",
        "DISCOUNT_PERCENTAGE_TOO_HIGH": "لا يمكن أن تتجاوز نسبة الخصم 100%",
        "DISCOUNT_CODE_REQUIRED": "رمز الخصم مطلوب",
        "CANCELLATION_REASON_REQUIRED": "سبب الإلغاء مطلوب",
        "INVENTORY_IDS_REQUIRED": "مطلوب معرف مخزون واحد على الأقل",
        "INSUFFICIENT_STOCK": "الكمية غير كافية لـ {product}: المتوفر {available}، المطلوب {requested}",
        "INSUFFICIENT_VARIANT_STOCK": "الكمية غير كافية لهذا النوع من {product}: المتوفر {available}، المطلوب {requested}",
        "INVENTORY_EXCEEDS_PRODUCT_STOCK": "كميات الأنواع ({total}) تتجاوز مخزون المنتج ({stock})",
        "INVENTORY_ALREADY_EXISTS": "المخزون موجود بالفعل لهذا المنتج",
        "CART_ALREADY_EXISTS": "سلة التسوق موجودة بالفعل",
        "DUPLICATE_SKU": "يوجد منتج بنفس رمز SKU",
        "DUPLICATE_COUPON_CODE": "يوجد خصم بنفس الرمز",
        "ORDER_ACCESS_DENIED": "لا تملك صلاحية الوصول إلى هذا الطلب",
        "INVENTORY_NOT_OWNED_BY_SELLER": "هذا المخزون يخص بائعاً آخر",
        "PRODUCT_NOT_OWNED_BY_SELLER": "هذا المنتج يخص بائعاً آخر",
        "COUPON_NOT_OWNED_BY_SELLER": "هذا الخصم يخص بائعاً آخر",
        "COUPON_IDS_REQUIRED": "مطلوب معرف خصم واحد على الأقل",
        "ORDER_CANNOT_BE_UPDATED": "يمكن تعديل الطلبات المعلقة فقط",
        "ORDER_CANNOT_BE_DELETED": "يمكن حذف الطلبات المعلقة أو الملغاة فقط",
        "INVALID_STATUS_TRANSITION": "لا يمكن نقل الطلب من {current} إلى {requested}",
        "COUPON_NOT_YET_ACTIVE": "القسيمة غير مفعلة بعد",
        "COUPON_EXPIRED": "انتهت صلاحية القسيمة",
        "COUPON_NOT_ELIGIBLE": "أنت غير مؤهل لاستخدام هذه القسيمة",
        "COUPON_NOT_APPLICABLE_TO_PRODUCTS": "القسيمة لا تنطبق على المنتجات المختارة",
        "ORDER_NUMBER_UNAVAILABLE": "تعذر إنشاء رقم الطلب، حاول مرة أخرى",
        "COUPON_CODE_UNAVAILABLE": "تعذر إنشاء رمز خصم فريد، حاول مرة أخرى",
        "INTERNAL_ERROR": "حدث خطأ ما",
        "ORDER_CREATED": "تم إنشاء الطلب بنجاح",
        "ORDER_RETRIEVED": "تم جلب الطلب بنجاح",
        "ORDERS_RETRIEVED": "تم جلب الطلبات بنجاح",
        "ORDER_UPDATED": "تم تحديث الطلب بنجاح",
        "ORDER_STATUS_UPDATED": "تم تحديث حالة الطلب بنجاح",
        "ORDER_DELETED": "تم حذف الطلب بنجاح",
        "CART_RETRIEVED": "تم جلب السلة بنجاح",
        "CART_CREATED": "تم إنشاء السلة بنجاح",
        "CART_UPDATED": "تم تحديث السلة بنجاح",
        "CART_ITEM_ADDED": "تمت إضافة العنصر إلى السلة",
        "CART_ITEM_UPDATED": "تم تحديث العنصر",
        "CART_ITEM_REMOVED": "تمت إزالة العنصر من السلة",
        "CART_CLEARED": "تم إفراغ السلة",
        "CART_DELETED": "تم حذف السلة",
        "INVENTORY_CREATED": "تم إنشاء المخزون بنجاح",
        "INVENTORY_RETRIEVED": "تم جلب المخزون بنجاح",
        "INVENTORY_UPDATED": "تم تحديث المخزون بنجاح",
        "INVENTORY_STATUS_UPDATED": "تم تحديث حالة المخزون بنجاح",
        "INVENTORY_VARIANT_UPDATED": "تم تحديث النوع بنجاح",
        "INVENTORY_DELETED": "تم حذف المخزون بنجاح",
        "INVENTORY_BULK_DELETED": "تم حذف {deleted_count} من سجلات المخزون",
        "PRODUCT_CREATED": "تم إنشاء المنتج بنجاح",
        "PRODUCT_RETRIEVED": "تم جلب المنتج بنجاح",
        "PRODUCT_UPDATED": "تم تحديث المنتج بنجاح",
        "COUPON_CREATED": "تم إنشاء الخصم بنجاح",
        "COUPON_RETRIEVED": "تم جلب الخصم بنجاح",
        "COUPON_STATUS_UPDATED": "تم تحديث حالة الخصم بنجاح",
        "COUPON_UPDATED": "تم تحديث الخصم بنجاح",
        "COUPON_DELETED": "تم حذف الخصم بنجاح",
        "COUPON_BULK_DELETED": "تم حذف {deleted_count} من الخصومات",
        "COUPON_CODE_GENERATED": "تم إنشاء رمز الخصم بنجاح",
        "ADDRESS_CREATED": "تم حفظ العنوان بنجاح",
        "ADDRESS_RETRIEVED": "تم جلب العناوين بنجاح",
    },
}


class _Params(dict):
    def __missing__(self, key):
        return ""


def pick_language(x_lang: Optional[str], accept_language: Optional[str]) -> str:
    for candidate in (x_lang, (accept_language or "").split(",")[0]):
        if not candidate:
            continue
        lang = candidate.split("-")[0].split(";")[0].strip().lower()
        if lang in MESSAGES:
            return lang
    return DEFAULT_LANGUAGE if DEFAULT_LANGUAGE in MESSAGES else "en"


def translate(code: str, lang: str = "en", **params) -> str:
    table = MESSAGES.get(lang) or MESSAGES["en"]
    template = table.get(code) or MESSAGES["en"].get(code) or code
    return template.format_map(_Params(params))
