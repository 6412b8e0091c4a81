"""Domain errors.

Raised by the service modules when a business rule is violated. Each error
carries a stable machine-readable ``code`` and the HTTP status the API layer
answers with; ``params`` feed the localized message template.
"""


class ShopError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, detail: str = "", **params):
        self.detail = detail
        self.params = params
        super().__init__(f"{self.code}: {detail}" if detail else self.code)


# ----------------------- Families -----------------------
class NotFoundError(ShopError):
    status_code = 404


class ValidationFailed(ShopError):
    status_code = 400


class AvailabilityError(ShopError):
    status_code = 409


class AccessDenied(ShopError):
    status_code = 403


class StateError(ShopError):
    status_code = 400


# ----------------------- Not found -----------------------
class ProductNotFound(NotFoundError):
    code = "PRODUCT_NOT_FOUND"


class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"


class CartNotFound(NotFoundError):
    code = "CART_NOT_FOUND"


class CartItemNotFound(NotFoundError):
    code = "CART_ITEM_NOT_FOUND"


class InventoryNotFound(NotFoundError):
    code = "INVENTORY_NOT_FOUND"


class VariantNotFound(NotFoundError):
    code = "VARIANT_NOT_FOUND"


class CouponNotFound(NotFoundError):
    code = "COUPON_NOT_FOUND"


class AddressNotFound(NotFoundError):
    code = "SHIPPING_ADDRESS_NOT_FOUND"


# ----------------------- Validation -----------------------
class ProductNotActive(ValidationFailed):
    code = "PRODUCT_NOT_ACTIVE"


class InvalidSize(ValidationFailed):
    code = "INVALID_SIZE"


class InvalidColor(ValidationFailed):
    code = "INVALID_COLOR"


class DuplicateVariantCombination(ValidationFailed):
    code = "DUPLICATE_VARIANT_COMBINATIONS"


class DiscountPercentageTooHigh(ValidationFailed):
    code = "DISCOUNT_PERCENTAGE_TOO_HIGH"


class DiscountCodeRequired(ValidationFailed):
    code = "DISCOUNT_CODE_REQUIRED"


class CancellationReasonRequired(ValidationFailed):
    code = "CANCELLATION_REASON_REQUIRED"


class InventoryIdsRequired(ValidationFailed):
    code = "INVENTORY_IDS_REQUIRED"


class CouponIdsRequired(ValidationFailed):
    code = "COUPON_IDS_REQUIRED"


# ----------------------- Conflict / availability -----------------------
class InsufficientStock(AvailabilityError):
    code = "INSUFFICIENT_STOCK"


class InsufficientVariantStock(AvailabilityError):
    code = "INSUFFICIENT_VARIANT_STOCK"


class InventoryExceedsProductStock(AvailabilityError):
    code = "INVENTORY_EXCEEDS_PRODUCT_STOCK"


class InventoryAlreadyExists(AvailabilityError):
    code = "INVENTORY_ALREADY_EXISTS"


class CartAlreadyExists(AvailabilityError):
    code = "CART_ALREADY_EXISTS"


class DuplicateSku(AvailabilityError):
    code = "DUPLICATE_SKU"


class DuplicateCouponCode(AvailabilityError):
    code = "DUPLICATE_COUPON_CODE"


# ----------------------- Authorization -----------------------
class OrderAccessDenied(AccessDenied):
    code = "ORDER_ACCESS_DENIED"


class InventoryAccessDenied(AccessDenied):
    code = "INVENTORY_NOT_OWNED_BY_SELLER"


class CouponAccessDenied(AccessDenied):
    code = "COUPON_NOT_OWNED_BY_SELLER"


class ProductAccessDenied(AccessDenied):
    code = "PRODUCT_NOT_OWNED_BY_SELLER"


# ----------------------- State -----------------------
class OrderCannotBeUpdated(StateError):
    code = "ORDER_CANNOT_BE_UPDATED"


class OrderCannotBeDeleted(StateError):
    code = "ORDER_CANNOT_BE_DELETED"


class InvalidStatusTransition(StateError):
    code = "INVALID_STATUS_TRANSITION"


class CouponNotYetActive(StateError):
    code = "COUPON_NOT_YET_ACTIVE"


class CouponExpired(StateError):
    code = "COUPON_EXPIRED"


class CouponNotEligible(StateError):
    code = "COUPON_NOT_ELIGIBLE"


class CouponNotApplicableToProducts(StateError):
    code = "COUPON_NOT_APPLICABLE_TO_PRODUCTS"


class OrderNumberUnavailable(ShopError):
    code = "ORDER_NUMBER_UNAVAILABLE"


class CouponCodeUnavailable(ShopError):
    code = "COUPON_CODE_UNAVAILABLE"
