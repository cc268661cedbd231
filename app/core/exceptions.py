"""
Domain errors raised by services and rendered by the exception handler in app.main.

Every error carries an HTTP status, a stable machine-readable ``reason`` and a
human message so the client can show a precise message for each failure.
"""
from fastapi import status


class StorefrontError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    reason: str = "error"
    default_message: str = "Request could not be processed"

    def __init__(self, message: str | None = None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)


# Promo evaluation

class PromoError(StorefrontError):
    pass


class PromoNotFoundError(PromoError):
    status_code = status.HTTP_404_NOT_FOUND
    reason = "not_found"
    default_message = "Invalid promo code"


class PromoInactiveError(PromoError):
    # Admin-disabled and outside the date window are reported the same way
    reason = "inactive"
    default_message = "Promo code is expired or inactive"


class PromoBelowMinimumError(PromoError):
    reason = "below_minimum"
    default_message = "Order amount is below the minimum required for this promo code"


class PromoLimitReachedError(PromoError):
    reason = "usage_limit_reached"
    default_message = "You have reached the usage limit for this promo code"


class PromoGlobalLimitReachedError(PromoLimitReachedError):
    reason = "global_limit_reached"


class PromoUserLimitReachedError(PromoLimitReachedError):
    reason = "user_limit_reached"


class PromoConflictError(PromoError):
    status_code = status.HTTP_409_CONFLICT
    reason = "conflict"
    default_message = "Promo code was redeemed concurrently, please try again"


# Orders

class OrderNotFoundError(StorefrontError):
    status_code = status.HTTP_404_NOT_FOUND
    reason = "order_not_found"
    default_message = "Order not found"


class OrderAccessDeniedError(StorefrontError):
    status_code = status.HTTP_403_FORBIDDEN
    reason = "order_access_denied"
    default_message = "Unauthorized"


class OrderAlreadyDiscountedError(StorefrontError):
    status_code = status.HTTP_409_CONFLICT
    reason = "order_already_discounted"
    default_message = "A promo code has already been applied to this order"


# Administration

class PromoCodeExistsError(StorefrontError):
    reason = "code_exists"
    default_message = "Promo code already exists"


class PromoInUseError(StorefrontError):
    status_code = status.HTTP_409_CONFLICT
    reason = "promo_in_use"
    default_message = "Cannot delete promo code that has been used"


class InvalidPromoWindowError(StorefrontError):
    reason = "invalid_window"
    default_message = "End date must be after start date"


class InvalidPromoLimitError(StorefrontError):
    reason = "invalid_limit"
    default_message = "Usage limit cannot be lower than the number of times the code has been used"
