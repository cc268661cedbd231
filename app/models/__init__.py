from app.models.user import User, RoleEnum
from app.models.order import Order
from app.models.promo_code import PromoCode, PromoCodeUsage, DiscountTypeEnum

__all__ = [
    "User",
    "RoleEnum",
    "Order",
    "PromoCode",
    "PromoCodeUsage",
    "DiscountTypeEnum",
]
