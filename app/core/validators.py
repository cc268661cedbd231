"""
Reusable validators for promo code administration
"""
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy.orm import Session
from app.core.exceptions import InvalidPromoWindowError, PromoCodeExistsError
from app.models.promo_code import PromoCode
from app.core.logging_config import get_logger

logger = get_logger("validators")


def normalize_code(code: Optional[str]) -> str:
    """Promo codes are compared case-insensitively and stored upper-cased."""
    return code.strip().upper() if code else ""


def as_utc(value: datetime) -> datetime:
    """Naive datetimes (SQLite drops tzinfo) are treated as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def validate_promo_window(start_date: datetime, end_date: datetime) -> None:
    """
    Validate that a promo's validity window is well formed.

    Raises:
        InvalidPromoWindowError: If end_date is not strictly after start_date
    """
    if as_utc(end_date) <= as_utc(start_date):
        raise InvalidPromoWindowError(start_date=start_date, end_date=end_date)


def ensure_code_available(db: Session, code: str, exclude_id: Optional[int] = None) -> None:
    """
    Validate that no other promo already uses this code.

    Args:
        db: Database session
        code: Normalized (upper-cased) code
        exclude_id: Promo being updated, ignored in the lookup

    Raises:
        PromoCodeExistsError: If the code is taken
    """
    query = db.query(PromoCode.id).filter(PromoCode.code == code)
    if exclude_id is not None:
        query = query.filter(PromoCode.id != exclude_id)
    if query.first():
        logger.warning(f"Duplicate promo code rejected: {code}", extra={"code": code, "exclude_id": exclude_id})
        raise PromoCodeExistsError(f"Promo code '{code}' already exists.", code=code)
