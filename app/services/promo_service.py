"""
Promo Evaluator for the storefront

Provides the promo code checks used at checkout:
- Validity (active flag, date window, global usage cap)
- Per-user eligibility
- Discount computation
- Read-only preview (validate_for_order) and committed redemption (redeem)
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import update, select, or_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.core.cache import invalidate_promo_stats
from app.core.config import settings
from app.core.db_transaction import db_transaction
from app.core.exceptions import (
    PromoError,
    PromoNotFoundError,
    PromoInactiveError,
    PromoBelowMinimumError,
    PromoGlobalLimitReachedError,
    PromoUserLimitReachedError,
    PromoConflictError,
    OrderNotFoundError,
    OrderAccessDeniedError,
    OrderAlreadyDiscountedError,
)
from app.core.validators import normalize_code, as_utc
from app.models.order import Order
from app.models.promo_code import PromoCode, PromoCodeUsage, DiscountTypeEnum
from app.core.logging_config import get_logger

logger = get_logger("promo_service")

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")
# First attempt plus one retry with a fresh read after losing a race
REDEEM_ATTEMPTS = 2


@dataclass
class PromoEvaluation:
    promo: PromoCode
    discount_amount: Decimal


@dataclass
class RedemptionResult:
    order_id: int
    original_total: Decimal
    discount_amount: Decimal
    final_total: Decimal
    promo_code: str


def _money(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_within_window(promo: PromoCode, now: datetime) -> bool:
    now = as_utc(now)
    return as_utc(promo.start_date) <= now <= as_utc(promo.end_date)


def is_exhausted(promo: PromoCode) -> bool:
    return promo.usage_limit is not None and promo.used_count >= promo.usage_limit


def check_validity(promo: PromoCode, now: Optional[datetime] = None) -> bool:
    """Active, inside the inclusive date window and below the global usage cap."""
    now = now or _utcnow()
    return bool(promo.is_active) and is_within_window(promo, now) and not is_exhausted(promo)


def can_user_redeem(promo: PromoCode, user_id: int) -> bool:
    # first_time_only means one redemption in total, whoever asks
    if promo.first_time_only and promo.used_count > 0:
        return False
    usage = promo.usage_for(user_id)
    if usage is None:
        return True
    return usage.count < promo.per_user_limit


def compute_discount(promo: PromoCode, order_amount) -> Decimal:
    """
    Discount for an order amount, rounded to cents.

    Fixed discounts are returned as-is, even when larger than the order amount.
    Percentage discounts are capped by max_discount when one is set.
    """
    amount = _money(order_amount)
    if promo.discount_type == DiscountTypeEnum.FIXED:
        discount = _money(promo.discount_value)
    else:
        discount = amount * _money(promo.discount_value) / Decimal("100")
        if promo.max_discount is not None:
            discount = min(discount, _money(promo.max_discount))
    discount = discount.quantize(CENTS, rounding=ROUND_HALF_UP)
    return max(discount, ZERO)


def get_promo_by_code(db: Session, code: str, fresh: bool = False) -> Optional[PromoCode]:
    query = db.query(PromoCode).options(selectinload(PromoCode.user_usage)).filter(
        PromoCode.code == normalize_code(code)
    )
    if fresh:
        query = query.populate_existing()
    return query.first()


def _ensure_redeemable(
    promo: PromoCode,
    order_amount: Decimal,
    user_id: Optional[int],
    now: datetime,
) -> None:
    if not check_validity(promo, now):
        if promo.is_active and is_within_window(promo, now) and is_exhausted(promo):
            raise PromoGlobalLimitReachedError(code=promo.code)
        raise PromoInactiveError(code=promo.code)

    min_amount = _money(promo.min_order_amount)
    if order_amount < min_amount:
        raise PromoBelowMinimumError(
            f"Minimum order amount of {settings.CURRENCY_SYMBOL}{min_amount} required",
            code=promo.code,
            order_amount=order_amount,
        )

    if user_id is not None and not can_user_redeem(promo, user_id):
        if promo.first_time_only and promo.used_count > 0:
            raise PromoGlobalLimitReachedError(code=promo.code)
        raise PromoUserLimitReachedError(code=promo.code, user_id=user_id)


def validate_for_order(
    db: Session,
    code: str,
    order_amount,
    user_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> PromoEvaluation:
    """
    Preview the discount a code gives on an order amount without recording usage.

    The result is advisory: redeem() re-checks everything against current state.

    Raises:
        PromoNotFoundError, PromoInactiveError, PromoBelowMinimumError,
        PromoLimitReachedError (global or per-user)
    """
    now = now or _utcnow()
    amount = _money(order_amount)
    promo = get_promo_by_code(db, code)
    if promo is None:
        logger.info(f"Promo validation failed, unknown code: {normalize_code(code)}")
        raise PromoNotFoundError(code=normalize_code(code))

    try:
        _ensure_redeemable(promo, amount, user_id, now)
    except PromoError as e:
        logger.info(
            f"Promo validation rejected: {promo.code} ({e.reason})",
            extra={"code": promo.code, "order_amount": str(amount), "user_id": user_id},
        )
        raise

    return PromoEvaluation(promo=promo, discount_amount=compute_discount(promo, amount))


def _claim_global_use(db: Session, promo: PromoCode) -> None:
    """Increment used_count only while the code is still usable, in one statement."""
    stmt = (
        update(PromoCode)
        .where(
            PromoCode.id == promo.id,
            PromoCode.is_active == True,
            or_(PromoCode.usage_limit.is_(None), PromoCode.used_count < PromoCode.usage_limit),
            or_(PromoCode.first_time_only == False, PromoCode.used_count == 0),
        )
        .values(used_count=PromoCode.used_count + 1, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if db.execute(stmt).rowcount != 1:
        raise PromoConflictError(code=promo.code)


def _claim_user_use(db: Session, promo: PromoCode, user_id: int, now: datetime) -> None:
    per_user_limit = (
        select(PromoCode.per_user_limit)
        .where(PromoCode.id == promo.id)
        .scalar_subquery()
    )
    stmt = (
        update(PromoCodeUsage)
        .where(
            PromoCodeUsage.promo_code_id == promo.id,
            PromoCodeUsage.user_id == user_id,
            PromoCodeUsage.count < per_user_limit,
        )
        .values(count=PromoCodeUsage.count + 1, used_at=now)
        .execution_options(synchronize_session=False)
    )
    if db.execute(stmt).rowcount == 1:
        return

    # No row below the limit: first use by this user, or another request used up the limit
    # The session is unusable after a failed flush, so read the code first
    code = promo.code
    db.add(PromoCodeUsage(promo_code_id=promo.id, user_id=user_id, count=1, used_at=now))
    try:
        db.flush()
    except IntegrityError:
        raise PromoConflictError(code=code, user_id=user_id)


def _apply_to_order(db: Session, order: Order, promo: PromoCode, discount: Decimal) -> Decimal:
    final_total = _money(order.total) - discount
    stmt = (
        update(Order)
        .where(Order.id == order.id, Order.discount_code.is_(None))
        .values(
            discount_code=promo.code,
            discount_type=DiscountTypeEnum(promo.discount_type).value,
            discount_value=_money(promo.discount_value),
            discount_amount=discount,
            final_total=final_total,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    if db.execute(stmt).rowcount != 1:
        raise PromoConflictError(code=promo.code, order_id=order.id)
    return final_total


def _redeem_once(
    db: Session,
    code: str,
    order_id: int,
    user_id: int,
    now: datetime,
) -> RedemptionResult:
    order = db.query(Order).filter(Order.id == order_id).populate_existing().first()
    if order is None:
        raise OrderNotFoundError(order_id=order_id)
    if order.user_id != user_id:
        logger.warning(
            f"Promo apply denied: order {order_id} does not belong to user {user_id}",
            extra={"order_id": order_id, "user_id": user_id},
        )
        raise OrderAccessDeniedError(order_id=order_id, user_id=user_id)
    if order.discount_code is not None:
        raise OrderAlreadyDiscountedError(order_id=order_id, code=order.discount_code)

    promo = get_promo_by_code(db, code, fresh=True)
    if promo is None:
        raise PromoNotFoundError(code=normalize_code(code))

    original_total = _money(order.total)
    _ensure_redeemable(promo, original_total, user_id, now)
    discount = compute_discount(promo, original_total)

    _claim_global_use(db, promo)
    _claim_user_use(db, promo, user_id, now)
    final_total = _apply_to_order(db, order, promo, discount)

    return RedemptionResult(
        order_id=order.id,
        original_total=original_total,
        discount_amount=discount,
        final_total=final_total,
        promo_code=promo.code,
    )


def redeem(
    db: Session,
    code: str,
    order_id: int,
    user_id: int,
    now: Optional[datetime] = None,
) -> RedemptionResult:
    """
    Apply a promo code to an order and record the usage.

    All checks are re-run against freshly read state. Usage counters and the
    order are written in one transaction through conditional updates, so two
    requests racing for the last redemption cannot both succeed. A lost race is
    retried once with a fresh read; a second loss raises PromoConflictError.

    Raises:
        OrderNotFoundError, OrderAccessDeniedError, OrderAlreadyDiscountedError,
        PromoNotFoundError, PromoInactiveError, PromoBelowMinimumError,
        PromoLimitReachedError, PromoConflictError
    """
    now = now or _utcnow()
    for attempt in range(1, REDEEM_ATTEMPTS + 1):
        try:
            with db_transaction(db):
                result = _redeem_once(db, code, order_id, user_id, now)
        except PromoConflictError:
            if attempt == REDEEM_ATTEMPTS:
                logger.warning(
                    f"Promo redemption conflict persisted after retry: {normalize_code(code)}",
                    extra={"code": normalize_code(code), "order_id": order_id, "user_id": user_id},
                )
                raise
            logger.info(f"Promo redemption lost a race, retrying: {normalize_code(code)}")
            continue

        invalidate_promo_stats()
        logger.info(
            f"Promo {result.promo_code} redeemed on order {order_id}: "
            f"{result.original_total} - {result.discount_amount} = {result.final_total}",
            extra={"code": result.promo_code, "order_id": order_id, "user_id": user_id},
        )
        return result
