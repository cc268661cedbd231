"""
Promo code administration: create/edit/delete and reporting over promo codes.
"""
import csv
import io
import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import delete, update, select, or_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.cache import cache_get, cache_set, promo_stats_cache_key, invalidate_promo_stats
from app.core.config import settings
from app.core.db_transaction import db_transaction
from app.core.exceptions import InvalidPromoLimitError, PromoCodeExistsError, PromoInUseError
from app.core.validators import (
    normalize_code,
    as_utc,
    validate_promo_window,
    ensure_code_available,
)
from app.models.order import Order
from app.models.promo_code import PromoCode, PromoCodeUsage, DiscountTypeEnum
from app.schemas.promo_code import PromoCodeCreate, PromoCodeUpdate
from app.core.logging_config import get_logger

logger = get_logger("promo_admin_service")

SORTABLE_FIELDS = {
    "created_at": PromoCode.created_at,
    "code": PromoCode.code,
    "used_count": PromoCode.used_count,
    "start_date": PromoCode.start_date,
    "end_date": PromoCode.end_date,
    "discount_value": PromoCode.discount_value,
}

# Fields an update may explicitly clear; None for any other field means "leave as is"
CLEARABLE_FIELDS = {"description", "max_discount", "usage_limit"}
LIMIT_FIELDS = ("usage_limit", "per_user_limit")

EXPORT_FIELDS = [
    "code",
    "description",
    "discount_type",
    "discount_value",
    "min_order_amount",
    "max_discount",
    "start_date",
    "end_date",
    "usage_limit",
    "used_count",
    "is_active",
    "created_at",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_promo_code(db: Session, data: PromoCodeCreate) -> PromoCode:
    code = normalize_code(data.code)
    validate_promo_window(data.start_date, data.end_date)
    promo = PromoCode(
        code=code,
        description=data.description,
        discount_type=data.discount_type,
        discount_value=data.discount_value,
        min_order_amount=data.min_order_amount,
        max_discount=data.max_discount,
        start_date=as_utc(data.start_date),
        end_date=as_utc(data.end_date),
        usage_limit=data.usage_limit,
        used_count=0,
        per_user_limit=data.per_user_limit,
        first_time_only=data.first_time_only,
        is_active=data.is_active,
    )
    try:
        with db_transaction(db):
            ensure_code_available(db, code)
            db.add(promo)
    except IntegrityError:
        # Lost a race with another create of the same code
        raise PromoCodeExistsError(f"Promo code '{code}' already exists.", code=code)
    db.refresh(promo)
    invalidate_promo_stats()
    logger.info(f"Promo code created: {promo.code}", extra={"promo_id": promo.id, "code": promo.code})
    return promo


def _limit_guards(limit_values: dict) -> list:
    """WHERE clauses keeping new limits at or above the usage already recorded."""
    guards = []
    usage_limit = limit_values.get("usage_limit")
    if usage_limit is not None:
        guards.append(PromoCode.used_count <= usage_limit)
    per_user_limit = limit_values.get("per_user_limit")
    if per_user_limit is not None:
        guards.append(
            ~select(PromoCodeUsage.id)
            .where(
                PromoCodeUsage.promo_code_id == PromoCode.id,
                PromoCodeUsage.count > per_user_limit,
            )
            .exists()
        )
    return guards


def _raise_limit_violation(db: Session, promo_id: int, code: str, limit_values: dict) -> None:
    used_count = db.query(PromoCode.used_count).filter(PromoCode.id == promo_id).scalar()
    usage_limit = limit_values.get("usage_limit")
    if usage_limit is not None and used_count > usage_limit:
        raise InvalidPromoLimitError(code=code, usage_limit=usage_limit, used_count=used_count)

    max_user_count = (
        db.query(func.max(PromoCodeUsage.count))
        .filter(PromoCodeUsage.promo_code_id == promo_id)
        .scalar()
    )
    raise InvalidPromoLimitError(
        "Per-user limit cannot be lower than a user's existing usage of the code",
        code=code,
        per_user_limit=limit_values.get("per_user_limit"),
        max_user_count=max_user_count,
    )


def update_promo_code(db: Session, promo: PromoCode, data: PromoCodeUpdate) -> PromoCode:
    update_data = data.model_dump(exclude_unset=True)
    update_data = {
        field: value for field, value in update_data.items()
        if value is not None or field in CLEARABLE_FIELDS
    }
    updated_fields = sorted(update_data)

    if "code" in update_data:
        update_data["code"] = normalize_code(update_data["code"])
    for field in ("start_date", "end_date"):
        if field in update_data:
            update_data[field] = as_utc(update_data[field])

    validate_promo_window(
        update_data.get("start_date", promo.start_date),
        update_data.get("end_date", promo.end_date),
    )
    # Limits are written by a conditional UPDATE so concurrent redemptions cannot slip past them
    limit_values = {field: update_data.pop(field) for field in LIMIT_FIELDS if field in update_data}

    promo_id, current_code = promo.id, promo.code
    try:
        with db_transaction(db):
            if "code" in update_data and update_data["code"] != current_code:
                ensure_code_available(db, update_data["code"], exclude_id=promo_id)
            for field, value in update_data.items():
                setattr(promo, field, value)
            if limit_values:
                stmt = (
                    update(PromoCode)
                    .where(PromoCode.id == promo_id, *_limit_guards(limit_values))
                    .values(**limit_values, updated_at=func.now())
                    .execution_options(synchronize_session=False)
                )
                if db.execute(stmt).rowcount != 1:
                    _raise_limit_violation(db, promo_id, current_code, limit_values)
    except IntegrityError:
        code = update_data.get("code", current_code)
        raise PromoCodeExistsError(f"Promo code '{code}' already exists.", code=code)
    db.refresh(promo)
    invalidate_promo_stats()
    logger.info(
        f"Promo code updated: {promo.code}",
        extra={"promo_id": promo.id, "fields": updated_fields},
    )
    return promo


def toggle_promo_code(db: Session, promo: PromoCode) -> PromoCode:
    with db_transaction(db):
        promo.is_active = not promo.is_active
    db.refresh(promo)
    invalidate_promo_stats()
    logger.info(f"Promo code {promo.code} {'activated' if promo.is_active else 'deactivated'}")
    return promo


def delete_promo_code(db: Session, promo: PromoCode) -> None:
    """
    Delete a promo code that has never been redeemed.

    Raises:
        PromoInUseError: If the code has been used; its usage history is kept
    """
    code = promo.code
    with db_transaction(db):
        # Conditional so a redemption committed after the caller's read still blocks the delete
        result = db.execute(
            delete(PromoCode)
            .where(PromoCode.id == promo.id, PromoCode.used_count == 0)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise PromoInUseError(code=code)
    db.expunge(promo)
    invalidate_promo_stats()
    logger.info(f"Promo code deleted: {code}")


def bulk_delete_promo_codes(db: Session, ids: List[int]) -> int:
    """
    Delete several unused promo codes at once. Nothing is deleted if any is used.

    Raises:
        PromoInUseError: Lists the used codes in ``context["used_codes"]``
    """
    with db_transaction(db):
        used = db.query(PromoCode.code).filter(
            PromoCode.id.in_(ids),
            PromoCode.used_count > 0,
        ).all()
        if used:
            used_codes = [row[0] for row in used]
            raise PromoInUseError(
                f"{len(used_codes)} promo codes have been used and cannot be deleted",
                used_codes=used_codes,
            )
        result = db.execute(
            delete(PromoCode)
            .where(PromoCode.id.in_(ids), PromoCode.used_count == 0)
            .execution_options(synchronize_session=False)
        )
        deleted = result.rowcount
    invalidate_promo_stats()
    logger.info(f"Bulk deleted {deleted} promo codes", extra={"ids": ids})
    return deleted


def bulk_update_status(db: Session, ids: List[int], is_active: bool) -> int:
    with db_transaction(db):
        result = db.execute(
            update(PromoCode)
            .where(PromoCode.id.in_(ids))
            .values(is_active=is_active, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        modified = result.rowcount
    invalidate_promo_stats()
    logger.info(
        f"Bulk {'activated' if is_active else 'deactivated'} {modified} promo codes",
        extra={"ids": ids},
    )
    return modified


def list_promo_codes(
    db: Session,
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    status: Optional[str] = None,
    discount_type: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    now: Optional[datetime] = None,
) -> Tuple[List[PromoCode], int]:
    now = now or _utcnow()
    query = db.query(PromoCode)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(PromoCode.code.ilike(pattern), PromoCode.description.ilike(pattern)))

    if status == "active":
        query = query.filter(
            PromoCode.is_active == True,
            PromoCode.start_date <= now,
            PromoCode.end_date >= now,
        )
    elif status == "inactive":
        query = query.filter(PromoCode.is_active == False)
    elif status == "expired":
        query = query.filter(PromoCode.end_date < now)
    elif status == "upcoming":
        query = query.filter(PromoCode.start_date > now)

    if discount_type and discount_type != "all":
        query = query.filter(PromoCode.discount_type == DiscountTypeEnum(discount_type))

    total = query.count()

    column = SORTABLE_FIELDS.get(sort_by, PromoCode.created_at)
    ordering = column.asc() if sort_order == "asc" else column.desc()
    items = (
        query.order_by(ordering, PromoCode.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


def list_valid_promo_codes(db: Session, now: Optional[datetime] = None) -> List[PromoCode]:
    """Codes a customer could use right now: active, in window and not exhausted."""
    now = now or _utcnow()
    return db.query(PromoCode).filter(
        PromoCode.is_active == True,
        PromoCode.start_date <= now,
        PromoCode.end_date >= now,
        or_(PromoCode.usage_limit.is_(None), PromoCode.used_count < PromoCode.usage_limit),
    ).order_by(PromoCode.end_date.asc()).all()


def get_promo_stats(db: Session, now: Optional[datetime] = None, top_limit: Optional[int] = None) -> dict:
    top_limit = top_limit or settings.PROMO_TOP_LIMIT
    cache_key = promo_stats_cache_key(top_limit)
    cached = cache_get(cache_key)
    if cached is not None:
        return cached

    now = now or _utcnow()
    total = db.query(func.count(PromoCode.id)).scalar() or 0
    active = db.query(func.count(PromoCode.id)).filter(
        PromoCode.is_active == True,
        PromoCode.start_date <= now,
        PromoCode.end_date >= now,
    ).scalar() or 0
    expired = db.query(func.count(PromoCode.id)).filter(PromoCode.end_date < now).scalar() or 0
    upcoming = db.query(func.count(PromoCode.id)).filter(PromoCode.start_date > now).scalar() or 0
    total_usage = db.query(func.coalesce(func.sum(PromoCode.used_count), 0)).scalar() or 0
    total_discount = db.query(func.coalesce(func.sum(Order.discount_amount), 0)).filter(
        Order.discount_amount > 0
    ).scalar() or 0

    top = db.query(PromoCode).order_by(PromoCode.used_count.desc(), PromoCode.id.asc()).limit(top_limit).all()

    stats = {
        "overview": {
            "total": total,
            "active": active,
            "expired": expired,
            "upcoming": upcoming,
            "total_usage": int(total_usage),
            "total_discount": Decimal(str(total_discount)),
        },
        "top_promos": [
            {
                "code": p.code,
                "used_count": p.used_count,
                "discount_type": DiscountTypeEnum(p.discount_type).value,
                "discount_value": p.discount_value,
            }
            for p in top
        ],
    }
    cache_set(cache_key, stats, ttl_seconds=settings.PROMO_STATS_CACHE_TTL)
    return stats


def _export_value(value):
    if value is None:
        return ""
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, DiscountTypeEnum):
        return value.value
    return value


def export_promo_codes_csv(db: Session) -> str:
    promos = db.query(PromoCode).order_by(PromoCode.created_at.asc(), PromoCode.id.asc()).all()
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(EXPORT_FIELDS)
    for promo in promos:
        writer.writerow([_export_value(getattr(promo, field)) for field in EXPORT_FIELDS])
    return buffer.getvalue()
