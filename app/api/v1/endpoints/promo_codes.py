"""
Promo codes for customers: preview a discount at checkout, list usable codes,
and apply a code to an order.
"""
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.models.user import User
from app.api.v1.endpoints.auth import get_current_user
from app.schemas.promo_code import (
    PromoValidateRequest,
    PromoValidateResponse,
    PromoApplyRequest,
    PromoApplyResponse,
    PromoPublicResponse,
)
from app.services import promo_service, promo_admin_service

router = APIRouter()


@router.post("/validate", response_model=PromoValidateResponse)
def validate_promo_code(
    body: PromoValidateRequest,
    db: Session = Depends(get_db),
):
    """
    Preview the discount a code gives on an order amount. Nothing is recorded;
    the code is checked again when it is applied to the order.
    """
    evaluation = promo_service.validate_for_order(db, body.code, body.order_amount, body.user_id)
    promo = evaluation.promo
    return PromoValidateResponse(
        valid=True,
        code=promo.code,
        description=promo.description,
        discount_type=promo.discount_type,
        discount_value=promo.discount_value,
        discount_amount=evaluation.discount_amount,
        max_discount=promo.max_discount,
        min_order_amount=promo.min_order_amount,
    )


@router.get("/valid", response_model=List[PromoPublicResponse])
def list_valid_promo_codes(db: Session = Depends(get_db)):
    """Codes that can be used right now."""
    return promo_admin_service.list_valid_promo_codes(db)


@router.post("/apply", response_model=PromoApplyResponse)
def apply_promo_code(
    body: PromoApplyRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Apply a promo code to one of the current user's orders."""
    result = promo_service.redeem(db, body.code, body.order_id, current_user.id)
    return PromoApplyResponse(
        order_id=result.order_id,
        original_total=result.original_total,
        discount_amount=result.discount_amount,
        final_total=result.final_total,
        promo_code=result.promo_code,
    )
