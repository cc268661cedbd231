"""
Promo code administration. Every route requires the X-Admin-API-Key header.
"""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Header, Query, Response, status
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.core.database import get_db
from app.models.promo_code import PromoCode
from app.schemas.promo_code import (
    PromoCodeCreate,
    PromoCodeUpdate,
    PromoCodeResponse,
    PromoCodeDetailResponse,
    PromoCodeListResponse,
    Pagination,
    PromoBulkDeleteRequest,
    PromoBulkStatusRequest,
    PromoBulkResponse,
    PromoStatsResponse,
)
from app.services import promo_admin_service
from app.core.logging_config import get_logger

logger = get_logger("admin_promo_codes")


def require_admin_api_key(x_admin_api_key: str | None = Header(None, alias="X-Admin-API-Key")) -> None:
    if not settings.ADMIN_API_KEY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API key is not configured. Set ADMIN_API_KEY in environment.",
        )
    if x_admin_api_key != settings.ADMIN_API_KEY:
        logger.warning("Rejected admin request with invalid or missing X-Admin-API-Key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing X-Admin-API-Key header.",
        )


router = APIRouter(dependencies=[Depends(require_admin_api_key)])


def get_promo_or_404(db: Session, promo_id: int, with_usage: bool = False) -> PromoCode:
    query = db.query(PromoCode).filter(PromoCode.id == promo_id)
    if with_usage:
        query = query.options(selectinload(PromoCode.user_usage))
    promo = query.first()
    if not promo:
        raise HTTPException(status_code=404, detail="Promo code not found")
    return promo


# Fixed paths first so they are not captured by /{promo_id}

@router.get("/stats", response_model=PromoStatsResponse)
def get_promo_code_stats(db: Session = Depends(get_db)):
    """Counts by state, total redemptions and discount given, most used codes."""
    return promo_admin_service.get_promo_stats(db)


@router.get("/export")
def export_promo_codes(db: Session = Depends(get_db)):
    """Download every promo code as CSV."""
    content = promo_admin_service.export_promo_codes_csv(db)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=promo-codes.csv"},
    )


@router.post("/bulk-delete", response_model=PromoBulkResponse)
def bulk_delete_promo_codes(body: PromoBulkDeleteRequest, db: Session = Depends(get_db)):
    """Delete several unused promo codes. Refused as a whole if any of them was used."""
    deleted = promo_admin_service.bulk_delete_promo_codes(db, body.ids)
    return PromoBulkResponse(message=f"{deleted} promo codes deleted successfully", affected=deleted)


@router.post("/bulk-status", response_model=PromoBulkResponse)
def bulk_update_promo_status(body: PromoBulkStatusRequest, db: Session = Depends(get_db)):
    modified = promo_admin_service.bulk_update_status(db, body.ids, body.is_active)
    state = "activated" if body.is_active else "deactivated"
    return PromoBulkResponse(message=f"{modified} promo codes {state} successfully", affected=modified)


@router.post("/", response_model=PromoCodeResponse, status_code=201)
def create_promo_code(body: PromoCodeCreate, db: Session = Depends(get_db)):
    """
    Create a promo code.

    Example body (percentage):
      { "code": "SAVE20", "discount_type": "percentage", "discount_value": 20, "max_discount": 30,
        "start_date": "2026-01-01T00:00:00Z", "end_date": "2026-12-31T23:59:59Z", "usage_limit": 100 }
    """
    return promo_admin_service.create_promo_code(db, body)


@router.get("/", response_model=PromoCodeListResponse)
def list_promo_codes(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status", pattern="^(all|active|inactive|expired|upcoming)$"),
    discount_type: Optional[str] = Query(None, pattern="^(all|percentage|fixed)$"),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
):
    """List promo codes with search, state filter, sorting and pagination."""
    items, total = promo_admin_service.list_promo_codes(
        db,
        page=page,
        limit=limit,
        search=search,
        status=status_filter,
        discount_type=discount_type,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return PromoCodeListResponse(
        data=[PromoCodeResponse.model_validate(p) for p in items],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            pages=promo_admin_service.page_count(total, limit),
        ),
    )


@router.get("/{promo_id}", response_model=PromoCodeDetailResponse)
def get_promo_code(promo_id: int, db: Session = Depends(get_db)):
    """Get a promo code with its per-user usage."""
    return get_promo_or_404(db, promo_id, with_usage=True)


@router.put("/{promo_id}", response_model=PromoCodeResponse)
def update_promo_code(promo_id: int, body: PromoCodeUpdate, db: Session = Depends(get_db)):
    promo = get_promo_or_404(db, promo_id)
    return promo_admin_service.update_promo_code(db, promo, body)


@router.patch("/{promo_id}/toggle", response_model=PromoCodeResponse)
def toggle_promo_code(promo_id: int, db: Session = Depends(get_db)):
    """Flip is_active."""
    promo = get_promo_or_404(db, promo_id)
    return promo_admin_service.toggle_promo_code(db, promo)


@router.delete("/{promo_id}")
def delete_promo_code(promo_id: int, db: Session = Depends(get_db)):
    """Delete a promo code. Codes that have been used cannot be deleted."""
    promo = get_promo_or_404(db, promo_id)
    promo_admin_service.delete_promo_code(db, promo)
    return {"message": "Promo code deleted successfully"}
