from fastapi import APIRouter
from app.api.v1.endpoints import (
    promo_codes,
    admin_promo_codes,
)

api_router = APIRouter()
api_router.include_router(promo_codes.router, prefix="/promo", tags=["promo"])
api_router.include_router(admin_promo_codes.router, prefix="/admin/promo", tags=["admin-promo"])
