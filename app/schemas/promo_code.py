from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from datetime import datetime
from decimal import Decimal

from app.models.promo_code import DiscountTypeEnum


def _trim_upper(v: Optional[str]) -> Optional[str]:
    return v.strip().upper() if v else v


# Customer-facing

class PromoValidateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    order_amount: Decimal = Field(..., ge=0)
    user_id: Optional[int] = None  # preview for an anonymous cart when omitted

    @field_validator("code")
    @classmethod
    def code_trim_upper(cls, v: str) -> str:
        return _trim_upper(v)


class PromoValidateResponse(BaseModel):
    valid: bool
    code: str
    description: Optional[str] = None
    discount_type: DiscountTypeEnum
    discount_value: Decimal
    discount_amount: Decimal
    max_discount: Optional[Decimal] = None
    min_order_amount: Decimal


class PromoApplyRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    order_id: int

    @field_validator("code")
    @classmethod
    def code_trim_upper(cls, v: str) -> str:
        return _trim_upper(v)


class PromoApplyResponse(BaseModel):
    order_id: int
    original_total: Decimal
    discount_amount: Decimal
    final_total: Decimal
    promo_code: str


class PromoPublicResponse(BaseModel):
    code: str
    description: Optional[str] = None
    discount_type: DiscountTypeEnum
    discount_value: Decimal
    min_order_amount: Decimal
    max_discount: Optional[Decimal] = None
    end_date: datetime

    class Config:
        from_attributes = True


# Administration

class PromoCodeCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=200)
    discount_type: DiscountTypeEnum
    discount_value: Decimal = Field(..., ge=0)
    min_order_amount: Decimal = Field(Decimal("0"), ge=0)
    max_discount: Optional[Decimal] = Field(None, ge=0)
    start_date: datetime
    end_date: datetime
    usage_limit: Optional[int] = Field(None, ge=1)
    per_user_limit: int = Field(1, ge=1)
    first_time_only: bool = False
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def code_trim_upper(cls, v: str) -> str:
        return _trim_upper(v)

    @field_validator("discount_type", mode="before")
    @classmethod
    def discount_type_lower(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class PromoCodeUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=200)
    discount_type: Optional[DiscountTypeEnum] = None
    discount_value: Optional[Decimal] = Field(None, ge=0)
    min_order_amount: Optional[Decimal] = Field(None, ge=0)
    max_discount: Optional[Decimal] = Field(None, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    usage_limit: Optional[int] = Field(None, ge=1)
    per_user_limit: Optional[int] = Field(None, ge=1)
    first_time_only: Optional[bool] = None
    is_active: Optional[bool] = None

    @field_validator("code")
    @classmethod
    def code_trim_upper(cls, v: Optional[str]) -> Optional[str]:
        return _trim_upper(v)

    @field_validator("discount_type", mode="before")
    @classmethod
    def discount_type_lower(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class PromoCodeUsageResponse(BaseModel):
    user_id: int
    count: int
    used_at: datetime

    class Config:
        from_attributes = True


class PromoCodeResponse(BaseModel):
    id: int
    code: str
    description: Optional[str]
    discount_type: DiscountTypeEnum
    discount_value: Decimal
    min_order_amount: Decimal
    max_discount: Optional[Decimal]
    start_date: datetime
    end_date: datetime
    usage_limit: Optional[int]
    used_count: int
    per_user_limit: int
    first_time_only: bool
    is_active: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class PromoCodeDetailResponse(PromoCodeResponse):
    user_usage: List[PromoCodeUsageResponse] = []


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class PromoCodeListResponse(BaseModel):
    data: List[PromoCodeResponse]
    pagination: Pagination


class PromoBulkDeleteRequest(BaseModel):
    ids: List[int] = Field(..., min_length=1)


class PromoBulkStatusRequest(BaseModel):
    ids: List[int] = Field(..., min_length=1)
    is_active: bool


class PromoBulkResponse(BaseModel):
    message: str
    affected: int


class PromoStatsOverview(BaseModel):
    total: int
    active: int
    expired: int
    upcoming: int
    total_usage: int
    total_discount: Decimal


class PromoTopItem(BaseModel):
    code: str
    used_count: int
    discount_type: DiscountTypeEnum
    discount_value: Decimal


class PromoStatsResponse(BaseModel):
    overview: PromoStatsOverview
    top_promos: List[PromoTopItem]
