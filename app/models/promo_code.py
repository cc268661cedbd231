from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, ForeignKey, Numeric, UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from app.core.database import Base


class DiscountTypeEnum(str, enum.Enum):
    PERCENTAGE = "percentage"   # value is a percent of the order amount
    FIXED = "fixed"             # value is a flat currency amount


class PromoCode(Base):
    __tablename__ = "promo_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True)  # stored upper-cased
    description = Column(String(200), nullable=True)
    discount_type = Column(
        SQLEnum(DiscountTypeEnum, values_callable=lambda x: [e.value for e in x], native_enum=False),
        nullable=False,
    )
    discount_value = Column(Numeric(12, 2), nullable=False)
    min_order_amount = Column(Numeric(12, 2), default=0, nullable=False)
    max_discount = Column(Numeric(12, 2), nullable=True)  # percentage codes only
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    usage_limit = Column(Integer, nullable=True)  # None = unlimited
    used_count = Column(Integer, default=0, nullable=False)
    per_user_limit = Column(Integer, default=1, nullable=False)
    first_time_only = Column(Boolean, default=False, nullable=False)  # single redemption across all users
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user_usage = relationship(
        "PromoCodeUsage",
        back_populates="promo_code",
        cascade="all, delete-orphan",
        order_by="PromoCodeUsage.used_at",
    )

    def usage_for(self, user_id: int):
        for usage in self.user_usage:
            if usage.user_id == user_id:
                return usage
        return None


class PromoCodeUsage(Base):
    __tablename__ = "promo_code_usages"
    __table_args__ = (
        UniqueConstraint("promo_code_id", "user_id", name="uq_promo_code_usages_promo_user"),
    )

    id = Column(Integer, primary_key=True, index=True)
    promo_code_id = Column(Integer, ForeignKey("promo_codes.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    count = Column(Integer, default=1, nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    promo_code = relationship("PromoCode", back_populates="user_usage")
    user = relationship("User", back_populates="promo_usages")
