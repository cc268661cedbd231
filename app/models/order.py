from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base


class Order(Base):
    """
    The slice of the order ledger the promo service reads and writes back:
    ``total`` and ``user_id`` in, discount snapshot and ``final_total`` out.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    subtotal = Column(Numeric(12, 2), nullable=False)
    total = Column(Numeric(12, 2), nullable=False)

    # Snapshot of the promo at redemption time; NULL code = no discount applied
    discount_code = Column(String(50), nullable=True, index=True)
    discount_type = Column(String(32), nullable=True)
    discount_value = Column(Numeric(12, 2), nullable=True)
    discount_amount = Column(Numeric(12, 2), default=0.00, nullable=False)
    final_total = Column(Numeric(12, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="orders")
