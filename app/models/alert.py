"""
Alert model for price-trigger alerts
"""
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Text, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base

ALERT_STATUS_ACTIVE = "active"
ALERT_STATUS_TRIGGERED = "triggered"
ALERT_STATUS_EXPIRED = "expired"

class Alert(Base):
    """Price alert registered by an account"""
    __tablename__ = "alerts"
    __table_args__ = (
        # Slugs are unique among active rows only; a deleted alert's slug may be reused.
        Index(
            "uq_alerts_active_slug",
            "slug",
            unique=True,
            postgresql_where=text("deleted_at_unix = 0"),
            sqlite_where=text("deleted_at_unix = 0"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(100), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    body = Column(Text, nullable=False)
    pair_address = Column(String(128), nullable=False)
    alert_type = Column(String(50), nullable=False)  # price, price_eth
    alert_value = Column(String(100), nullable=False)  # threshold, decimal string
    alert_option = Column(String(20), nullable=False)  # above, below, gt, lt, eq
    expiration_time = Column(DateTime(timezone=True), nullable=False)
    alert_actions = Column(Text, nullable=False)
    alert_status = Column(String(20), nullable=False, default=ALERT_STATUS_ACTIVE)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at_unix = Column(BigInteger, nullable=False, default=0)  # 0 means active

    # Relationships
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    account = relationship("Account", back_populates="alerts")
