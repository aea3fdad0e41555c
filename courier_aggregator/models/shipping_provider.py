"""
Shipping provider registry model

One row per courier account. config holds the provider-specific credential
blob (client id/secret for Pathao, API token for RedX) and is handed to the
adapter untouched.
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, Index

from courier_aggregator.core.database import Base


class CourierCode(str, enum.Enum):
    """
    Supported couriers.

    Adding a courier means adding a member here and one adapter module
    registered under it.
    """
    PATHAO = "pathao"
    REDX = "redx"


class ShippingProvider(Base):
    """Provider base URL and credentials, looked up by name."""
    __tablename__ = "shipping_providers"
    __table_args__ = (
        Index("ix_shipping_providers_name", "name", unique=True),
        Index("ix_shipping_providers_active", "is_active"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    base_url = Column(String(255), nullable=False)

    # {"client_id": ..., "client_secret": ..., "username": ..., "password": ...}
    # or {"token": ...}
    config = Column(JSON, default=dict, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self):
        return f"<ShippingProvider {self.name} active={self.is_active}>"
