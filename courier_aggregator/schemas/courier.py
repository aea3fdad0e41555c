"""
Courier domain schemas

Shared shapes every adapter translates into. Provider-native field names
never appear here; identifiers an adapter needs for follow-up calls ride
along in `metadata`.

Units:
- PackageDescriptor.item_weight is kilograms
- OrderDescriptor.parcel_weight is grams
"""
from typing import Optional, List, Dict, Any, Literal
from pydantic import BaseModel, ConfigDict, Field, model_validator


# ==================== Request Schemas ====================


class PackageDescriptor(BaseModel):
    """Package to price. Each adapter reads only the fields it needs."""
    model_config = ConfigDict(frozen=True)

    item_weight: float = Field(0.5, gt=0, description="Weight in kg")
    length: Optional[float] = Field(None, gt=0)
    width: Optional[float] = Field(None, gt=0)
    height: Optional[float] = Field(None, gt=0)
    destination: Optional[str] = None

    # Pathao
    recipient_city: Optional[int] = None
    recipient_zone: Optional[int] = None
    item_type: Optional[int] = None
    delivery_type: Optional[int] = None

    # RedX
    delivery_area_id: Optional[int] = None
    pickup_area_id: Optional[int] = None

    cash_collection_amount: float = Field(0, ge=0)


class OrderDescriptor(BaseModel):
    """Shipping order to create."""
    model_config = ConfigDict(frozen=True)

    recipient_name: str
    recipient_phone: str
    recipient_address: str
    cash_collection_amount: float = Field(0, ge=0)
    parcel_weight: float = Field(..., gt=0, description="Weight in grams")
    merchant_invoice_id: Optional[str] = None

    delivery_area: Optional[str] = None
    delivery_area_id: Optional[int] = None
    recipient_city: Optional[int] = None
    recipient_zone: Optional[int] = None
    recipient_area: Optional[int] = None

    instruction: Optional[str] = None
    item_description: Optional[str] = None
    pickup_store_id: Optional[int] = None


class LocationFilter(BaseModel):
    """Filter for zone/area lookups. Required fields depend on the provider."""
    model_config = ConfigDict(frozen=True)

    city_id: Optional[int] = None
    zone_id: Optional[int] = None
    post_code: Optional[int] = None
    district_name: Optional[str] = None


class PickupStoreCreate(BaseModel):
    """New pickup store / merchant store."""
    name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    phone: str
    area_id: Optional[int] = None
    city_id: Optional[int] = None
    zone_id: Optional[int] = None
    contact_name: Optional[str] = None
    secondary_contact: Optional[str] = None


# ==================== Response Schemas ====================


class PriceQuote(BaseModel):
    """Delivery quote. final_price defaults to delivery + COD when the provider omits it."""
    model_config = ConfigDict(frozen=True)

    delivery_charge: float = 0
    cod_charge: float = 0
    final_price: Optional[float] = None

    @model_validator(mode="after")
    def derive_final_price(self):
        if self.final_price is None:
            object.__setattr__(self, "final_price", self.delivery_charge + self.cod_charge)
        return self


class CreateOrderResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    tracking_id: str
    consignment_id: Optional[str] = None
    merchant_order_id: Optional[str] = None
    order_status: Optional[str] = None
    delivery_fee: Optional[float] = None


class TrackingUpdate(BaseModel):
    model_config = ConfigDict(frozen=True)

    message_en: str = ""
    message_bn: str = ""
    time: Optional[str] = None


class TrackingResult(BaseModel):
    """Tracking snapshot. updates are oldest first; status is the latest one."""
    model_config = ConfigDict(frozen=True)

    status: str
    updates: List[TrackingUpdate] = Field(default_factory=list)


class LocationNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    parent_id: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class City(LocationNode):
    pass


class Zone(LocationNode):
    pass


class Area(LocationNode):
    home_delivery_available: bool = True
    pickup_available: bool = True


class BalanceInfo(BaseModel):
    """Account balance. Zero placeholder when the provider exposes none."""
    model_config = ConfigDict(frozen=True)

    current_balance: float = 0
    currency: Optional[str] = None


class StoreDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    name: str
    address: Optional[str] = None
    area_name: Optional[str] = None
    area_id: Optional[int] = None
    phone: Optional[str] = None
    created_at: Optional[str] = None
    is_active: Optional[bool] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class BatchTrackingResult(BaseModel):
    """One record per requested tracking id."""
    tracking_id: str
    status: Literal["success", "error"]
    data: Optional[TrackingResult] = None
    error: Optional[str] = None


class PriceComparison(BaseModel):
    provider: str
    price: PriceQuote
    error: Optional[str] = None
