from courier_aggregator.schemas.courier import (
    PackageDescriptor,
    OrderDescriptor,
    LocationFilter,
    PickupStoreCreate,
    PriceQuote,
    CreateOrderResult,
    TrackingUpdate,
    TrackingResult,
    LocationNode,
    City,
    Zone,
    Area,
    BalanceInfo,
    StoreDescriptor,
    BatchTrackingResult,
    PriceComparison,
)

__all__ = [
    "PackageDescriptor",
    "OrderDescriptor",
    "LocationFilter",
    "PickupStoreCreate",
    "PriceQuote",
    "CreateOrderResult",
    "TrackingUpdate",
    "TrackingResult",
    "LocationNode",
    "City",
    "Zone",
    "Area",
    "BalanceInfo",
    "StoreDescriptor",
    "BatchTrackingResult",
    "PriceComparison",
]
