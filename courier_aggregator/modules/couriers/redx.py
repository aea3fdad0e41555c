"""
RedX Courier Adapter

Static-token courier. The merchant API token from the provider config
("token", or legacy "apiKey") is sent as

    API-ACCESS-TOKEN: Bearer <token>

instead of the standard Authorization header. authenticate() only checks
that the token is present.

RedX serves one flat area list (GET /areas); cities, zones and areas are
all projections of it. Charges are calculated in grams.
"""
import logging
from typing import Any, Dict, List, Optional

from courier_aggregator.core.exceptions import (
    AuthenticationError,
    CourierValidationError,
    ProviderResponseError,
    UpstreamClientError,
)
from courier_aggregator.models.shipping_provider import CourierCode
from courier_aggregator.modules.couriers import register_courier
from courier_aggregator.modules.couriers.base import (
    BALANCE_TTL,
    CHARGE_TTL,
    CITIES_TTL,
    LOCATIONS_TTL,
    PARCEL_DETAILS_TTL,
    STORES_TTL,
    TRACKING_TTL,
    BaseCourier,
)
from courier_aggregator.schemas.courier import (
    Area,
    BalanceInfo,
    City,
    CreateOrderResult,
    LocationFilter,
    OrderDescriptor,
    PackageDescriptor,
    PickupStoreCreate,
    PriceQuote,
    StoreDescriptor,
    TrackingResult,
    TrackingUpdate,
    Zone,
)

logger = logging.getLogger(__name__)

TOKEN_HEADER = "API-ACCESS-TOKEN"
CURRENCY = "BDT"


def _area_metadata(area: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "post_code": area.get("post_code"),
        "division_name": area.get("division_name"),
        "zone_id": area.get("zone_id"),
    }


def _area_params(location_filter: Optional[LocationFilter]) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    if location_filter is None:
        return params
    if location_filter.post_code:
        params["post_code"] = location_filter.post_code
    if location_filter.district_name:
        params["district_name"] = location_filter.district_name
    return params


def _to_store(store: Dict[str, Any]) -> StoreDescriptor:
    return StoreDescriptor(
        id=store.get("id"),
        name=store.get("name") or "",
        address=store.get("address"),
        area_name=store.get("area_name"),
        area_id=store.get("area_id"),
        phone=store.get("phone"),
        created_at=store.get("created_at"),
    )


@register_courier(CourierCode.REDX)
class RedXCourier(BaseCourier):
    """RedX open API adapter."""

    @property
    def courier_code(self) -> CourierCode:
        return CourierCode.REDX

    async def authenticate(self) -> None:
        token = self.credentials.get("token") or self.credentials.get("apiKey")
        if not token:
            raise AuthenticationError("RedX requires a token in configuration", provider=self.name)
        self.token = token

    def auth_headers(self) -> Dict[str, str]:
        return {TOKEN_HEADER: f"Bearer {self.token}"}

    async def _fetch_areas(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        response = await self.make_request("GET", "/areas", params=params or None)
        areas = (response or {}).get("areas")
        if not isinstance(areas, list):
            logger.warning(f"[COURIER] redx: /areas returned no areas for {params}")
            return []
        return areas

    # =========================================================================
    # Locations
    # =========================================================================

    async def get_cities(self) -> List[City]:
        async def fetch():
            return [
                City(id=a["id"], name=a["name"], metadata=_area_metadata(a))
                for a in await self._fetch_areas({})
            ]

        return await self._cached("get_cities", None, CITIES_TTL, fetch, List[City])

    async def get_zones(self, location_filter: Optional[LocationFilter] = None) -> List[Zone]:
        params = _area_params(location_filter)
        if not params:
            raise CourierValidationError("post_code or district_name is required for RedX zones")

        async def fetch():
            return [
                Zone(id=a["id"], name=a["name"], parent_id=a.get("zone_id"), metadata=_area_metadata(a))
                for a in await self._fetch_areas(params)
            ]

        return await self._cached("get_zones", params, LOCATIONS_TTL, fetch, List[Zone])

    async def get_areas(self, location_filter: Optional[LocationFilter] = None) -> List[Area]:
        if location_filter is not None and location_filter.zone_id:
            logger.debug("[COURIER] redx: zone_id filter is not supported, ignoring it")

        params = _area_params(location_filter)
        # Unfiltered list is the same data as get_cities
        ttl = LOCATIONS_TTL if params else CITIES_TTL

        async def fetch():
            return [
                Area(id=a["id"], name=a["name"], parent_id=a.get("zone_id"), metadata=_area_metadata(a))
                for a in await self._fetch_areas(params)
            ]

        return await self._cached("get_areas", params, ttl, fetch, List[Area])

    # =========================================================================
    # Pricing and orders
    # =========================================================================

    async def calculate_charge(self, package: PackageDescriptor) -> PriceQuote:
        missing = [f for f in ("delivery_area_id", "pickup_area_id") if not getattr(package, f)]
        if missing:
            raise CourierValidationError(
                "delivery_area_id and pickup_area_id are required for RedX",
                errors=[f"{f} is required" for f in missing],
            )

        async def fetch():
            params = {
                "delivery_area_id": package.delivery_area_id,
                "pickup_area_id": package.pickup_area_id,
                "cash_collection_amount": package.cash_collection_amount,
                "weight": package.item_weight * 1000,
            }
            response = await self.make_request("GET", "/charge/charge_calculator", params=params)
            return PriceQuote(
                delivery_charge=response.get("deliveryCharge") or 0,
                cod_charge=response.get("codCharge") or 0,
            )

        return await self._cached(
            "calculate_charge",
            package.model_dump(exclude_none=True),
            CHARGE_TTL,
            fetch,
            PriceQuote,
        )

    async def create_order(self, order: OrderDescriptor) -> CreateOrderResult:
        order = self._prepare_order(order)
        if not order.delivery_area_id:
            raise CourierValidationError("delivery_area_id is required for RedX orders")

        payload: Dict[str, Any] = {
            "customer_name": order.recipient_name,
            "customer_phone": order.recipient_phone,
            "delivery_area": order.delivery_area,
            "delivery_area_id": order.delivery_area_id,
            "customer_address": order.recipient_address,
            "merchant_invoice_id": order.merchant_invoice_id,
            "cash_collection_amount": str(order.cash_collection_amount),
            "parcel_weight": str(order.parcel_weight),
            "value": "0",
            "is_closed_box": "1",
        }
        if order.instruction:
            payload["instruction"] = order.instruction
        if order.pickup_store_id:
            payload["pickup_store_id"] = order.pickup_store_id
        if order.item_description:
            payload["parcel_details_json"] = [
                {
                    "name": order.item_description,
                    "category": "General",
                    "value": order.cash_collection_amount,
                }
            ]

        response = await self.make_request("POST", "/parcel", json_body=payload)
        tracking_id = (response or {}).get("tracking_id")
        if not tracking_id:
            raise ProviderResponseError("RedX did not return a tracking_id", provider=self.name, endpoint="/parcel")

        logger.info(f"[COURIER] redx: Created parcel {tracking_id}")
        await self._invalidate_after_order()

        # RedX uses the tracking id as consignment id
        return CreateOrderResult(
            tracking_id=str(tracking_id),
            consignment_id=str(tracking_id),
            merchant_order_id=order.merchant_invoice_id,
        )

    async def track_order(self, tracking_id: str) -> TrackingResult:
        async def fetch():
            response = await self.make_request("GET", f"/parcel/track/{tracking_id}")
            updates = [
                TrackingUpdate(
                    message_en=u.get("message_en") or "",
                    message_bn=u.get("message_bn") or "",
                    time=u.get("time"),
                )
                for u in (response or {}).get("tracking") or []
            ]
            status = updates[-1].message_en if updates else "unknown"
            return TrackingResult(status=status, updates=updates)

        return await self._cached("track_order", {"tracking_id": tracking_id}, TRACKING_TTL, fetch, TrackingResult)

    async def get_parcel_details(self, tracking_id: str) -> Dict[str, Any]:
        async def fetch():
            response = await self.make_request("GET", f"/parcel/info/{tracking_id}")
            return (response or {}).get("parcel") or {}

        return await self._cached(
            "get_parcel_details", {"tracking_id": tracking_id}, PARCEL_DETAILS_TTL, fetch, Dict[str, Any]
        )

    async def update_parcel(self, tracking_id: str, update_details: Dict[str, Any]) -> bool:
        """
        Patch a parcel.

        Args:
            tracking_id: RedX tracking id
            update_details: {"property_name": ..., "new_value": ..., "reason": ...}
        """
        response = await self.make_request(
            "PATCH",
            "/parcels",
            json_body={
                "entity_type": "parcel-tracking-id",
                "entity_id": tracking_id,
                "update_details": update_details,
            },
        )
        logger.info(f"[COURIER] redx: Updated parcel {tracking_id}: {(response or {}).get('message')}")
        await self._clear_methods("track_order", "get_parcel_details")
        return bool((response or {}).get("success"))

    async def cancel_order(self, tracking_id: str, reason: str = "Cancelled by merchant") -> bool:
        return await self.update_parcel(
            tracking_id,
            {"property_name": "status", "new_value": "cancelled", "reason": reason},
        )

    # =========================================================================
    # Account
    # =========================================================================

    async def get_balance(self) -> BalanceInfo:
        async def fetch():
            try:
                response = await self.make_request("GET", "/account/balance")
            except UpstreamClientError as e:
                # Rejected outright: hold the placeholder for the balance TTL
                logger.warning(f"[COURIER] redx: Balance rejected, caching placeholder: {e}")
                return BalanceInfo(current_balance=0, currency=CURRENCY)
            return BalanceInfo(current_balance=(response or {}).get("balance") or 0, currency=CURRENCY)

        try:
            return await self._cached("get_balance", None, BALANCE_TTL, fetch, BalanceInfo)
        except Exception as e:
            logger.warning(f"[COURIER] redx: Balance unavailable, returning placeholder: {e}")
            return BalanceInfo(current_balance=0, currency=CURRENCY)

    async def get_stores(self) -> List[StoreDescriptor]:
        async def fetch():
            try:
                response = await self.make_request("GET", "/pickup/stores")
            except UpstreamClientError as e:
                logger.warning(f"[COURIER] redx: Store lookup rejected, caching empty list: {e}")
                return []
            stores = (response or {}).get("pickup_stores")
            if not isinstance(stores, list):
                return []
            return [_to_store(s) for s in stores]

        try:
            return await self._cached("get_stores", None, STORES_TTL, fetch, List[StoreDescriptor])
        except Exception as e:
            logger.warning(f"[COURIER] redx: Store lookup failed, returning empty list: {e}")
            return []

    async def get_pickup_store_details(self, store_id: int) -> Optional[StoreDescriptor]:
        async def fetch():
            response = await self.make_request("GET", f"/pickup/store/info/{store_id}")
            store = (response or {}).get("pickup_store")
            return _to_store(store) if store else None

        try:
            return await self._cached(
                "get_pickup_store_details", {"store_id": store_id}, STORES_TTL, fetch, Optional[StoreDescriptor]
            )
        except Exception as e:
            logger.warning(f"[COURIER] redx: Store {store_id} lookup failed: {e}")
            return None

    async def create_pickup_store(self, store: PickupStoreCreate) -> StoreDescriptor:
        if not store.area_id:
            raise CourierValidationError("area_id is required for RedX pickup stores")

        response = await self.make_request(
            "POST",
            "/pickup/store",
            json_body={
                "name": store.name,
                "phone": store.phone,
                "address": store.address,
                "area_id": store.area_id,
            },
        )
        await self._clear_methods("get_stores")

        created = (response or {}).get("pickup_store") or response or {}
        return StoreDescriptor(
            id=created.get("id"),
            name=created.get("name") or store.name,
            address=created.get("address") or store.address,
            area_name=created.get("area_name"),
            area_id=created.get("area_id") or store.area_id,
            phone=created.get("phone") or store.phone,
            created_at=created.get("created_at"),
        )
