"""
Pathao Courier Adapter

Token-issuing courier. authenticate() exchanges client id/secret and
merchant username/password for a bearer token at /issue-token. The token
is cached for an hour under the adapter's auth_token key, so a fresh
adapter inside that window skips the exchange.

Pathao endpoints used:
- POST /aladdin/api/v1/issue-token
- GET  /aladdin/api/v1/city-list
- GET  /aladdin/api/v1/cities/{city_id}/zone-list
- GET  /aladdin/api/v1/zones/{zone_id}/area-list
- POST /aladdin/api/v1/merchant/price-plan
- POST /aladdin/api/v1/orders
- GET  /aladdin/api/v1/orders/{consignment_id}/info
- GET  /aladdin/api/v1/stores
- POST /aladdin/api/v1/stores

Pathao has no balance endpoint; get_balance returns the zero placeholder.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from courier_aggregator.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    CourierValidationError,
    ProviderResponseError,
)
from courier_aggregator.models.shipping_provider import CourierCode
from courier_aggregator.modules.couriers import register_courier
from courier_aggregator.modules.couriers.base import (
    AUTH_TOKEN_METHOD,
    AUTH_TOKEN_TTL,
    CHARGE_TTL,
    CITIES_TTL,
    LOCATIONS_TTL,
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

API_PREFIX = "/aladdin/api/v1"
ISSUE_TOKEN_ENDPOINT = f"{API_PREFIX}/issue-token"

REQUIRED_CREDENTIALS = ("client_id", "client_secret", "username", "password")

# Pathao codes
DEFAULT_ITEM_TYPE = 2        # Parcel
DEFAULT_DELIVERY_TYPE = 48   # Normal delivery
MIN_ITEM_WEIGHT_KG = 0.5


def _data_list(response: Any) -> List[Dict[str, Any]]:
    """Unwrap Pathao's {"data": {"data": [...]}} list envelope."""
    if not isinstance(response, dict):
        return []
    data = response.get("data") or {}
    items = data.get("data") if isinstance(data, dict) else None
    return items if isinstance(items, list) else []


@register_courier(CourierCode.PATHAO)
class PathaoCourier(BaseCourier):
    """Pathao merchant API adapter."""

    @property
    def courier_code(self) -> CourierCode:
        return CourierCode.PATHAO

    @property
    def store_id(self) -> Optional[int]:
        value = self.credentials.get("store_id") or self.credentials.get("storeId")
        if value in (None, ""):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Pathao store_id must be numeric, got {value!r}",
                details={"provider": self.name},
            ) from None

    def _require_store_id(self) -> int:
        store_id = self.store_id
        if store_id is None:
            raise ConfigurationError(
                "Pathao store_id is not configured",
                details={"provider": self.name},
            )
        return store_id

    # =========================================================================
    # Authentication
    # =========================================================================

    async def authenticate(self) -> None:
        cache_key = self.get_cache_key(AUTH_TOKEN_METHOD)
        cached_token = await self.cache.get(cache_key)
        if cached_token:
            logger.info("[AUTH] pathao: Using cached token")
            self.token = cached_token
            return

        missing = [key for key in REQUIRED_CREDENTIALS if not self.credentials.get(key)]
        if missing:
            raise AuthenticationError(
                f"Pathao credentials missing: {', '.join(missing)}",
                provider=self.name,
                endpoint=ISSUE_TOKEN_ENDPOINT,
            )

        logger.info("[AUTH] pathao: Requesting new access token")
        try:
            response = await self.executor.client.post(
                self.executor.url_for(ISSUE_TOKEN_ENDPOINT),
                json={
                    "client_id": self.credentials["client_id"],
                    "client_secret": self.credentials["client_secret"],
                    "username": self.credentials["username"],
                    "password": self.credentials["password"],
                    "grant_type": "password",
                },
                headers={"Content-Type": "application/json"},
                timeout=self.auth_timeout,
            )
        except httpx.TransportError as e:
            raise AuthenticationError(
                f"Pathao authentication failed: {e!r}",
                provider=self.name,
                endpoint=ISSUE_TOKEN_ENDPOINT,
            ) from e

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}

        access_token = body.get("access_token") if isinstance(body, dict) else None
        if response.status_code >= 400 or not access_token:
            message = (body.get("message") if isinstance(body, dict) else None) or (
                response.reason_phrase if response.status_code >= 400 else "No access token received in response"
            )
            logger.error(f"[AUTH] pathao: Token request failed ({response.status_code}): {message}")
            raise AuthenticationError(
                f"Pathao authentication failed: {message}",
                provider=self.name,
                endpoint=ISSUE_TOKEN_ENDPOINT,
                details={"status_code": response.status_code},
            )

        self.token = access_token

        ttl = AUTH_TOKEN_TTL
        expires_in = body.get("expires_in")
        if isinstance(expires_in, (int, float)) and expires_in > 0:
            ttl = min(ttl, int(expires_in))
        await self.cache.set(cache_key, access_token, ttl)

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    # =========================================================================
    # Locations
    # =========================================================================

    async def get_cities(self) -> List[City]:
        async def fetch():
            response = await self.make_request("GET", f"{API_PREFIX}/city-list")
            return [
                City(id=item["city_id"], name=item["city_name"])
                for item in _data_list(response)
            ]

        return await self._cached("get_cities", None, CITIES_TTL, fetch, List[City])

    async def get_zones(self, location_filter: Optional[LocationFilter] = None) -> List[Zone]:
        if not location_filter or not location_filter.city_id:
            raise CourierValidationError("city_id is required for Pathao zones")
        city_id = location_filter.city_id

        async def fetch():
            response = await self.make_request("GET", f"{API_PREFIX}/cities/{city_id}/zone-list")
            return [
                Zone(id=item["zone_id"], name=item["zone_name"], parent_id=city_id)
                for item in _data_list(response)
            ]

        return await self._cached("get_zones", {"city_id": city_id}, LOCATIONS_TTL, fetch, List[Zone])

    async def get_areas(self, location_filter: Optional[LocationFilter] = None) -> List[Area]:
        if not location_filter or not location_filter.zone_id:
            raise CourierValidationError("zone_id is required for Pathao areas")
        zone_id = location_filter.zone_id

        async def fetch():
            response = await self.make_request("GET", f"{API_PREFIX}/zones/{zone_id}/area-list")
            return [
                Area(
                    id=item["area_id"],
                    name=item["area_name"],
                    parent_id=zone_id,
                    home_delivery_available=bool(item.get("home_delivery_available", True)),
                    pickup_available=bool(item.get("pickup_available", True)),
                )
                for item in _data_list(response)
            ]

        return await self._cached("get_areas", {"zone_id": zone_id}, LOCATIONS_TTL, fetch, List[Area])

    # =========================================================================
    # Pricing and orders
    # =========================================================================

    async def calculate_charge(self, package: PackageDescriptor) -> PriceQuote:
        missing = [f for f in ("recipient_city", "recipient_zone") if not getattr(package, f)]
        if missing:
            raise CourierValidationError(
                "recipient_city and recipient_zone are required for Pathao",
                errors=[f"{f} is required" for f in missing],
            )

        async def fetch():
            payload = {
                "store_id": self.store_id,
                "item_type": package.item_type or DEFAULT_ITEM_TYPE,
                "delivery_type": package.delivery_type or DEFAULT_DELIVERY_TYPE,
                "item_weight": max(MIN_ITEM_WEIGHT_KG, package.item_weight),
                "recipient_city": package.recipient_city,
                "recipient_zone": package.recipient_zone,
            }
            endpoint = f"{API_PREFIX}/merchant/price-plan"
            response = await self.make_request("POST", endpoint, json_body=payload)
            return self._parse_price_plan(response, endpoint)

        return await self._cached(
            "calculate_charge",
            package.model_dump(exclude_none=True),
            CHARGE_TTL,
            fetch,
            PriceQuote,
        )

    def _parse_price_plan(self, response: Any, endpoint: str) -> PriceQuote:
        """
        Price plan comes back either wrapped or flat:
            {"code": 200, "message": "...", "data": {"price": 100, ...}}
            {"price": 100, "cod_percentage": 0.01, ...}
        """
        if not isinstance(response, dict):
            raise ProviderResponseError("Invalid price plan response from Pathao", provider=self.name, endpoint=endpoint)

        code = response.get("code")
        if code is not None and code != 200:
            raise ProviderResponseError(
                response.get("message") or f"Pathao price plan error: {code}",
                status_code=code if isinstance(code, int) else None,
                provider=self.name,
                endpoint=endpoint,
            )

        if isinstance(response.get("data"), dict):
            price_data = response["data"]
        elif "price" in response:
            price_data = response
        else:
            raise ProviderResponseError("Invalid price plan response from Pathao", provider=self.name, endpoint=endpoint)

        delivery_charge = price_data.get("price") or 0
        cod_charge = (price_data.get("cod_percentage") or 0) * delivery_charge
        return PriceQuote(
            delivery_charge=delivery_charge,
            cod_charge=cod_charge,
            final_price=price_data.get("final_price") or None,
        )

    async def create_order(self, order: OrderDescriptor) -> CreateOrderResult:
        order = self._prepare_order(order)
        payload = {
            "store_id": self._require_store_id(),
            "merchant_order_id": order.merchant_invoice_id,
            "recipient_name": order.recipient_name,
            "recipient_phone": order.recipient_phone,
            "recipient_address": order.recipient_address,
            "delivery_type": DEFAULT_DELIVERY_TYPE,
            "item_type": DEFAULT_ITEM_TYPE,
            "item_quantity": 1,
            "item_weight": order.parcel_weight / 1000,
            "amount_to_collect": order.cash_collection_amount,
            "item_description": order.item_description,
        }
        for field_name in ("recipient_city", "recipient_zone", "recipient_area"):
            value = getattr(order, field_name)
            if value:
                payload[field_name] = value
        if order.instruction:
            payload["special_instruction"] = order.instruction

        response = await self.make_request("POST", f"{API_PREFIX}/orders", json_body=payload)
        data = (response or {}).get("data") or {}
        consignment_id = data.get("consignment_id")
        if not consignment_id:
            raise ProviderResponseError(
                "Pathao did not return a consignment_id",
                provider=self.name,
                endpoint=f"{API_PREFIX}/orders",
            )

        logger.info(f"[COURIER] pathao: Created order {consignment_id}")
        await self._invalidate_after_order()

        return CreateOrderResult(
            tracking_id=str(consignment_id),
            consignment_id=str(consignment_id),
            merchant_order_id=data.get("merchant_order_id"),
            order_status=data.get("order_status"),
            delivery_fee=data.get("delivery_fee"),
        )

    async def track_order(self, tracking_id: str) -> TrackingResult:
        async def fetch():
            response = await self.make_request("GET", f"{API_PREFIX}/orders/{tracking_id}/info")
            data = (response or {}).get("data") or {}
            status = data.get("order_status") or "unknown"

            details = data.get("status_details")
            if details:
                updates = [
                    TrackingUpdate(message_en=d.get("status") or "", time=d.get("date_time"))
                    for d in details
                ]
            else:
                updates = [TrackingUpdate(message_en=status, time=data.get("updated_at"))]

            return TrackingResult(status=status, updates=updates)

        return await self._cached("track_order", {"tracking_id": tracking_id}, TRACKING_TTL, fetch, TrackingResult)

    # =========================================================================
    # Account
    # =========================================================================

    async def get_balance(self) -> BalanceInfo:
        return BalanceInfo(current_balance=0)

    async def get_stores(self) -> List[StoreDescriptor]:
        async def fetch():
            response = await self.make_request("GET", f"{API_PREFIX}/stores")
            return [
                StoreDescriptor(
                    id=item.get("store_id"),
                    name=item.get("store_name") or "",
                    address=item.get("store_address"),
                    is_active=item.get("is_active"),
                    metadata={
                        "city_id": item.get("city_id"),
                        "zone_id": item.get("zone_id"),
                        "hub_id": item.get("hub_id"),
                    },
                )
                for item in _data_list(response)
            ]

        try:
            return await self._cached("get_stores", None, STORES_TTL, fetch, List[StoreDescriptor])
        except Exception as e:
            logger.warning(f"[COURIER] pathao: Store lookup failed, returning empty list: {e}")
            return []

    async def create_pickup_store(self, store: PickupStoreCreate) -> StoreDescriptor:
        missing = [f for f in ("city_id", "zone_id", "area_id") if not getattr(store, f)]
        if missing:
            raise CourierValidationError(
                "city_id, zone_id and area_id are required for Pathao stores",
                errors=[f"{f} is required" for f in missing],
            )

        payload = {
            "name": store.name,
            "contact_name": store.contact_name or store.name,
            "contact_number": store.phone,
            "address": store.address,
            "city_id": store.city_id,
            "zone_id": store.zone_id,
            "area_id": store.area_id,
        }
        if store.secondary_contact:
            payload["secondary_contact"] = store.secondary_contact

        response = await self.make_request("POST", f"{API_PREFIX}/stores", json_body=payload)
        data = (response or {}).get("data") or {}
        await self._clear_methods("get_stores")

        return StoreDescriptor(
            id=data.get("store_id"),
            name=data.get("store_name") or store.name,
            address=store.address,
            area_id=store.area_id,
            phone=store.phone,
            metadata={"message": (response or {}).get("message")},
        )
