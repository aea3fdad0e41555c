"""
Base Courier Interface

Every courier adapter implements this interface and translates its
provider's request and response shapes into the shared schemas in
courier_aggregator.schemas.courier.

Each adapter instance owns:
- its credential (token) and authentication state
- one ProviderRateLimiter, so calls to one provider never overlap
- one CourierRequestExecutor, which applies retry and re-auth policy
"""
import asyncio
import enum
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from pydantic import TypeAdapter

from courier_aggregator.core.cache import CacheService, DEFAULT_NAMESPACE, make_cache_key
from courier_aggregator.core.config import settings
from courier_aggregator.core.exceptions import CourierValidationError, UnsupportedOperationError
from courier_aggregator.core.http_client import CourierRequestExecutor, RetryConfig
from courier_aggregator.core.rate_limiter import ProviderRateLimiter, RateLimitConfig
from courier_aggregator.models.shipping_provider import CourierCode
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
    Zone,
)
from courier_aggregator.utils.validation import format_phone_number, validate_order_data

logger = logging.getLogger(__name__)


# Cache TTLs (seconds)
CITIES_TTL = 24 * 60 * 60
LOCATIONS_TTL = 2 * 60 * 60
CHARGE_TTL = 30 * 60
TRACKING_TTL = 2 * 60
BALANCE_TTL = 10 * 60
STORES_TTL = 60 * 60
AUTH_TOKEN_TTL = 60 * 60
PARCEL_DETAILS_TTL = 5 * 60

AUTH_TOKEN_METHOD = "auth_token"


@dataclass
class ProviderConfig:
    """Provider entry resolved from the registry."""
    name: str
    base_url: str
    credentials: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    auth_type: Optional[str] = None


class AuthState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


class BaseCourier(ABC):
    """
    Abstract base class for all courier adapters.

    Authentication is reactive: ensure_authenticated() runs before every
    request and only contacts the provider when no credential is held. A 401
    clears the credential (see invalidate_credentials) and the next attempt
    authenticates again. There is no background refresh.
    """

    def __init__(
        self,
        config: ProviderConfig,
        cache: Optional[CacheService] = None,
        rate_limit_config: Optional[RateLimitConfig] = None,
        retry_config: Optional[RetryConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        auth_timeout: Optional[float] = None,
        cache_namespace: str = DEFAULT_NAMESPACE,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the adapter.

        Args:
            config: Provider base URL and credentials
            cache: Response cache (a Redis-backed CacheService by default)
            rate_limit_config: Overrides get_rate_limit_config()
            retry_config: Overrides the settings-derived retry policy
            http_client: Shared httpx client (the executor creates one if omitted)
            timeout: Per-request timeout in seconds
            auth_timeout: Timeout for credential exchange in seconds
            cache_namespace: Prefix for every cache key
            clock: Monotonic clock used by the rate limiter
            sleep: Awaitable sleep used for throttling and backoff
        """
        self.config = config
        self.credentials: Dict[str, Any] = dict(config.credentials or {})
        self.cache = cache or CacheService()
        self.cache_namespace = cache_namespace
        self.auth_timeout = auth_timeout if auth_timeout is not None else settings.COURIER_AUTH_TIMEOUT_SECONDS

        self.token: Optional[str] = None
        self.auth_state = AuthState.UNAUTHENTICATED
        self._auth_lock = asyncio.Lock()

        self.rate_limiter = ProviderRateLimiter(
            self.name,
            rate_limit_config or self.get_rate_limit_config(),
            clock=clock,
            sleep=sleep,
        )
        self.executor = CourierRequestExecutor(
            self.name,
            config.base_url,
            self.rate_limiter,
            self,
            retry_config=retry_config or RetryConfig(
                retry_attempts=settings.COURIER_RETRY_ATTEMPTS,
                retry_delay=settings.COURIER_RETRY_DELAY_SECONDS,
            ),
            timeout=timeout if timeout is not None else settings.COURIER_REQUEST_TIMEOUT_SECONDS,
            http_client=http_client,
            sleep=sleep,
        )

    @property
    @abstractmethod
    def courier_code(self) -> CourierCode:
        """Return the courier code enum value."""
        pass

    @property
    def name(self) -> str:
        return self.courier_code.value

    def get_rate_limit_config(self) -> RateLimitConfig:
        """Request budget for this provider. Override for provider-specific limits."""
        return RateLimitConfig(
            max_requests=settings.COURIER_MAX_REQUESTS,
            time_window=settings.COURIER_TIME_WINDOW_SECONDS,
        )

    def get_cache_key(self, method: str, params: Optional[Dict[str, Any]] = None) -> str:
        return make_cache_key(self.cache_namespace, self.name, method, params)

    # =========================================================================
    # Authentication
    # =========================================================================

    @abstractmethod
    async def authenticate(self) -> None:
        """
        Obtain a credential and store it in self.token.

        Raises:
            AuthenticationError: If no credential can be obtained
        """
        pass

    @abstractmethod
    def auth_headers(self) -> Dict[str, str]:
        """Headers that carry self.token on every request."""
        pass

    async def ensure_authenticated(self) -> None:
        """Authenticate unless a credential is already held."""
        if self.token:
            return

        async with self._auth_lock:
            if self.token:
                return
            self.auth_state = AuthState.AUTHENTICATING
            try:
                await self.authenticate()
            except Exception:
                self.auth_state = AuthState.UNAUTHENTICATED
                raise
            self.auth_state = AuthState.AUTHENTICATED
            logger.info(f"[AUTH] {self.name}: authenticated")

    async def invalidate_credentials(self) -> None:
        """Forget the current credential and its cached copy."""
        self.token = None
        self.auth_state = AuthState.UNAUTHENTICATED
        await self.cache.delete(self.get_cache_key(AUTH_TOKEN_METHOD))

    # =========================================================================
    # Request helpers
    # =========================================================================

    async def make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Any] = None,
    ) -> Any:
        return await self.executor.request(method, endpoint, params=params, json_body=json_body)

    async def _cached(
        self,
        method: str,
        params: Optional[Dict[str, Any]],
        ttl_seconds: int,
        producer: Callable[[], Awaitable[Any]],
        schema: Any,
    ) -> Any:
        """
        Serve a read through the cache.

        The produced value is stored in its JSON form and re-validated into
        `schema` on the way out, so hits and misses return the same types.
        """
        adapter = TypeAdapter(schema)

        async def produce():
            return adapter.dump_python(await producer(), mode="json")

        raw = await self.cache.get_or_set(self.get_cache_key(method, params), produce, ttl_seconds)
        return adapter.validate_python(raw)

    def _prepare_order(self, order: OrderDescriptor) -> OrderDescriptor:
        """Validate an order and normalize its phone number."""
        result = validate_order_data(order)
        if not result.is_valid:
            raise CourierValidationError(
                f"Invalid order data for {self.name}",
                errors=result.errors,
                details={"provider": self.name},
            )
        return order.model_copy(update={"recipient_phone": format_phone_number(order.recipient_phone)})

    async def _clear_methods(self, *methods: str) -> None:
        for method in methods:
            await self.cache.clear_pattern(f"{self.cache_namespace}:{self.name}:{method}:*")

    async def _invalidate_after_order(self) -> None:
        """Drop cached tracking and balance once an order changes them."""
        await self._clear_methods("track_order", "get_balance")

    async def close(self) -> None:
        await self.executor.close()

    # =========================================================================
    # Shipping operations
    # =========================================================================

    @abstractmethod
    async def get_cities(self) -> List[City]:
        pass

    @abstractmethod
    async def get_zones(self, location_filter: Optional[LocationFilter] = None) -> List[Zone]:
        """
        List zones.

        Raises:
            CourierValidationError: If the provider's required filter field is missing
        """
        pass

    @abstractmethod
    async def get_areas(self, location_filter: Optional[LocationFilter] = None) -> List[Area]:
        """
        List delivery areas.

        Raises:
            CourierValidationError: If the provider's required filter field is missing
        """
        pass

    @abstractmethod
    async def calculate_charge(self, package: PackageDescriptor) -> PriceQuote:
        """
        Quote delivery for a package.

        Args:
            package: Package details. item_weight is in kg; adapters convert
                     to whatever unit their provider expects.

        Returns:
            PriceQuote

        Raises:
            CourierValidationError: If the provider's required package fields are missing
        """
        pass

    @abstractmethod
    async def create_order(self, order: OrderDescriptor) -> CreateOrderResult:
        """
        Create a shipping order. Never cached.

        Raises:
            CourierValidationError: If the order fails local validation
        """
        pass

    @abstractmethod
    async def track_order(self, tracking_id: str) -> TrackingResult:
        pass

    @abstractmethod
    async def get_balance(self) -> BalanceInfo:
        """Account balance. Returns a zero placeholder instead of raising."""
        pass

    @abstractmethod
    async def get_stores(self) -> List[StoreDescriptor]:
        """Pickup stores. Returns an empty list instead of raising."""
        pass

    # Optional operations. Adapters override what their provider supports.

    async def get_parcel_details(self, tracking_id: str) -> Dict[str, Any]:
        raise UnsupportedOperationError(self.name, "get_parcel_details")

    async def update_parcel(self, tracking_id: str, update_details: Dict[str, Any]) -> bool:
        raise UnsupportedOperationError(self.name, "update_parcel")

    async def cancel_order(self, tracking_id: str, reason: str = "Cancelled by merchant") -> bool:
        raise UnsupportedOperationError(self.name, "cancel_order")

    async def get_pickup_store_details(self, store_id: int) -> Optional[StoreDescriptor]:
        raise UnsupportedOperationError(self.name, "get_pickup_store_details")

    async def create_pickup_store(self, store: PickupStoreCreate) -> StoreDescriptor:
        raise UnsupportedOperationError(self.name, "create_pickup_store")
