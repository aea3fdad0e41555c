"""
Courier Service Manager

Single entry point for callers. Resolves a provider name to its adapter
(memoized for the manager's lifetime), delegates the uniform shipping
operations, and implements the cross-provider utilities:

- batch_track_orders: chunked, one failure never fails its siblings
- compare_prices: quotes from every active provider, failures sorted last
- clear_cache: per provider or the whole courier namespace

Construct one manager per process and inject it. Each manager owns its
adapters, so tests get isolated rate limiter state.

Usage:
    manager = CourierServiceManager(SQLProviderRegistry())
    quote = await manager.calculate_delivery_cost("pathao", package)
"""
import asyncio
import logging
import time
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar, Union

import httpx
from pydantic import BaseModel, ValidationError

from courier_aggregator.core.cache import CacheService
from courier_aggregator.core.config import settings
from courier_aggregator.core.exceptions import CourierValidationError, ProviderNotFoundError
from courier_aggregator.core.http_client import RetryConfig
from courier_aggregator.core.rate_limiter import RateLimitConfig
from courier_aggregator.core.redis_client import close_redis
from courier_aggregator.modules.couriers import BaseCourier, get_courier_class
from courier_aggregator.schemas.courier import (
    Area,
    BalanceInfo,
    BatchTrackingResult,
    City,
    CreateOrderResult,
    LocationFilter,
    OrderDescriptor,
    PackageDescriptor,
    PickupStoreCreate,
    PriceComparison,
    PriceQuote,
    StoreDescriptor,
    TrackingResult,
    Zone,
)
from courier_aggregator.services.provider_registry import ProviderRegistry

logger = logging.getLogger(__name__)

ACTIVE_PROVIDERS_TTL = 5 * 60

ModelT = TypeVar("ModelT", bound=BaseModel)


def _coerce(model: Type[ModelT], value: Union[ModelT, Dict[str, Any], None]) -> Optional[ModelT]:
    """Accept a schema instance or a plain dict; surface bad input as a validation error."""
    if value is None or isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except ValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise CourierValidationError(f"Invalid {model.__name__}", errors=errors) from e


def _error_text(error: BaseException) -> str:
    return str(error) or error.__class__.__name__


class CourierServiceManager:
    """
    Aggregates courier adapters behind one interface.

    Adapters are created on first use, authenticated once, and kept until
    close(). Token expiry is handled inside the adapter; the manager never
    rebuilds an adapter for that reason.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        cache: Optional[CacheService] = None,
        rate_limit_config: Optional[RateLimitConfig] = None,
        retry_config: Optional[RetryConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
        cache_namespace: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.registry = registry
        self.cache = cache or CacheService()
        self._owns_cache = cache is None
        self.rate_limit_config = rate_limit_config
        self.retry_config = retry_config
        self.http_client = http_client
        self.batch_size = batch_size or settings.COURIER_BATCH_SIZE
        self.batch_delay = batch_delay if batch_delay is not None else settings.COURIER_BATCH_DELAY_SECONDS
        self.cache_namespace = cache_namespace or settings.COURIER_CACHE_NAMESPACE
        self._clock = clock
        self._sleep = sleep

        self._services: Dict[str, BaseCourier] = {}
        self._service_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # =========================================================================
    # Adapter resolution
    # =========================================================================

    async def get_service(self, provider_name: str) -> BaseCourier:
        """
        Get the adapter for a provider, creating and authenticating it on first use.

        Raises:
            ProviderNotFoundError: Provider missing or inactive in the registry
            UnsupportedProviderError: No adapter registered for the name
            AuthenticationError: Initial authentication failed (nothing is memoized)
        """
        normalized = provider_name.strip().lower()

        service = self._services.get(normalized)
        if service is not None:
            return service

        # Resolve before locking so unknown names never get a lock entry
        config = await self.registry.find_active_provider(normalized)
        if config is None:
            raise ProviderNotFoundError(provider_name)
        courier_cls = get_courier_class(normalized)

        async with self._service_locks[normalized]:
            service = self._services.get(normalized)
            if service is not None:
                return service

            service = courier_cls(
                config,
                cache=self.cache,
                rate_limit_config=self.rate_limit_config,
                retry_config=self.retry_config,
                http_client=self.http_client,
                cache_namespace=self.cache_namespace,
                clock=self._clock,
                sleep=self._sleep,
            )

            try:
                await service.ensure_authenticated()
            except Exception:
                await service.close()
                raise

            self._services[normalized] = service
            logger.info(f"[COURIER] Initialized {courier_cls.__name__} for {normalized}")
            return service

    # =========================================================================
    # Shipping operations
    # =========================================================================

    async def calculate_delivery_cost(
        self, provider_name: str, package: Union[PackageDescriptor, Dict[str, Any]]
    ) -> PriceQuote:
        package = _coerce(PackageDescriptor, package)
        service = await self.get_service(provider_name)
        return await service.calculate_charge(package)

    async def create_shipping_order(
        self, provider_name: str, order: Union[OrderDescriptor, Dict[str, Any]]
    ) -> CreateOrderResult:
        order = _coerce(OrderDescriptor, order)
        service = await self.get_service(provider_name)
        return await service.create_order(order)

    async def track_shipping_order(self, provider_name: str, tracking_id: str) -> TrackingResult:
        service = await self.get_service(provider_name)
        return await service.track_order(tracking_id)

    async def cancel_shipping_order(
        self, provider_name: str, tracking_id: str, reason: str = "Cancelled by merchant"
    ) -> bool:
        service = await self.get_service(provider_name)
        return await service.cancel_order(tracking_id, reason)

    async def get_cities(self, provider_name: str) -> List[City]:
        service = await self.get_service(provider_name)
        return await service.get_cities()

    async def get_zones(
        self, provider_name: str, location_filter: Union[LocationFilter, Dict[str, Any], None] = None
    ) -> List[Zone]:
        location_filter = _coerce(LocationFilter, location_filter)
        service = await self.get_service(provider_name)
        return await service.get_zones(location_filter)

    async def get_available_areas(
        self, provider_name: str, location_filter: Union[LocationFilter, Dict[str, Any], None] = None
    ) -> List[Area]:
        location_filter = _coerce(LocationFilter, location_filter)
        service = await self.get_service(provider_name)
        return await service.get_areas(location_filter)

    async def get_provider_balance(self, provider_name: str) -> BalanceInfo:
        service = await self.get_service(provider_name)
        return await service.get_balance()

    async def get_pickup_stores(self, provider_name: str) -> List[StoreDescriptor]:
        service = await self.get_service(provider_name)
        return await service.get_stores()

    async def create_pickup_store(
        self, provider_name: str, store: Union[PickupStoreCreate, Dict[str, Any]]
    ) -> StoreDescriptor:
        store = _coerce(PickupStoreCreate, store)
        service = await self.get_service(provider_name)
        return await service.create_pickup_store(store)

    # =========================================================================
    # Cross-provider utilities
    # =========================================================================

    async def batch_track_orders(self, provider_name: str, tracking_ids: List[str]) -> List[BatchTrackingResult]:
        """
        Track many orders in chunks of batch_size.

        Returns one record per input id, in input order. A failed lookup is
        recorded as status "error" and does not affect the others.
        """
        service = await self.get_service(provider_name)
        results: List[BatchTrackingResult] = []

        for start in range(0, len(tracking_ids), self.batch_size):
            chunk = tracking_ids[start:start + self.batch_size]
            outcomes = await asyncio.gather(
                *(service.track_order(tracking_id) for tracking_id in chunk),
                return_exceptions=True,
            )

            for tracking_id, outcome in zip(chunk, outcomes):
                if isinstance(outcome, Exception):
                    logger.warning(f"[COURIER] {provider_name}: Tracking {tracking_id} failed: {outcome}")
                    results.append(BatchTrackingResult(
                        tracking_id=tracking_id, status="error", error=_error_text(outcome)
                    ))
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    results.append(BatchTrackingResult(tracking_id=tracking_id, status="success", data=outcome))

            if start + self.batch_size < len(tracking_ids):
                await self._sleep(self.batch_delay)

        return results

    async def get_active_providers(self) -> List[str]:
        """Names of active providers, cached for five minutes."""
        return await self.cache.get_or_set(
            f"{self.cache_namespace}:active_providers",
            self.registry.list_active_providers,
            ACTIVE_PROVIDERS_TTL,
        )

    async def compare_prices(self, package: Union[PackageDescriptor, Dict[str, Any]]) -> List[PriceComparison]:
        """
        Quote a package with every active provider.

        Returns:
            One entry per provider, cheapest delivery first. Providers that
            failed get a zero quote with `error` set and are listed last.
        """
        package = _coerce(PackageDescriptor, package)
        providers = await self.get_active_providers()

        outcomes = await asyncio.gather(
            *(self.calculate_delivery_cost(provider, package) for provider in providers),
            return_exceptions=True,
        )

        comparisons: List[PriceComparison] = []
        for provider, outcome in zip(providers, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"[COURIER] Failed to get price for {provider}: {outcome}")
                comparisons.append(PriceComparison(
                    provider=provider,
                    price=PriceQuote(delivery_charge=0, cod_charge=0),
                    error=_error_text(outcome),
                ))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                comparisons.append(PriceComparison(provider=provider, price=outcome))

        comparisons.sort(key=lambda c: (c.error is not None, c.price.delivery_charge))
        return comparisons

    async def clear_cache(self, provider_name: Optional[str] = None, pattern: Optional[str] = None) -> int:
        """
        Invalidate cached courier data.

        Args:
            provider_name: Limit to one provider. Omit to clear the whole namespace.
            pattern: Glob to use instead of the provider-wide pattern (provider only)

        Returns:
            Number of keys removed
        """
        if provider_name:
            cache_pattern = pattern or f"{self.cache_namespace}:{provider_name.strip().lower()}:*"
        else:
            cache_pattern = f"{self.cache_namespace}:*"
        return await self.cache.clear_pattern(cache_pattern)

    async def close(self) -> None:
        """
        Shut down: close every adapter's HTTP client and forget the adapters,
        then release the registry and, when the manager built its own cache,
        the shared Redis connection.
        """
        services = list(self._services.values())
        self._services.clear()
        for service in services:
            await service.close()

        await self.registry.close()
        if self._owns_cache:
            await close_redis()
