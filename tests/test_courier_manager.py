import asyncio
from unittest.mock import AsyncMock

import pytest

from courier_aggregator.core.exceptions import (
    AuthenticationError,
    CourierValidationError,
    ProviderNotFoundError,
    UnsupportedOperationError,
    UnsupportedProviderError,
)
from courier_aggregator.core.http_client import RetryConfig
from courier_aggregator.core.rate_limiter import RateLimitConfig
from courier_aggregator.modules.couriers import get_courier_class, get_registered_couriers
from courier_aggregator.modules.couriers.base import ProviderConfig
from courier_aggregator.modules.couriers.pathao import PathaoCourier
from courier_aggregator.modules.couriers.redx import RedXCourier
from courier_aggregator.schemas.courier import PriceQuote
from courier_aggregator.services.courier_manager import CourierServiceManager
from courier_aggregator.services.provider_registry import InMemoryProviderRegistry
from conftest import RouteTransport, respond

TOKEN_PATH = "/aladdin/api/v1/issue-token"
TOKEN_RESPONSE = {"access_token": "tok-1", "expires_in": 432000}
REDX_PREFIX = "/v1.0.0-beta"


def make_manager(providers, cache, transport, clock, **kwargs):
    return CourierServiceManager(
        InMemoryProviderRegistry(providers),
        cache=cache,
        rate_limit_config=RateLimitConfig(max_requests=1000, time_window=1.0),
        retry_config=RetryConfig(retry_attempts=3, retry_delay=1.0),
        http_client=transport.client(),
        clock=clock,
        sleep=clock.sleep,
        **kwargs
    )


class StubCourier:
    """Adapter double for cross-provider tests."""

    def __init__(self, name, quote=None, error=None):
        self.name = name
        self.quote = quote
        self.error = error

    async def calculate_charge(self, package):
        if self.error:
            raise self.error
        return self.quote

    async def close(self):
        pass


class CountingRegistry(InMemoryProviderRegistry):

    def __init__(self, providers):
        super().__init__(providers)
        self.list_calls = 0

    async def list_active_providers(self):
        self.list_calls += 1
        return await super().list_active_providers()


class TestRegistry:

    def test_both_adapters_registered(self):
        assert get_registered_couriers() == ["pathao", "redx"]
        assert get_courier_class("Pathao") is PathaoCourier
        assert get_courier_class("redx") is RedXCourier

    def test_unknown_adapter(self):
        with pytest.raises(UnsupportedProviderError):
            get_courier_class("sundarban")


class TestServiceResolution:

    @pytest.mark.asyncio
    async def test_adapter_is_memoized_and_authenticates_once(self, pathao_config, cache, clock):
        transport = RouteTransport({("POST", TOKEN_PATH): respond(200, TOKEN_RESPONSE)})
        manager = make_manager([pathao_config], cache, transport, clock)

        first = await manager.get_service("pathao")
        second = await manager.get_service("PATHAO")
        concurrent = await asyncio.gather(*(manager.get_service(" Pathao ") for _ in range(5)))

        assert isinstance(first, PathaoCourier)
        assert second is first
        assert all(s is first for s in concurrent)
        assert len(transport.calls("POST", TOKEN_PATH)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_first_use_builds_one_adapter(self, pathao_config, no_cache, clock):
        transport = RouteTransport({("POST", TOKEN_PATH): respond(200, TOKEN_RESPONSE)})
        manager = make_manager([pathao_config], no_cache, transport, clock)

        services = await asyncio.gather(*(manager.get_service("pathao") for _ in range(5)))

        assert len({id(s) for s in services}) == 1
        assert len(transport.calls("POST", TOKEN_PATH)) == 1

    @pytest.mark.asyncio
    async def test_missing_provider(self, cache, clock):
        manager = make_manager([], cache, RouteTransport(), clock)

        with pytest.raises(ProviderNotFoundError) as exc_info:
            await manager.get_service("pathao")

        assert exc_info.value.details["provider"] == "pathao"

    @pytest.mark.asyncio
    async def test_unresolved_names_leave_no_lock_behind(self, redx_config, cache, clock):
        config = ProviderConfig(name="sundarban", base_url="https://sundarban.test")
        manager = make_manager([redx_config, config], cache, RouteTransport(), clock)

        for name in ("pathao", "ecourier", "SUNDARBAN"):
            with pytest.raises((ProviderNotFoundError, UnsupportedProviderError)):
                await manager.get_service(name)
        await manager.get_service("redx")

        assert list(manager._service_locks) == ["redx"]

    @pytest.mark.asyncio
    async def test_inactive_provider_is_not_found(self, redx_config, cache, clock):
        redx_config.is_active = False
        manager = make_manager([redx_config], cache, RouteTransport(), clock)

        with pytest.raises(ProviderNotFoundError):
            await manager.get_service("redx")

    @pytest.mark.asyncio
    async def test_registered_name_without_adapter(self, cache, clock):
        config = ProviderConfig(name="sundarban", base_url="https://sundarban.test")
        manager = make_manager([config], cache, RouteTransport(), clock)

        with pytest.raises(UnsupportedProviderError):
            await manager.get_service("sundarban")

    @pytest.mark.asyncio
    async def test_failed_authentication_is_not_memoized(self, pathao_config, cache, clock):
        transport = RouteTransport({
            ("POST", TOKEN_PATH): [
                respond(401, {"message": "Invalid credentials"}),
                respond(200, TOKEN_RESPONSE),
            ],
        })
        manager = make_manager([pathao_config], cache, transport, clock)

        with pytest.raises(AuthenticationError):
            await manager.get_service("pathao")
        assert manager._services == {}

        service = await manager.get_service("pathao")
        assert service.token == "tok-1"

    @pytest.mark.asyncio
    async def test_close_forgets_adapters(self, redx_config, cache, clock):
        manager = make_manager([redx_config], cache, RouteTransport(), clock)
        first = await manager.get_service("redx")

        await manager.close()

        assert manager._services == {}
        assert await manager.get_service("redx") is not first

    @pytest.mark.asyncio
    async def test_close_releases_owned_cache_and_registry(self, monkeypatch, clock):
        close_redis = AsyncMock()
        monkeypatch.setattr("courier_aggregator.services.courier_manager.close_redis", close_redis)
        registry = InMemoryProviderRegistry()
        registry.close = AsyncMock()
        manager = CourierServiceManager(registry, clock=clock, sleep=clock.sleep)

        await manager.close()

        close_redis.assert_awaited_once()
        registry.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_leaves_injected_cache_open(self, monkeypatch, cache, clock):
        close_redis = AsyncMock()
        monkeypatch.setattr("courier_aggregator.services.courier_manager.close_redis", close_redis)
        manager = CourierServiceManager(InMemoryProviderRegistry(), cache=cache, clock=clock, sleep=clock.sleep)

        await manager.close()

        close_redis.assert_not_awaited()


class TestOperations:

    @pytest.mark.asyncio
    async def test_flat_price_plan_quote(self, pathao_config, cache, clock):
        transport = RouteTransport({
            ("POST", TOKEN_PATH): respond(200, TOKEN_RESPONSE),
            ("POST", "/aladdin/api/v1/merchant/price-plan"): respond(200, {"price": 100, "cod_percentage": 0.01}),
        })
        manager = make_manager([pathao_config], cache, transport, clock)

        quote = await manager.calculate_delivery_cost(
            "pathao", {"recipient_city": 1, "recipient_zone": 10, "item_weight": 1.2}
        )

        assert quote == PriceQuote(delivery_charge=100, cod_charge=1, final_price=101)

    @pytest.mark.asyncio
    async def test_invalid_dict_input_fails_before_any_request(self, pathao_config, cache, clock):
        transport = RouteTransport()
        manager = make_manager([pathao_config], cache, transport, clock)

        with pytest.raises(CourierValidationError) as exc_info:
            await manager.calculate_delivery_cost("pathao", {"item_weight": -1})

        assert exc_info.value.errors[0].startswith("item_weight")
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_tracking_is_served_from_cache(self, redx_config, cache, clock):
        track_path = f"{REDX_PREFIX}/parcel/track/T-1"
        transport = RouteTransport({
            ("GET", track_path): respond(200, {"tracking": [{"message_en": "Parcel created"}]}),
        })
        manager = make_manager([redx_config], cache, transport, clock)

        first = await manager.track_shipping_order("redx", "T-1")
        second = await manager.track_shipping_order("redx", "T-1")

        assert first == second
        assert len(transport.calls("GET", track_path)) == 1

    @pytest.mark.asyncio
    async def test_unsupported_operation(self, pathao_config, cache, clock):
        transport = RouteTransport({("POST", TOKEN_PATH): respond(200, TOKEN_RESPONSE)})
        manager = make_manager([pathao_config], cache, transport, clock)

        with pytest.raises(UnsupportedOperationError):
            await manager.cancel_shipping_order("pathao", "C-1")

    @pytest.mark.asyncio
    async def test_zone_filter_accepts_dict(self, redx_config, cache, clock):
        transport = RouteTransport({
            ("GET", f"{REDX_PREFIX}/areas"): respond(200, {"areas": [{"id": 3, "name": "Gulshan", "zone_id": 2}]}),
        })
        manager = make_manager([redx_config], cache, transport, clock)

        zones = await manager.get_zones("redx", {"district_name": "Dhaka"})

        assert [z.name for z in zones] == ["Gulshan"]
        assert transport.requests[0].url.params["district_name"] == "Dhaka"


class TestBatchTracking:

    @pytest.mark.asyncio
    async def test_failures_are_isolated_and_order_is_kept(self, redx_config, cache, clock):
        ids = [f"T-{n}" for n in range(1, 8)]
        routes = {
            ("GET", f"{REDX_PREFIX}/parcel/track/{tid}"): respond(200, {"tracking": [{"message_en": f"at {tid}"}]})
            for tid in ids
            if tid not in ("T-3", "T-5")
        }
        transport = RouteTransport(routes)
        manager = make_manager([redx_config], cache, transport, clock, batch_size=5, batch_delay=1.0)

        results = await manager.batch_track_orders("redx", ids)

        assert [r.tracking_id for r in results] == ids
        failed = [r.tracking_id for r in results if r.status == "error"]
        assert failed == ["T-3", "T-5"]
        assert all(r.error for r in results if r.status == "error")
        assert sum(1 for r in results if r.status == "success") == 5
        assert results[0].data.status == "at T-1"
        # one pause between the two chunks; the rest are rate limiter spacing
        assert [s for s in clock.sleeps if s >= 0.5] == [1.0]

    @pytest.mark.asyncio
    async def test_single_chunk_does_not_pause(self, redx_config, cache, clock):
        transport = RouteTransport()
        manager = make_manager([redx_config], cache, transport, clock, batch_size=5, batch_delay=1.0)

        results = await manager.batch_track_orders("redx", ["T-1", "T-2"])

        assert [r.status for r in results] == ["error", "error"]
        assert [s for s in clock.sleeps if s >= 0.5] == []


class TestPriceComparison:

    @pytest.mark.asyncio
    async def test_cheapest_first_and_failures_last(self, cache, clock):
        configs = [ProviderConfig(name=n, base_url=f"https://{n}.test") for n in ("a", "b", "c")]
        manager = make_manager(configs, cache, RouteTransport(), clock)
        manager._services.update({
            "a": StubCourier("a", quote=PriceQuote(delivery_charge=150)),
            "b": StubCourier("b", quote=PriceQuote(delivery_charge=90)),
            "c": StubCourier("c", error=RuntimeError("upstream down")),
        })

        comparisons = await manager.compare_prices({"item_weight": 1})

        assert [c.provider for c in comparisons] == ["b", "a", "c"]
        assert comparisons[0].price.delivery_charge == 90
        assert comparisons[2].error == "upstream down"
        assert comparisons[2].price.final_price == 0

    @pytest.mark.asyncio
    async def test_active_providers_are_cached(self, cache, clock, redx_config):
        registry = CountingRegistry([redx_config])
        manager = CourierServiceManager(registry, cache=cache, clock=clock, sleep=clock.sleep)

        assert await manager.get_active_providers() == ["redx"]
        assert await manager.get_active_providers() == ["redx"]
        assert registry.list_calls == 1


class TestClearCache:

    @pytest.mark.asyncio
    async def test_provider_scope(self, cache, fake_redis, clock):
        manager = CourierServiceManager(InMemoryProviderRegistry(), cache=cache, clock=clock, sleep=clock.sleep)
        await cache.set("courier:redx:get_cities:{}", [], 60)
        await cache.set('courier:redx:track_order:{"tracking_id":"1"}', {}, 60)
        await cache.set("courier:pathao:get_cities:{}", [], 60)

        assert await manager.clear_cache("RedX") == 2
        assert fake_redis.keys() == ["courier:pathao:get_cities:{}"]

    @pytest.mark.asyncio
    async def test_custom_pattern(self, cache, fake_redis, clock):
        manager = CourierServiceManager(InMemoryProviderRegistry(), cache=cache, clock=clock, sleep=clock.sleep)
        await cache.set("courier:redx:get_cities:{}", [], 60)
        await cache.set('courier:redx:track_order:{"tracking_id":"1"}', {}, 60)

        assert await manager.clear_cache("redx", "courier:redx:track_order:*") == 1
        assert fake_redis.keys() == ["courier:redx:get_cities:{}"]

    @pytest.mark.asyncio
    async def test_whole_namespace(self, cache, fake_redis, clock):
        manager = CourierServiceManager(InMemoryProviderRegistry(), cache=cache, clock=clock, sleep=clock.sleep)
        await cache.set("courier:redx:get_cities:{}", [], 60)
        await cache.set("courier:active_providers", ["redx"], 60)
        await cache.set("sessions:abc", "x", 60)

        assert await manager.clear_cache() == 2
        assert fake_redis.keys() == ["sessions:abc"]
