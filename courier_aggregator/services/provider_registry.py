"""
Provider Registry

Resolves an active provider by name (case-insensitive) to its base URL and
credentials. Two sources:

- SQLProviderRegistry: shipping_providers table
- InMemoryProviderRegistry: fixed list, or built from PATHAO_* / REDX_* settings

Usage:
    registry = SQLProviderRegistry()
    config = await registry.find_active_provider("Pathao")
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, func

from courier_aggregator.core.config import Settings, settings as default_settings
from courier_aggregator.core.database import dispose_engine, get_db_session
from courier_aggregator.models.shipping_provider import CourierCode, ShippingProvider
from courier_aggregator.modules.couriers.base import ProviderConfig

logger = logging.getLogger(__name__)


class ProviderRegistry(ABC):
    """Read-only view of configured shipping providers."""

    @abstractmethod
    async def find_active_provider(self, name: str) -> Optional[ProviderConfig]:
        """Return the active provider with this name (any case), or None."""
        pass

    @abstractmethod
    async def list_active_providers(self) -> List[str]:
        """Names of all active providers."""
        pass

    async def close(self) -> None:
        """Release whatever the registry holds open."""
        pass


class SQLProviderRegistry(ProviderRegistry):
    """Provider lookups against the shipping_providers table."""

    def __init__(self, session_factory=get_db_session):
        """
        Args:
            session_factory: Zero-argument callable returning an async
                             context manager that yields an AsyncSession
        """
        self._session_factory = session_factory
        self._owns_engine = session_factory is get_db_session

    async def find_active_provider(self, name: str) -> Optional[ProviderConfig]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ShippingProvider).where(
                    func.lower(ShippingProvider.name) == name.strip().lower(),
                    ShippingProvider.is_active == True,  # noqa: E712
                )
            )
            provider = result.scalar_one_or_none()

        if provider is None:
            logger.debug(f"[COURIER] No active provider named {name}")
            return None

        credentials = dict(provider.config or {})
        return ProviderConfig(
            name=provider.name.lower(),
            base_url=provider.base_url,
            credentials=credentials,
            is_active=provider.is_active,
            auth_type=credentials.get("auth_type"),
        )

    async def list_active_providers(self) -> List[str]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ShippingProvider.name)
                .where(ShippingProvider.is_active == True)  # noqa: E712
                .order_by(ShippingProvider.name)
            )
            return list(result.scalars().all())

    async def close(self) -> None:
        """Dispose the shared engine, unless sessions come from an injected factory."""
        if self._owns_engine:
            await dispose_engine()


class InMemoryProviderRegistry(ProviderRegistry):
    """Fixed provider list. Used for environment-configured deployments and tests."""

    def __init__(self, providers: Iterable[ProviderConfig] = ()):
        self._providers: Dict[str, ProviderConfig] = {p.name.lower(): p for p in providers}

    def add(self, provider: ProviderConfig) -> None:
        self._providers[provider.name.lower()] = provider

    async def find_active_provider(self, name: str) -> Optional[ProviderConfig]:
        provider = self._providers.get(name.strip().lower())
        if provider is None or not provider.is_active:
            return None
        return provider

    async def list_active_providers(self) -> List[str]:
        return [p.name for p in self._providers.values() if p.is_active]

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "InMemoryProviderRegistry":
        """Build a registry from PATHAO_* and REDX_* settings. Unset providers are skipped."""
        config = config or default_settings
        providers = []

        if config.PATHAO_BASE_URL:
            providers.append(ProviderConfig(
                name=CourierCode.PATHAO.value,
                base_url=config.PATHAO_BASE_URL,
                credentials={
                    "client_id": config.PATHAO_CLIENT_ID,
                    "client_secret": config.PATHAO_CLIENT_SECRET,
                    "username": config.PATHAO_USERNAME,
                    "password": config.PATHAO_PASSWORD,
                    "store_id": config.PATHAO_STORE_ID,
                },
                auth_type="issued_token",
            ))

        if config.REDX_BASE_URL:
            providers.append(ProviderConfig(
                name=CourierCode.REDX.value,
                base_url=config.REDX_BASE_URL,
                credentials={"token": config.REDX_TOKEN},
                auth_type="static_token",
            ))

        logger.info(f"[COURIER] Providers from settings: {[p.name for p in providers]}")
        return cls(providers)
