"""
Courier Registry

Maps each CourierCode to its adapter class. Adding a courier means adding
a CourierCode member and one adapter module decorated with
@register_courier, imported at the bottom of this file.
"""
from typing import Dict, List, Type
import logging

from courier_aggregator.core.exceptions import UnsupportedProviderError
from courier_aggregator.models.shipping_provider import CourierCode
from courier_aggregator.modules.couriers.base import BaseCourier, ProviderConfig, AuthState

logger = logging.getLogger(__name__)

# Registry of courier implementations
_COURIER_REGISTRY: Dict[CourierCode, Type[BaseCourier]] = {}


def register_courier(courier_code: CourierCode):
    """
    Decorator to register a courier implementation.

    Usage:
        @register_courier(CourierCode.REDX)
        class RedXCourier(BaseCourier):
            ...
    """
    def decorator(cls: Type[BaseCourier]):
        _COURIER_REGISTRY[courier_code] = cls
        logger.debug(f"Registered courier: {courier_code.value} -> {cls.__name__}")
        return cls
    return decorator


def get_courier_class(provider_name: str) -> Type[BaseCourier]:
    """
    Resolve a provider name (any case) to its adapter class.

    Raises:
        UnsupportedProviderError: If no adapter is registered for the name
    """
    try:
        code = CourierCode(provider_name.strip().lower())
    except ValueError:
        raise UnsupportedProviderError(provider_name) from None

    courier_cls = _COURIER_REGISTRY.get(code)
    if courier_cls is None:
        raise UnsupportedProviderError(provider_name)
    return courier_cls


def get_registered_couriers() -> List[CourierCode]:
    """Get list of all registered courier codes."""
    return list(_COURIER_REGISTRY.keys())


__all__ = [
    "BaseCourier",
    "ProviderConfig",
    "AuthState",
    "register_courier",
    "get_courier_class",
    "get_registered_couriers",
]


# Import couriers to trigger registration
# These imports must be at the bottom to avoid circular imports
from courier_aggregator.modules.couriers.pathao import PathaoCourier  # noqa: E402, F401
from courier_aggregator.modules.couriers.redx import RedXCourier  # noqa: E402, F401
