from courier_aggregator.models.shipping_provider import CourierCode, ShippingProvider

__all__ = ["CourierCode", "ShippingProvider"]
