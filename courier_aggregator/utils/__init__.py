"""
Utility modules for the courier aggregation layer.
"""
from courier_aggregator.utils.validation import (
    format_phone_number,
    is_valid_phone,
    validate_order_data,
    parse_tracking_status,
    OrderValidationResult,
    TrackingStatusInfo,
)

__all__ = [
    "format_phone_number",
    "is_valid_phone",
    "validate_order_data",
    "parse_tracking_status",
    "OrderValidationResult",
    "TrackingStatusInfo",
]
