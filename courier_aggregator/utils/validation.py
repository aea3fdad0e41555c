"""
Courier domain validation

Phone normalization, order payload checks and tracking status
classification. Used by the adapters before any upstream call and
available to callers for pre-flight checks.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Union

from pydantic import BaseModel

logger = logging.getLogger(__name__)

# 11 digits, operator prefix 013-019
PHONE_PATTERN = re.compile(r"^01[3-9]\d{8}$")
COUNTRY_PREFIX = "88"

MIN_NAME_LENGTH = 2
MIN_ADDRESS_LENGTH = 10


@dataclass
class OrderValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


@dataclass
class TrackingStatusInfo:
    status: str
    description: str
    color: str


TRACKING_STATUS_MAP: Dict[str, Dict[str, str]] = {
    "pending": {"description": "Order is pending", "color": "orange"},
    "in_review": {"description": "Order is under review", "color": "blue"},
    "ready-for-delivery": {"description": "Ready for delivery", "color": "green"},
    "delivery-in-progress": {"description": "Out for delivery", "color": "purple"},
    "delivered": {"description": "Successfully delivered", "color": "green"},
    "cancelled": {"description": "Order cancelled", "color": "red"},
    "hold": {"description": "On hold", "color": "yellow"},
}
UNKNOWN_STATUS = {"description": "Unknown status", "color": "gray"}


def format_phone_number(phone: str) -> str:
    """
    Normalize a phone number to the local 11-digit form.

    Strips every non-digit, then drops a leading country prefix (88).

    Examples:
        "+880 1712-345678" -> "01712345678"
        "01712345678"      -> "01712345678"
    """
    if not phone:
        return ""
    cleaned = re.sub(r"\D", "", phone)
    if cleaned.startswith(COUNTRY_PREFIX):
        cleaned = cleaned[len(COUNTRY_PREFIX):]
    return cleaned


def is_valid_phone(phone: str) -> bool:
    """True if the phone matches the national mobile format after normalization."""
    return bool(PHONE_PATTERN.match(format_phone_number(phone)))


def validate_order_data(order: Union[BaseModel, Mapping[str, Any]]) -> OrderValidationResult:
    """
    Check an order payload before it is sent to a courier.

    Args:
        order: OrderDescriptor or a mapping with the same field names

    Returns:
        OrderValidationResult listing every problem found (not just the first)
    """
    data = order.model_dump() if isinstance(order, BaseModel) else dict(order)
    errors: List[str] = []

    name = (data.get("recipient_name") or "").strip()
    if len(name) < MIN_NAME_LENGTH:
        errors.append(
            f"Recipient name is required and must be at least {MIN_NAME_LENGTH} characters"
        )

    if not is_valid_phone(data.get("recipient_phone") or ""):
        errors.append("Valid Bangladeshi phone number is required (11 digits starting with 01)")

    address = (data.get("recipient_address") or "").strip()
    if len(address) < MIN_ADDRESS_LENGTH:
        errors.append(
            f"Recipient address is required and must be at least {MIN_ADDRESS_LENGTH} characters"
        )

    cod = data.get("cash_collection_amount") or 0
    if cod < 0:
        errors.append("Cash collection amount cannot be negative")

    weight = data.get("parcel_weight")
    if weight is None or weight <= 0:
        errors.append("Parcel weight must be greater than 0")

    if errors:
        logger.debug(f"[COURIER] Order validation failed: {errors}")

    return OrderValidationResult(is_valid=not errors, errors=errors)


def parse_tracking_status(status: str) -> TrackingStatusInfo:
    """Map a provider status string to a display description and color."""
    mapped = TRACKING_STATUS_MAP.get((status or "").lower(), UNKNOWN_STATUS)
    return TrackingStatusInfo(status=status, description=mapped["description"], color=mapped["color"])
