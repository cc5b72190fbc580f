"""
Alert predicates: turn oracle prices into a computed value and a trigger decision
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class AlertType(str, Enum):
    """What the alert threshold is compared against"""
    PRICE = "price"          # token price in USD: eth_price * derived_eth
    PRICE_ETH = "price_eth"  # token price in ETH: derived_eth


class AlertOperator(str, Enum):
    """Alert condition operators"""
    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="
    EQ = "=="


ALERT_TYPE_ALIASES = {
    "price": AlertType.PRICE,
    "price_usd": AlertType.PRICE,
    "price_eth": AlertType.PRICE_ETH,
}

ALERT_OPTION_ALIASES = {
    "above": AlertOperator.GTE,
    "gte": AlertOperator.GTE,
    ">=": AlertOperator.GTE,
    "below": AlertOperator.LTE,
    "lte": AlertOperator.LTE,
    "<=": AlertOperator.LTE,
    "gt": AlertOperator.GT,
    ">": AlertOperator.GT,
    "lt": AlertOperator.LT,
    "<": AlertOperator.LT,
    "eq": AlertOperator.EQ,
    "==": AlertOperator.EQ,
}

# Relative tolerance for equality on floating point prices.
EQ_TOLERANCE = 1e-9


@dataclass
class AlertEvaluation:
    """Outcome of evaluating one alert in one pass"""
    alert_id: int
    computed_value: Optional[float] = None
    triggered: bool = False
    error: Optional[str] = None


def parse_alert_type(value: str) -> AlertType:
    key = str(value or "").strip().lower()
    if key not in ALERT_TYPE_ALIASES:
        raise ValueError(f"unsupported alert type: {value!r}")
    return ALERT_TYPE_ALIASES[key]


def parse_alert_option(value: str) -> AlertOperator:
    key = str(value or "").strip().lower()
    if key not in ALERT_OPTION_ALIASES:
        raise ValueError(f"unsupported alert option: {value!r}")
    return ALERT_OPTION_ALIASES[key]


def parse_alert_value(value: str) -> float:
    try:
        threshold = float(str(value).strip())
    except (TypeError, ValueError):
        raise ValueError(f"alert value is not a number: {value!r}")
    if threshold != threshold:
        raise ValueError("alert value cannot be NaN")
    return threshold


def compute_value(alert_type: AlertType, eth_price: float, derived_eth: float) -> float:
    if alert_type == AlertType.PRICE_ETH:
        return derived_eth
    return eth_price * derived_eth


def compare(value: float, operator: AlertOperator, threshold: float) -> bool:
    if operator == AlertOperator.GT:
        return value > threshold
    if operator == AlertOperator.LT:
        return value < threshold
    if operator == AlertOperator.GTE:
        return value >= threshold
    if operator == AlertOperator.LTE:
        return value <= threshold
    return abs(value - threshold) <= EQ_TOLERANCE * max(abs(value), abs(threshold), 1.0)


def evaluate_alert(alert, eth_price: float, derived_eth: float) -> AlertEvaluation:
    """
    Combine the pass-wide ETH price with one alert's derived price.

    Uses only the alert's own predicate fields; an invalid predicate produces an
    evaluation carrying the error instead of raising.
    """
    try:
        alert_type = parse_alert_type(alert.alert_type)
        operator = parse_alert_option(alert.alert_option)
        threshold = parse_alert_value(alert.alert_value)
    except ValueError as error:
        return AlertEvaluation(alert_id=alert.id, error=str(error))

    value = compute_value(alert_type, eth_price, derived_eth)
    return AlertEvaluation(
        alert_id=alert.id,
        computed_value=value,
        triggered=compare(value, operator, threshold),
    )
