"""
Usage pricing: converts resource specs and elapsed usage into a cost.

Everything here is a pure function over ``Decimal``. Floats are converted
through their shortest ``repr`` so that ``0.0008`` prices as
``Decimal("0.0008")`` and not as its binary approximation. Arithmetic runs
in a fixed 50-digit context, so results never depend on the caller's
decimal context.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_EVEN, ROUND_HALF_UP, Context, Decimal, InvalidOperation, localcontext
from typing import TypeAlias

Number: TypeAlias = int | float | Decimal | str

SECONDS_PER_HOUR = Decimal(3600)

_CONTEXT = Context(prec=50)


class AmountOutOfRangeError(ValueError):
    """An amount needs more digits than the pricing context carries."""


@dataclass(frozen=True)
class UsageCost:
    """CPU, GPU and total cost of a unit of usage."""

    cpu_cost: Decimal
    gpu_cost: Decimal
    total_cost: Decimal


def to_decimal(value: Number, name: str = "value") -> Decimal:
    """Convert a numeric input to Decimal, rejecting negatives and non-finite values."""
    if isinstance(value, bool):
        msg = f"{name} must be a number, not a bool"
        raise ValueError(msg)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, float):
        result = Decimal(repr(value))
    else:
        try:
            result = Decimal(value)
        except InvalidOperation as exc:
            msg = f"{name} must be numeric, got {value!r}"
            raise ValueError(msg) from exc
    if not result.is_finite():
        msg = f"{name} must be finite"
        raise ValueError(msg)
    if result < 0:
        msg = f"{name} must be non-negative, got {value}"
        raise ValueError(msg)
    return result


def price(
    cpu_cores: Number,
    cpu_units: Number,
    cpu_rate: Number,
    gpu_memory: Number,
    gpu_units: Number,
    gpu_rate: Number,
) -> UsageCost:
    """
    Price CPU and GPU usage.

    Unit-agnostic: ``cpu_units``/``gpu_units`` must be in the same time unit
    the rates are quoted in (hours with per-hour rates, seconds with
    per-second rates).

    Raises:
        ValueError: If any input is negative or not finite
    """
    cpu_inputs = (
        to_decimal(cpu_cores, "cpu_cores"),
        to_decimal(cpu_units, "cpu_units"),
        to_decimal(cpu_rate, "cpu_rate"),
    )
    gpu_inputs = (
        to_decimal(gpu_memory, "gpu_memory"),
        to_decimal(gpu_units, "gpu_units"),
        to_decimal(gpu_rate, "gpu_rate"),
    )
    with localcontext(_CONTEXT):
        cpu_cost = cpu_inputs[0] * cpu_inputs[1] * cpu_inputs[2]
        gpu_cost = gpu_inputs[0] * gpu_inputs[1] * gpu_inputs[2]
        total_cost = cpu_cost + gpu_cost
    return UsageCost(cpu_cost=cpu_cost, gpu_cost=gpu_cost, total_cost=total_cost)


def per_second_rate(rate_per_hour: Number) -> Decimal:
    """Convert an hourly rate to a per-second rate."""
    rate = to_decimal(rate_per_hour, "rate_per_hour")
    with localcontext(_CONTEXT):
        return rate / SECONDS_PER_HOUR


def quantize_amount(value: Decimal, decimals: int) -> Decimal:
    """Round an amount to the settlement currency's smallest unit."""
    exponent = Decimal(1).scaleb(-decimals)
    try:
        return value.quantize(exponent, rounding=ROUND_HALF_EVEN, context=_CONTEXT)
    except InvalidOperation as exc:
        msg = f"Amount {value} cannot be represented with {decimals} decimal places"
        raise AmountOutOfRangeError(msg) from exc


def price_usage(
    cpu_cores: Number,
    cpu_seconds: Number,
    cpu_price_per_hour: Number,
    gpu_memory: Number,
    gpu_seconds: Number,
    gpu_price_per_hour: Number,
    settlement_decimals: int,
) -> UsageCost:
    """
    Price elapsed usage in seconds against hourly resource rates.

    Each component is quantized to ``settlement_decimals`` before summing,
    so ``total_cost == cpu_cost + gpu_cost`` holds exactly on stored values.

    Raises:
        AmountOutOfRangeError: If a component needs more than 50 significant digits
    """
    raw = price(
        cpu_cores,
        cpu_seconds,
        per_second_rate(cpu_price_per_hour),
        gpu_memory,
        gpu_seconds,
        per_second_rate(gpu_price_per_hour),
    )
    cpu_cost = quantize_amount(raw.cpu_cost, settlement_decimals)
    gpu_cost = quantize_amount(raw.gpu_cost, settlement_decimals)
    with localcontext(_CONTEXT):
        total_cost = cpu_cost + gpu_cost
    return UsageCost(cpu_cost=cpu_cost, gpu_cost=gpu_cost, total_cost=total_cost)


def estimate_cost(
    cpu_cores: Number,
    cpu_hours: Number,
    cpu_price: Number,
    gpu_memory: Number,
    gpu_hours: Number,
    gpu_price: Number,
) -> UsageCost:
    """Estimate the cost of a planned run with hourly prices."""
    return price(cpu_cores, cpu_hours, cpu_price, gpu_memory, gpu_hours, gpu_price)


def parse_iso(timestamp: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing Z."""
    return datetime.fromisoformat(timestamp.replace("Z", "+00:00"))


def duration_seconds(start_time: str, end_time: str) -> int:
    """Whole seconds between two ISO-8601 timestamps, floored at zero."""
    elapsed = (parse_iso(end_time) - parse_iso(start_time)).total_seconds()
    return max(0, int(elapsed))


def format_duration(seconds: Number) -> str:
    """Display view of a duration: minutes, rounded half up."""
    elapsed = to_decimal(seconds, "seconds")
    with localcontext(_CONTEXT):
        minutes = (elapsed / 60).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return f"{minutes} min"


def format_amount(value: Decimal, places: int) -> str:
    """Fixed-point display string for an amount."""
    if not 2 <= places <= 6:
        msg = "display places must be between 2 and 6"
        raise ValueError(msg)
    return f"{quantize_amount(value, places):f}"
