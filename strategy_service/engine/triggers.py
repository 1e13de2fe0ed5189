"""Stateless price-trigger logic for price-monitor and levels jobs.

All functions are pure computation, no I/O. Level bookkeeping mutates the
Level passed in and nothing else.
"""

from datetime import datetime, timedelta

from strategy_service.schemas.jobs import Level, TriggerRecord


def price_condition_met(price: float, target: float, direction: str) -> bool:
    if direction == "above":
        return price >= target
    if direction == "below":
        return price <= target
    raise ValueError(f"Unknown direction: {direction}")


def level_condition_met(level: Level, price: float) -> bool:
    if level.type in ("limit_buy", "stop_loss"):
        return price <= level.price
    return price >= level.price  # take_profit


def level_is_eligible(level: Level, now: datetime, max_retriggers: int) -> bool:
    if level.permanently_disabled:
        return False
    if level.executed_count >= max_retriggers:
        return False
    if level.cooldown_until is not None and now < level.cooldown_until:
        return False
    return True


def select_level(levels: list[Level], price: float, now: datetime, max_retriggers: int) -> Level | None:
    """First eligible level whose condition holds, scanning by ascending price."""
    for level in sorted(levels, key=lambda lv: lv.price):
        if level_is_eligible(level, now, max_retriggers) and level_condition_met(level, price):
            return level
    return None


def record_level_execution(
    level: Level,
    success: bool,
    price: float,
    now: datetime,
    cooldown_hours: float,
    max_retriggers: int,
    signature: str | None = None,
    error: str | None = None,
):
    level.execution_history.append(
        TriggerRecord(timestamp=now, price=price, success=success, signature=signature, error=error)
    )
    if not success:
        return
    level.executed = True
    level.executed_count += 1
    level.cooldown_until = now + timedelta(hours=cooldown_hours)
    if level.executed_count >= max_retriggers:
        level.permanently_disabled = True


def all_levels_exhausted(levels: list[Level]) -> bool:
    return all(level.permanently_disabled for level in levels)
