"""
Stream accrual model. Pure functions, no I/O.

Rates and claimed amounts usually live on the ledger only as ciphertext
handles. estimated_claimable() therefore returns a ClaimableEstimate that says
whether the figure is actually known; an unknown ciphertext is never treated
as zero.

Block numbers and amounts are plain Python ints throughout; inputs are
converted once with int() at the boundary.
"""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Optional

from payroll_services import config as cfg
from payroll_services.payroll.streams import CiphertextHandle, StreamState

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 60 * SECONDS_PER_MINUTE
SECONDS_PER_DAY = 24 * SECONDS_PER_HOUR


def is_withdrawable(stream: StreamState, current_block: int) -> bool:
    return (
        stream.exists
        and not stream.is_paused
        and not stream.is_canceled
        and int(current_block) >= stream.cliff_block
    )


@dataclass(frozen=True)
class ClaimableEstimate:
    known: bool
    amount: Optional[int] = None
    # handle that blocked the estimate when known is False
    pending_handle: Optional[str] = None


def estimated_claimable(stream: StreamState, current_block: int) -> ClaimableEstimate:
    """
    Client-side estimate of what a withdrawal would pay right now.

    0 before the cliff whatever the other inputs are. Otherwise
    rate * (current - start) - claimed, floored at 0, when both rate and
    claimed are plaintext; an unknown estimate when either is a handle.
    """
    block = int(current_block)
    if not stream.exists or block < stream.cliff_block:
        return ClaimableEstimate(known=True, amount=0)

    for value in (stream.rate_per_block, stream.claimed_amount):
        if isinstance(value, CiphertextHandle):
            return ClaimableEstimate(known=False, pending_handle=value.value)

    accrued = int(stream.rate_per_block) * (block - stream.start_block)
    return ClaimableEstimate(known=True, amount=max(0, accrued - int(stream.claimed_amount)))


# ===== Cliff countdown =====
@dataclass(frozen=True)
class Countdown:
    days: int
    hours: int
    minutes: int
    seconds: int
    total_seconds: int
    reached: bool


def countdown_to_cliff(
    current_block: int, cliff_block: int, block_time_seconds: int = cfg.BLOCK_TIME_SECONDS
) -> Countdown:
    remaining = int(cliff_block) - int(current_block)
    if remaining <= 0:
        return Countdown(0, 0, 0, 0, 0, True)

    total = remaining * int(block_time_seconds)
    days, rest = divmod(total, SECONDS_PER_DAY)
    hours, rest = divmod(rest, SECONDS_PER_HOUR)
    minutes, seconds = divmod(rest, SECONDS_PER_MINUTE)
    return Countdown(days, hours, minutes, seconds, total, False)


def format_countdown(countdown: Countdown) -> str:
    if countdown.reached:
        return "Ready to withdraw!"

    parts = []
    if countdown.days:
        parts.append(f"{countdown.days}d")
    if countdown.days or countdown.hours:
        parts.append(f"{countdown.hours}h")
    if countdown.days or countdown.hours or countdown.minutes:
        parts.append(f"{countdown.minutes}m")
    # seconds only matter in the last hour
    if not countdown.days and not countdown.hours:
        parts.append(f"{countdown.seconds}s")
    return " ".join(parts)


def estimated_cliff_time(countdown: Countdown, now: Optional[dt.datetime] = None) -> dt.datetime:
    now = now or dt.datetime.now(dt.timezone.utc)
    return now + dt.timedelta(seconds=countdown.total_seconds)


__all__ = [
    "is_withdrawable",
    "ClaimableEstimate",
    "estimated_claimable",
    "Countdown",
    "countdown_to_cliff",
    "format_countdown",
    "estimated_cliff_time",
]
