"""
Pacer

Inserts the sending-speed delay between consecutive recipients of a run.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Union

from .models import SendingSpeed

logger = logging.getLogger(__name__)

SENDING_SPEED_DELAYS: Dict[SendingSpeed, float] = {
    SendingSpeed.FAST: 0.06,
    SendingSpeed.MEDIUM: 0.12,
    SendingSpeed.SLOW: 0.6,
}

DEFAULT_SPEED = SendingSpeed.MEDIUM

Sleep = Callable[[float], Awaitable[None]]


def delay_for(speed: Optional[Union[SendingSpeed, str]]) -> float:
    """Delay in seconds for a speed tier; unknown or missing tiers use MEDIUM"""
    if speed is None:
        return SENDING_SPEED_DELAYS[DEFAULT_SPEED]
    try:
        return SENDING_SPEED_DELAYS[SendingSpeed(speed)]
    except ValueError:
        logger.debug(f"Unknown sending speed {speed!r}, using {DEFAULT_SPEED.value}")
        return SENDING_SPEED_DELAYS[DEFAULT_SPEED]


class Pacer:
    """Suspends the run between recipients"""

    def __init__(self, sleep: Optional[Sleep] = None):
        self._sleep = sleep or asyncio.sleep

    async def delay(self, speed: Optional[Union[SendingSpeed, str]]) -> float:
        seconds = delay_for(speed)
        await self._sleep(seconds)
        return seconds


__all__ = ["SENDING_SPEED_DELAYS", "DEFAULT_SPEED", "delay_for", "Pacer"]
