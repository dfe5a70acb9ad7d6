"""Time-ordered unique id generation for feeds.

Ids follow the Sonyflake layout: 39 bits of elapsed time in 10 ms units,
8 bits of per-tick sequence and 16 bits of machine id. Ids from one
generator are strictly increasing; distinct machine ids never collide.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)

BIT_LEN_TIME = 39
BIT_LEN_SEQUENCE = 8
BIT_LEN_MACHINE_ID = 16

TICK_SECONDS = 0.01
DEFAULT_EPOCH = datetime(2014, 9, 1, tzinfo=timezone.utc)

_SEQUENCE_MASK = (1 << BIT_LEN_SEQUENCE) - 1


class IdGeneratorError(Exception):
    """Generator can no longer produce ids (clock overflow or bad config)."""


class SnowflakeIdGenerator:
    """Thread-safe monotonic id source."""

    def __init__(
        self,
        machine_id: int = 0,
        epoch: datetime = DEFAULT_EPOCH,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """Initialize generator.

        Args:
            machine_id: 16-bit id distinguishing concurrent processes
            epoch: Start of the time component
            clock: Returns seconds since the Unix epoch (defaults to time.time)

        Raises:
            IdGeneratorError: If machine_id does not fit in 16 bits
        """
        if not 0 <= machine_id < (1 << BIT_LEN_MACHINE_ID):
            raise IdGeneratorError(f"machine_id {machine_id} out of range")
        self.machine_id = machine_id
        self._clock = clock or time.time
        self._epoch_ticks = int(epoch.timestamp() / TICK_SECONDS)
        self._lock = threading.Lock()
        self._elapsed = 0
        self._sequence = _SEQUENCE_MASK

    def _current_elapsed(self) -> int:
        return int(self._clock() / TICK_SECONDS) - self._epoch_ticks

    def next_id(self) -> int:
        """Return the next id.

        When a tick's sequence space is exhausted, or the clock has gone
        backwards, the time component advances logically past the wall clock.

        Raises:
            IdGeneratorError: If the time component overflows 39 bits
        """
        with self._lock:
            current = self._current_elapsed()
            if self._elapsed < current:
                self._elapsed = current
                self._sequence = 0
            else:
                self._sequence = (self._sequence + 1) & _SEQUENCE_MASK
                if self._sequence == 0:
                    self._elapsed += 1

            if self._elapsed >= (1 << BIT_LEN_TIME):
                raise IdGeneratorError("Time component overflowed")

            return (
                (self._elapsed << (BIT_LEN_SEQUENCE + BIT_LEN_MACHINE_ID))
                | (self._sequence << BIT_LEN_MACHINE_ID)
                | self.machine_id
            )

    __call__ = next_id
