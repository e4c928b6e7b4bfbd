"""
Per-connection protocol handler.

Maps inbound timer commands to the connection's Timer and to group
membership, and bridges the Timer's ticks to a broadcast on the group
created alongside it. Rejected commands are reported through the
acknowledgment callback, never raised.
"""

import functools
import inspect
import logging
from collections.abc import Callable
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field, StrictStr

from .channel import GroupChannel
from .config import TICK_INTERVAL_MS
from .errors import (
    CommandError,
    ConstructionError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from .ids import IdProvider, RandomIdProvider
from .timer import Clock, DecrementingTimer, Timer

logger = logging.getLogger(__name__)

Ack = Callable[..., None]

TICK_EVENT = "timerTick"
MAX_GROUP_ID_LENGTH = 128
MAX_ID_ATTEMPTS = 10


# ============================================================
# PAYLOADS
# ============================================================


class TimerOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    duration: float | None = Field(None, ge=0, description="Countdown length in ms")


class GroupRequest(BaseModel):
    group_id: StrictStr = Field(..., min_length=1, max_length=MAX_GROUP_ID_LENGTH)


class TimerCreated(BaseModel):
    timer_id: str = Field(..., serialization_alias="timerId")


class TimeReport(BaseModel):
    time: float
    remaining: float | None = None


class ErrorReport(BaseModel):
    error: str = Field(..., min_length=1)


def _reply(ack: Ack | None, payload: BaseModel | None):
    if ack is None:
        return
    if payload is None:
        ack()
    else:
        ack(payload.model_dump(by_alias=True, exclude_none=True))


def command(event: str):
    """Wrap a command body so every outcome is delivered through ``ack``.

    The body returns the success payload (or None for an empty ack) and
    raises CommandError to reject the command.
    """

    def decorate(method):
        signature = inspect.signature(method)

        @functools.wraps(method)
        async def handler(self, *args: Any, ack: Ack | None = None):
            try:
                signature.bind(self, *args)
            except TypeError:
                self._reject(event, ack, ValidationError(f"Unexpected arguments for {event}"))
                return

            try:
                if self.closed:
                    raise StateConflictError("Connection is closed")
                result = await method(self, *args)
            except CommandError as e:
                self._reject(event, ack, e)
                return
            _reply(ack, result)

        return handler

    return decorate


# ============================================================
# CONNECTION EVENT HANDLER
# ============================================================


class ConnectionEventHandler:
    """Owns at most one Timer for a connection and the group it ticks to."""

    def __init__(
        self,
        channel: GroupChannel,
        id_provider: IdProvider | None = None,
        clock: Clock | None = None,
        tick_interval_ms: float = TICK_INTERVAL_MS,
    ):
        if channel is None or not isinstance(channel, GroupChannel):
            raise ConstructionError(f"No valid connection channel provided: {channel!r}")

        self.channel = channel
        self.id_provider = id_provider or RandomIdProvider()
        self.clock = clock
        self.tick_interval_ms = tick_interval_ms

        self.timer: Timer | DecrementingTimer | None = None
        self.timer_id: str | None = None
        self.closed = False

    def subscribe(self):
        """Register the protocol commands on the channel."""
        self.channel.on("createTimer", self.create_timer)
        self.channel.on("startTimer", self.start_timer)
        self.channel.on("stopTimer", self.stop_timer)
        self.channel.on("resetTimer", self.reset_timer)
        self.channel.on("joinTimer", self.join_timer)
        self.channel.on("leaveTimer", self.leave_timer)

    @command("createTimer")
    async def create_timer(self, options: Any = None) -> TimerCreated:
        if self.timer is not None:
            raise StateConflictError("A timer has already been created")

        try:
            opts = TimerOptions.model_validate({} if options is None else options)
        except pydantic.ValidationError:
            raise ValidationError(f"Timer options are not valid: {options!r}") from None

        timer_id = self._new_group_id()
        if opts.duration is None:
            timer = Timer(clock=self.clock, tick_interval_ms=self.tick_interval_ms)
        else:
            timer = DecrementingTimer(
                opts.duration, clock=self.clock, tick_interval_ms=self.tick_interval_ms
            )
        timer.subscribe(self._on_tick)

        # Claim the slot before yielding so an overlapping createTimer is rejected
        self.timer = timer
        self.timer_id = timer_id
        try:
            await self.channel.join(timer_id)
        except BaseException:
            self.timer = None
            self.timer_id = None
            raise

        if self.closed:
            # close() ran while joining and could not see the new group
            self.timer = None
            await self.channel.leave(timer_id)
            raise StateConflictError("Connection is closed")

        logger.info("Connection %s created timer %s", self.channel.id, timer_id)
        return TimerCreated(timer_id=timer_id)

    @command("startTimer")
    async def start_timer(self) -> TimeReport:
        timer = self._owned_timer()
        if not timer.start():
            raise StateConflictError("Timer failed to start: it is already running")
        logger.info("Timer %s started at %.0f ms", self.timer_id, timer.elapsed())
        return self._report(timer.elapsed())

    @command("stopTimer")
    async def stop_timer(self) -> TimeReport:
        timer = self._owned_timer()
        timer.stop()
        logger.info("Timer %s stopped at %.0f ms", self.timer_id, timer.elapsed())
        return self._report(timer.elapsed())

    @command("resetTimer")
    async def reset_timer(self) -> TimeReport:
        timer = self._owned_timer()
        timer.reset()
        logger.info("Timer %s reset", self.timer_id)
        return self._report(timer.elapsed())

    @command("joinTimer")
    async def join_timer(self, group_id: Any = None) -> None:
        group_id = self._validate_group(group_id)
        if group_id == self.channel.id:
            raise ValidationError(f"Cannot join the connection's own id: {group_id}")
        if group_id in self.channel.membership():
            raise StateConflictError(f"timerId has already been joined: {group_id}")

        await self.channel.join(group_id)
        logger.info("Connection %s joined %s", self.channel.id, group_id)

    @command("leaveTimer")
    async def leave_timer(self, group_id: Any = None) -> None:
        if group_id is None:
            groups = self.channel.membership()
        else:
            groups = {self._validate_group(group_id)} & self.channel.membership()

        for group in groups:
            await self.channel.leave(group)
            logger.info("Connection %s left %s", self.channel.id, group)

        if self.timer is not None:
            self.timer.stop()

    async def close(self):
        """Release the Timer and every group membership. Safe to repeat."""
        if self.closed:
            return
        self.closed = True

        if self.timer is not None:
            self.timer.stop()
            self.timer = None

        for group in self.channel.membership():
            await self.channel.leave(group)
        logger.info("Connection %s closed", self.channel.id)

    # ---- internals ----

    def _owned_timer(self) -> Timer | DecrementingTimer:
        if self.timer is None:
            raise NotFoundError("No timer has been created")
        return self.timer

    def _new_group_id(self) -> str:
        for _ in range(MAX_ID_ATTEMPTS):
            group_id = self.id_provider.new_id()
            if group_id != self.channel.id:
                return group_id
        raise StateConflictError("Could not allocate a timer id")

    def _validate_group(self, group_id: Any) -> str:
        try:
            return GroupRequest(group_id=group_id).group_id
        except pydantic.ValidationError:
            raise ValidationError(f"timerId is not valid: {group_id!r}") from None

    def _report(self, elapsed: float) -> TimeReport:
        if isinstance(self.timer, DecrementingTimer):
            return TimeReport(time=elapsed, remaining=max(0, self.timer.duration - elapsed))
        return TimeReport(time=elapsed)

    async def _on_tick(self, elapsed: float):
        if self.timer_id is None:
            return
        payload = self._report(elapsed).model_dump(exclude_none=True)
        await self.channel.broadcast_to_group(self.timer_id, TICK_EVENT, payload)

    def _reject(self, event: str, ack: Ack | None, error: CommandError):
        logger.warning("Rejected %s from %s: %s", event, self.channel.id, error)
        _reply(ack, ErrorReport(error=str(error)))
