"""Bounded, cancellable polling of stack status."""

import logging
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from stackwarden.errors import PollCancelled, PollTimeout, ProviderUnavailable
from stackwarden.models import StackState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Backoff:
    """Exponential backoff with a per-attempt cap and a hard ceiling on total wait."""

    initial: float = 5.0
    multiplier: float = 1.5
    max_interval: float = 30.0
    ceiling: float = 1800.0

    def delays(self) -> Iterator[float]:
        """Yield successive delays until their sum would pass the ceiling."""
        delay = self.initial
        total = 0.0
        while total < self.ceiling:
            step = min(delay, self.max_interval, self.ceiling - total)
            total += step
            yield step
            delay *= self.multiplier


class Poller:
    """Repeatedly fetches stack state until it satisfies a predicate.

    ``sleep`` is the waiting strategy. Tests inject a zero-delay fake; by
    default the poller waits on ``cancel_event`` so that setting the event
    interrupts the wait immediately.
    """

    def __init__(
        self,
        backoff: Backoff | None = None,
        sleep: Callable[[float], None] | None = None,
        cancel_event: threading.Event | None = None,
        max_transient_retries: int = 5,
    ):
        self._backoff = backoff or Backoff()
        self._sleep = sleep
        self._cancel = cancel_event or threading.Event()
        self._max_transient_retries = max_transient_retries

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel

    def cancel(self) -> None:
        self._cancel.set()

    def wait(
        self,
        stack_name: str,
        fetch: Callable[[], StackState],
        done: Callable[[StackState], bool],
    ) -> StackState:
        """Poll ``fetch`` until ``done`` holds, returning the final state.

        Raises PollCancelled, PollTimeout, or ProviderUnavailable once
        transient retries are exhausted.
        """
        waited = 0.0
        last_status = None
        last_error = None
        transient_failures = 0
        delays = self._backoff.delays()

        while True:
            if self._cancel.is_set():
                raise PollCancelled(stack_name)

            try:
                state = fetch()
            except KeyboardInterrupt:
                raise PollCancelled(stack_name) from None
            except ProviderUnavailable as e:
                transient_failures += 1
                if transient_failures > self._max_transient_retries:
                    raise
                last_error = e
                logger.warning(
                    "Provider unavailable while polling %s (attempt %d/%d)",
                    stack_name,
                    transient_failures,
                    self._max_transient_retries,
                )
            else:
                transient_failures = 0
                last_error = None
                last_status = state.status.value
                if done(state):
                    return state
                logger.info("Waiting on %s: %s", stack_name, last_status)

            delay = next(delays, None)
            if delay is None:
                if last_error is not None:
                    raise last_error
                raise PollTimeout(stack_name, waited, last_status)
            self._pause(stack_name, delay)
            waited += delay

    def _pause(self, stack_name: str, delay: float) -> None:
        try:
            if self._sleep is not None:
                self._sleep(delay)
                cancelled = self._cancel.is_set()
            else:
                cancelled = self._cancel.wait(delay)
        except KeyboardInterrupt:
            cancelled = True
        if cancelled:
            raise PollCancelled(stack_name)
