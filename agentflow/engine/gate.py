"""
One-shot suspend/resume primitive for human input.
"""

from typing import Optional
import asyncio
import logging

from agentflow.engine.state import UserInputResponse


logger = logging.getLogger(__name__)


class UserInputGate:
    """
    Parks the run loop until a value is submitted or the wait is cancelled.

    Cancellation resolves the wait with an empty response instead of raising,
    so the waiting side needs no extra branch for it. Only one wait may be
    outstanding at a time.

    ``arm`` opens the gate ahead of ``wait`` so that a value submitted while
    the prompt is being published is not lost:

        gate.arm()
        publish_prompt()
        response = await gate.wait()
    """

    def __init__(self):
        self._future: Optional[asyncio.Future] = None
        self._awaited: Optional[asyncio.Future] = None

    @property
    def is_waiting(self) -> bool:
        """True while the gate is open and unresolved."""
        return self._future is not None and not self._future.done()

    def arm(self) -> None:
        if self.is_waiting:
            raise RuntimeError("UserInputGate already has a pending wait")
        self._future = asyncio.get_running_loop().create_future()

    async def wait(self) -> UserInputResponse:
        if self._future is None or (self._future.done() and self._future is self._awaited):
            self.arm()

        future = self._future
        if future is self._awaited:
            raise RuntimeError("UserInputGate already has a pending wait")

        self._awaited = future
        try:
            return await future
        finally:
            # A newer wait may have been armed after this one was cancelled
            if self._future is future:
                self._future = None
            if self._awaited is future:
                self._awaited = None

    def submit(self, response: UserInputResponse) -> bool:
        """Resolve the pending wait. Returns False when nothing is waiting."""
        if not self.is_waiting:
            logger.debug("Ignoring user input: no pending wait")
            return False
        self._future.set_result(response)
        return True

    def cancel(self) -> None:
        if self.is_waiting:
            self._future.set_result(UserInputResponse(step_id="", value=""))
