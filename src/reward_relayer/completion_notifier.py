"""
Single-subscriber notification of terminal transfer outcomes.
"""

import logging
from collections.abc import Callable

from .models import TransferResult

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[TransferResult], object]


class CompletionNotifier:
    """
    Holds at most one callback and calls it once per terminal request.

    The callback runs synchronously inside the queue processor. It must not
    call back into the relayer pool. Exceptions it raises are logged and
    discarded so that a faulty subscriber never stalls draining.
    """

    def __init__(self) -> None:
        self._callback: CompletionCallback | None = None

    @property
    def callback(self) -> CompletionCallback | None:
        return self._callback

    def register(self, callback: CompletionCallback) -> None:
        """
        Register the completion callback, replacing any previous one.

        Raises:
            TypeError: If callback is not callable
        """
        if not callable(callback):
            raise TypeError("Transaction complete callback must be callable")
        self._callback = callback
        logger.info("Transaction complete callback set")

    def notify(self, result: TransferResult) -> None:
        """Deliver a terminal outcome to the registered callback, if any."""
        if self._callback is None:
            return
        try:
            self._callback(result)
        except Exception as e:
            logger.error(
                f"Transaction complete callback failed for {result.recipient}: {e}",
                exc_info=True
            )
