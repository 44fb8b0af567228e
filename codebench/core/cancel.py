class BenchCancelledError(Exception):
    """Raised at a checkpoint once the session's cancellation token has been signalled"""

    def __init__(self, message: str = "Benchmark cancelled"):
        super().__init__(message)


class CancellationToken:
    """Cooperative cancellation flag shared by the phases of one benchmark session.

    Nothing is interrupted when ``cancel()`` is called; the running phase notices
    the flag at its next checkpoint (loop head or received stream chunk) and
    raises ``BenchCancelledError`` from there.
    """

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self, message: str = "Benchmark cancelled") -> None:
        if self._cancelled:
            raise BenchCancelledError(message)
