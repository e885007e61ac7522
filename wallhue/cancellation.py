"""Cooperative cancellation of apply cycles."""

__all__ = ["CancelToken"]


class CancelToken:
    """Flag checked by pipeline stages between units of work.

    Stages look at it only at task boundaries (before a template write starts,
    before a hook is spawned), so setting it never interrupts a write.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self.reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation; the first reason wins."""
        if not self._cancelled:
            self.reason = reason
            self._cancelled = True

    @property
    def cancelled(self) -> bool:
        """Return True once cancellation was requested."""
        return self._cancelled
