"""Cooperative cancellation shared by the download workers of one version.

When one archive download fails, its siblings should stop promptly instead of
finishing transfers whose results will never be persisted.  Workers poll a
:class:`CancellationToken` between chunks; the coordinator owns a
:class:`CancellationTokenGroup` and cancels every token in it on the first
failure.
"""

from __future__ import annotations

import threading

__all__ = ["CancellationToken", "CancellationTokenGroup"]


class CancellationToken:
    """Thread-safe flag checked by a download worker.

    Examples:
        >>> token = CancellationToken()
        >>> token.is_cancelled()
        False
        >>> token.cancel()
        >>> token.is_cancelled()
        True
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()


class CancellationTokenGroup:
    """Tokens cancelled together, one per in-flight artifact task."""

    def __init__(self) -> None:
        self._tokens: list[CancellationToken] = []
        self._lock = threading.Lock()
        self._cancelled = False

    def create_token(self) -> CancellationToken:
        """Create a token in this group; it starts cancelled if the group already is."""

        token = CancellationToken()
        with self._lock:
            self._tokens.append(token)
            if self._cancelled:
                token.cancel()
        return token

    def remove_token(self, token: CancellationToken) -> None:
        with self._lock:
            try:
                self._tokens.remove(token)
            except ValueError:
                pass

    def cancel_all(self) -> None:
        with self._lock:
            self._cancelled = True
            for token in self._tokens:
                token.cancel()

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
