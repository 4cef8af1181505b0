from __future__ import annotations

import threading


class Cancelled(Exception):
    pass


class CancellationToken:
    """Marks the end of a console connection or login attempt.

    Checked after every call that can block, so work finishing late never
    touches state owned by something already torn down. Thread-safe because
    Firestore listeners call back from SDK threads.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled()
