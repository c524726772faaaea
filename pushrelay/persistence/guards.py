from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from pushrelay.core.errors import StoreUnavailable


# Connection-level failures; constraint violations and programming errors stay as-is.
_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError, ConnectionError, OSError)


def is_store_unavailable(exc: BaseException) -> bool:
    return isinstance(exc, (StoreUnavailable, *_UNAVAILABLE_ERRORS))


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    # Translate driver connectivity failures so the queue layer can decide on a whole-job retry.
    try:
        yield
    except StoreUnavailable:
        raise
    except _UNAVAILABLE_ERRORS as exc:
        raise StoreUnavailable(f"Store unavailable during {operation}") from exc
