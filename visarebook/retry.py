from __future__ import annotations

import enum
import errno
import socket
from typing import Iterator

import httpx


class ErrorKind(enum.Enum):
    TRANSIENT_NETWORK = "transient_network"
    OTHER = "other"


_TRANSIENT_ERRNOS = {errno.ECONNRESET, errno.ETIMEDOUT, errno.ECONNREFUSED, errno.ECONNABORTED, errno.EPIPE}

_TRANSIENT_MESSAGES = ("socket hang up", "network", "connection")


def _error_chain(error: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _is_transient(error: BaseException) -> bool:
    # httpx.TransportError covers connect/read/write/pool timeouts and protocol errors.
    if isinstance(error, (httpx.TransportError, ConnectionError, TimeoutError, socket.gaierror)):
        return True
    if isinstance(error, OSError) and error.errno in _TRANSIENT_ERRNOS:
        return True
    message = str(error).lower()
    return any(m in message for m in _TRANSIENT_MESSAGES)


def classify(error: BaseException) -> ErrorKind:
    """Connection resets, DNS failures and timeouts are transient; everything else is not."""
    if any(_is_transient(e) for e in _error_chain(error)):
        return ErrorKind.TRANSIENT_NETWORK
    return ErrorKind.OTHER
