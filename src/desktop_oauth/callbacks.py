"""Delivery of results to caller-supplied callbacks."""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def deliver(callback: Callable[[T], None], result: T) -> None:
    """Invoke ``callback`` with ``result``.

    A callback that raises is logged; the error never reaches the client's
    own machinery.
    """
    try:
        callback(result)
    except Exception:
        logger.exception("OAuth result callback raised")
