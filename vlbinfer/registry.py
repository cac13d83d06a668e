"""
Explicit registry for optional backends.

Optional handlers (plotting backends, data-format readers, ...) are
registered by the caller at startup under a ``(kind, name)`` pair and
looked up by name when needed.  Nothing is registered on import.

>>> from vlbinfer import registry, plotting
>>> plotting.register_backends()
>>> registry.available("caltable")
['matplotlib']
"""

from __future__ import annotations

import logging
from typing import Callable

logger = logging.getLogger(__name__)

_REGISTRY: dict[str, dict[str, Callable]] = {}


def register(kind: str, name: str, handler: Callable, overwrite: bool = False) -> None:
    """Register ``handler`` as backend ``name`` for ``kind``.

    Raises
    ------
    ValueError
        If the name is taken and ``overwrite`` is False.
    TypeError
        If ``handler`` is not callable.
    """
    if not callable(handler):
        raise TypeError(f"Handler for {kind}/{name} is not callable: {handler!r}")
    handlers = _REGISTRY.setdefault(kind, {})
    if name in handlers and not overwrite:
        raise ValueError(
            f"A {kind!r} backend named {name!r} is already registered; "
            "pass overwrite=True to replace it"
        )
    handlers[name] = handler
    logger.debug("Registered %s backend %r.", kind, name)


def unregister(kind: str, name: str) -> None:
    try:
        del _REGISTRY[kind][name]
    except KeyError:
        raise KeyError(f"No {kind!r} backend named {name!r}") from None


def get(kind: str, name: str) -> Callable:
    """Look up a registered handler.

    Raises
    ------
    KeyError
        If nothing is registered under ``(kind, name)``; the message
        lists the registered names.
    """
    handlers = _REGISTRY.get(kind, {})
    if name not in handlers:
        raise KeyError(
            f"No {kind!r} backend named {name!r}; registered: {sorted(handlers)}"
        )
    return handlers[name]


def available(kind: str) -> list[str]:
    return sorted(_REGISTRY.get(kind, {}))
