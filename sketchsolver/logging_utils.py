"""DEBUG tracing of solver entry points.

Arguments and results are rendered compactly: numpy arrays as shape plus
range, handles and variable keys in their ``#i.x`` form, islands and residual
blocks by their size.
"""

from __future__ import annotations

import inspect
import logging
import time
from functools import wraps
from typing import Any, Callable, Iterable, Mapping, MutableMapping, Optional, Sequence, TypeVar, cast

import numpy as np

from .sketch import Handle

F = TypeVar("F", bound=Callable[..., Any])

_MAX_ITEMS = 6
_MAX_TEXT = 240


def _describe_array(value: np.ndarray) -> str:
    head = f"array{tuple(value.shape)}"
    if value.size == 0 or not np.issubdtype(value.dtype, np.number):
        return head
    if value.size <= _MAX_ITEMS:
        return f"{head} {np.array2string(value.ravel(), precision=4)}"
    finite = value[np.isfinite(value)]
    if finite.size == 0:
        return f"{head} non-finite"
    return f"{head} in [{float(finite.min()):.4g}, {float(finite.max()):.4g}]"


def _is_var_key(value: Any) -> bool:
    return (
        isinstance(value, tuple)
        and len(value) == 2
        and isinstance(value[0], Handle)
        and isinstance(value[1], str)
    )


def _describe_items(items: Sequence[Any], brackets: str) -> str:
    shown = [describe(item) for item in items[:_MAX_ITEMS]]
    if len(items) > _MAX_ITEMS:
        shown.append(f"+{len(items) - _MAX_ITEMS} more")
    return brackets[0] + ", ".join(shown) + brackets[1]


def describe(value: Any) -> str:
    """Short, log-friendly rendering of ``value``."""

    if isinstance(value, np.ndarray):
        return _describe_array(value)
    if isinstance(value, Handle):
        return str(value)
    if _is_var_key(value):
        return f"{value[0]}.{value[1]}"
    if hasattr(value, "specs") and hasattr(value, "rows"):
        free = getattr(value, "variables", None) or getattr(value, "free", ())
        return f"{type(value).__name__}(free={len(free)}, rows={value.rows})"
    if hasattr(value, "func") and hasattr(value, "jac") and hasattr(value, "key"):
        return f"block {value.key} ({value.size} rows)"
    if isinstance(value, Mapping):
        pairs = [f"{describe(k)}={describe(v)}" for k, v in list(value.items())[:_MAX_ITEMS]]
        if len(value) > _MAX_ITEMS:
            pairs.append(f"+{len(value) - _MAX_ITEMS} more")
        return "{" + ", ".join(pairs) + "}"
    if isinstance(value, tuple):
        return _describe_items(value, "()")
    if isinstance(value, list):
        return _describe_items(value, "[]")
    if isinstance(value, float):
        return f"{value:.6g}"
    text = repr(value)
    if len(text) > _MAX_TEXT:
        text = text[:_MAX_TEXT] + "..."
    return text


def traced(logger: logging.Logger, name: Optional[str] = None) -> Callable[[F], F]:
    """Decorator logging arguments, result and wall time of a call at DEBUG."""

    def decorator(func: F) -> F:
        if getattr(func, "__traced__", False):
            return func
        label = name or func.__qualname__

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any):
            if not logger.isEnabledFor(logging.DEBUG):
                return func(*args, **kwargs)
            shown = [describe(arg) for arg in args]
            shown.extend(f"{key}={describe(val)}" for key, val in kwargs.items())
            logger.debug("-> %s(%s)", label, ", ".join(shown))
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception:
                logger.debug("<- %s raised after %.2f ms", label, 1e3 * (time.perf_counter() - started), exc_info=True)
                raise
            logger.debug("<- %s = %s (%.2f ms)", label, describe(result), 1e3 * (time.perf_counter() - started))
            return result

        setattr(wrapper, "__traced__", True)
        return cast(F, wrapper)

    return decorator


def apply_debug_logging(
    namespace: MutableMapping[str, Any],
    *,
    logger: Optional[logging.Logger] = None,
    skip: Optional[Iterable[str]] = None,
) -> None:
    """Trace every public function defined in the module owning ``namespace``."""

    module = namespace.get("__name__")
    logger = logger or logging.getLogger(str(module))
    skipped = set(skip or ())
    for attr, value in list(namespace.items()):
        if attr.startswith("_") or attr in skipped:
            continue
        if inspect.isfunction(value) and value.__module__ == module:
            namespace[attr] = traced(logger, attr)(value)


__all__ = ["apply_debug_logging", "describe", "traced"]
