"""
Result Wrapper

Runs a fallible call and hands back a (value, error) pair instead of
raising, so the request path can branch on failures explicitly:

    value, error = try_sync(parse, raw)
    if error:
        return ...

A call succeeded when ``error is None``. ``value`` may still be None
on success (a storage lookup that found nothing, for instance).
"""

from typing import Any, Awaitable, Callable, NamedTuple, Optional


class Result(NamedTuple):
    """Two-slot outcome of a fallible call."""
    value: Any = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def try_sync(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Result:
    """Call ``fn`` and capture its return value or the exception it raised."""
    try:
        return Result(fn(*args, **kwargs), None)
    except Exception as e:
        return Result(None, e)


async def try_async(fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Result:
    """
    Await ``fn(*args, **kwargs)`` and capture the outcome.

    Only ``Exception`` is captured; cancellation still propagates so a
    cancelled request is not mistaken for a failed call.
    """
    try:
        return Result(await fn(*args, **kwargs), None)
    except Exception as e:
        return Result(None, e)
