"""Service layer for the mediadocs pipeline."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class SupportsAsyncClose(Protocol):
    """Protocol describing resources that hold connections until closed."""

    async def close(self) -> None:
        """Release any acquired resources."""


__all__ = ["SupportsAsyncClose"]
