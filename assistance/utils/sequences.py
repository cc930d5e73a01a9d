"""
Lazy, restartable async sequences over MongoDB queries
"""
from typing import AsyncIterator, Callable, Generic, List, TypeVar

T = TypeVar("T")


class RestartableQuery(Generic[T]):
    """
    Async iterable that re-runs its query every time it is iterated

    The factory is called once per iteration and must return a fresh
    async iterator, so each pass observes the persisted state at that time.
    Nothing is buffered between passes.
    """

    def __init__(self, factory: Callable[[], AsyncIterator[T]]):
        self._factory = factory

    def __aiter__(self) -> AsyncIterator[T]:
        return self._factory()

    async def to_list(self) -> List[T]:
        """Drain one pass of the sequence into a list"""
        return [item async for item in self]
