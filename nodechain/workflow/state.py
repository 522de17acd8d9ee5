""" Persistent key/value state shared by the runs of one workflow. """
import asyncio
import copy
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class StateClient(ABC):
    """ State store read by `{{ state.* }}` references and written by upsert-state nodes. """

    @abstractmethod
    async def get_all(self) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass


class InMemoryStateClient(StateClient):
    """ Process-local store; values are copied in and out so callers cannot alias them. """

    def __init__(self, namespace: str = "default"):
        self.namespace = namespace
        self._state: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def get_all(self) -> Dict[str, Any]:
        async with self._lock:
            return copy.deepcopy(self._state)

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            return copy.deepcopy(self._state.get(key))

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            self._state[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._state.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._state.clear()
