from abc import ABC, abstractmethod
from typing import Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


class StateStore(ABC, Generic[T]):
    """Per-user state keyed by UserId.

    Entries for different users are independent, so implementations do not
    need a global lock. Handling for a single user is serialized upstream.
    """

    @abstractmethod
    def get(self, user_id: str) -> Optional[T]:
        pass

    @abstractmethod
    def set(self, user_id: str, value: T) -> None:
        pass

    @abstractmethod
    def delete(self, user_id: str) -> None:
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        pass


class InMemoryStateStore(StateStore[T]):
    """Process-local store; state is lost on restart."""

    def __init__(self) -> None:
        self._data: Dict[str, T] = {}

    def get(self, user_id: str) -> Optional[T]:
        return self._data.get(user_id)

    def set(self, user_id: str, value: T) -> None:
        self._data[user_id] = value

    def delete(self, user_id: str) -> None:
        self._data.pop(user_id, None)

    def keys(self) -> List[str]:
        return list(self._data.keys())

    def __len__(self) -> int:
        return len(self._data)
