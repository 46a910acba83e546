"""Abstract service lifecycle interface."""

from __future__ import annotations

from abc import ABC, abstractmethod


class Service(ABC):
    """Base class for long-running components started and stopped with the app."""

    @property
    @abstractmethod
    def service_name(self) -> str:
        ...

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...
