from __future__ import annotations

from typing import Iterable, Iterator, List, Optional

from .errors import ConfigurationError
from .types import BackendConfig


class BackendRegistry:
    """Read-only view over the configured backends.

    Built once at startup and shared by every orchestration; nothing mutates it
    afterwards, so concurrent waves can read it freely.
    """

    def __init__(self, backends: Iterable[BackendConfig]) -> None:
        self._all: List[BackendConfig] = list(backends)
        self._enabled: List[BackendConfig] = [b for b in self._all if b.enabled]
        if not self._enabled:
            raise ConfigurationError("Backend registry has no enabled entries")
        order = {b.name: i for i, b in enumerate(self._all)}
        self._by_cost: List[BackendConfig] = sorted(
            self._enabled, key=lambda b: (b.price, order[b.name])
        )

    def __iter__(self) -> Iterator[BackendConfig]:
        return iter(self._all)

    def __len__(self) -> int:
        return len(self._all)

    @property
    def enabled(self) -> List[BackendConfig]:
        return list(self._enabled)

    @property
    def by_cost(self) -> List[BackendConfig]:
        """Enabled backends, cheapest first; registry order breaks price ties."""
        return list(self._by_cost)

    def get(self, name: Optional[str]) -> Optional[BackendConfig]:
        """Return the enabled backend called ``name``, if any."""
        if not name:
            return None
        for backend in self._enabled:
            if backend.name == name:
                return backend
        return None

    def cheapest(self) -> BackendConfig:
        return self._by_cost[0]
