"""Registry of named, overridable launch phases."""

import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Callable

from common.errors import UnknownTaskError

logger: logging.Logger = logging.getLogger(__name__)

TaskAction = Callable[..., Awaitable[Any]]


@dataclass
class TaskRegistration:
    """Stores the currently registered action for a phase."""

    name: str
    action: TaskAction
    description: str = ""
    overridden: bool = False


class TaskRegistry:
    """Maps phase names to async actions.

    Actions are called as ``action(env, **params)``. Overriding a phase replaces
    its action entirely; the previous action is not called.
    """

    def __init__(self) -> None:
        self._registry: dict[str, TaskRegistration] = {}
        self.env: Any = None

    def register(self, name: str, action: TaskAction, description: str = "") -> None:
        """Registers the default action for a phase."""
        self._registry[name] = TaskRegistration(name, action, description)

    def override(self, name: str, action: TaskAction) -> None:
        """Replaces the action of an already registered phase."""
        if name not in self._registry:
            raise UnknownTaskError(name, list(self._registry.keys()))
        registration = self._registry[name]
        logger.debug(f"Overriding task '{name}'")
        self._registry[name] = TaskRegistration(
            name, action, registration.description, overridden=True
        )

    def get(self, name: str) -> TaskRegistration:
        if name not in self._registry:
            raise UnknownTaskError(name, list(self._registry.keys()))
        return self._registry[name]

    def __contains__(self, name: str) -> bool:
        return name in self._registry

    async def run(self, name: str, **params: Any) -> Any:
        """Runs the currently registered action for a phase."""
        registration = self.get(name)
        logger.debug(f"Running task '{name}'")
        return await registration.action(self.env, **params)
