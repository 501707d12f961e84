"""Cache generation lifecycle and the application instances it controls."""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class LifecycleError(Exception):
    """Raised on a transition the generation state machine does not allow."""


class GenerationState(Enum):
    UNINSTALLED = "uninstalled"
    INSTALLED = "installed"
    ACTIVE = "active"
    REDUNDANT = "redundant"


_TRANSITIONS = {
    GenerationState.UNINSTALLED: {GenerationState.INSTALLED},
    GenerationState.INSTALLED: {GenerationState.ACTIVE, GenerationState.REDUNDANT},
    GenerationState.ACTIVE: {GenerationState.REDUNDANT},
    GenerationState.REDUNDANT: set(),
}


@dataclass
class Generation:
    version_tag: str
    state: GenerationState = GenerationState.UNINSTALLED
    skip_waiting: bool = False
    installed_at: Optional[float] = None
    activated_at: Optional[float] = None

    def transition(self, target: GenerationState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise LifecycleError(
                f"{self.version_tag}: cannot go from {self.state.value} to {target.value}"
            )
        logger.debug("%s: %s -> %s", self.version_tag, self.state.value, target.value)
        self.state = target
        if target is GenerationState.INSTALLED:
            self.installed_at = time.time()
        elif target is GenerationState.ACTIVE:
            self.activated_at = time.time()


class Registration:
    """
    Active and waiting generations for one origin.

    A newly installed generation waits until it calls skip-waiting or
    nothing is active; activating it retires the previous one.
    """

    def __init__(self) -> None:
        self.active: Optional[Generation] = None
        self.waiting: Optional[Generation] = None

    def mark_installed(self, generation: Generation) -> None:
        generation.transition(GenerationState.INSTALLED)
        if self.waiting is not None and self.waiting is not generation:
            self.waiting.transition(GenerationState.REDUNDANT)
        self.waiting = generation

    def can_activate(self, generation: Generation) -> bool:
        return (
            self.waiting is generation
            and (generation.skip_waiting or self.active is None)
        )

    def activate(self, generation: Generation) -> Optional[Generation]:
        """Promote the waiting generation; return the one it replaced."""
        if self.waiting is not generation:
            raise LifecycleError(f"{generation.version_tag} is not the waiting generation")
        if not self.can_activate(generation):
            raise LifecycleError(
                f"{generation.version_tag} is waiting for "
                f"{self.active.version_tag} to release its clients"
            )
        previous = self.active
        if previous is not None:
            previous.transition(GenerationState.REDUNDANT)
        generation.transition(GenerationState.ACTIVE)
        self.active = generation
        self.waiting = None
        return previous


@dataclass
class Client:
    """An open instance of the booking application."""
    id: str
    url: str
    controller: Optional[str] = None
    opened_at: float = field(default_factory=time.time)


class ClientRegistry:
    def __init__(self) -> None:
        self._clients: Dict[str, Client] = {}
        self._ids = itertools.count(1)

    def open(self, url: str, controller: Optional[str] = None) -> Client:
        client = Client(id=f"client-{next(self._ids)}", url=url, controller=controller)
        self._clients[client.id] = client
        return client

    def match_all(self) -> List[Client]:
        return list(self._clients.values())

    def claim(self, version_tag: str) -> int:
        """Put every open client under version_tag's control."""
        for client in self._clients.values():
            client.controller = version_tag
        return len(self._clients)
