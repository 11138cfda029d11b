"""Generation lifecycle as an explicit state machine.

The host delivers three kinds of events -- install, activate, and a message
asking for immediate activation.  :class:`LifecycleController` turns them
into :class:`~shellcache.versioning.VersionManager` calls and tracks each
generation through::

    installing --> waiting --> active --> redundant
        |
        +--> (discarded, install failed)

Every state change goes through :meth:`LifecycleController._transition`,
which rejects moves not listed in :data:`TRANSITIONS`.  After an activation
all registered :class:`Consumer` objects are told which version now
controls them.
"""

from __future__ import annotations

import enum
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from shellcache.exceptions import LifecycleError
from shellcache.models import GenerationConfig
from shellcache.versioning import Generation, VersionManager

logger = logging.getLogger(__name__)

ACTIVATE_MESSAGES = frozenset({"ACTIVATE_NOW", "SKIP_WAITING"})
"""Messages that force the waiting generation to activate."""


class GenerationState(str, enum.Enum):
    INSTALLING = "installing"
    WAITING = "waiting"
    ACTIVE = "active"
    REDUNDANT = "redundant"


TRANSITIONS: dict[Optional[GenerationState], frozenset[GenerationState]] = {
    None: frozenset({GenerationState.INSTALLING}),
    GenerationState.INSTALLING: frozenset({GenerationState.WAITING}),
    GenerationState.WAITING: frozenset({GenerationState.ACTIVE, GenerationState.REDUNDANT}),
    GenerationState.ACTIVE: frozenset({GenerationState.REDUNDANT}),
    GenerationState.REDUNDANT: frozenset({GenerationState.INSTALLING}),
}
"""Allowed moves; ``None`` is a generation the controller has not seen."""


class Consumer(ABC):
    """A connected client that follows the active generation."""

    @abstractmethod
    async def on_controller_change(self, version: str) -> None:
        """Called after *version* became the active generation."""
        ...


class LifecycleController:
    """Drives install and activation from host events.

    Args:
        versions: The version manager doing the actual work.
        config: Supplies the version tag to install and ``skip_waiting``.

    Example::

        controller = LifecycleController(versions, config)
        await controller.on_install()          # installing -> waiting
        await controller.on_message("ACTIVATE_NOW")  # waiting -> active
    """

    def __init__(self, versions: VersionManager, config: GenerationConfig) -> None:
        self._versions = versions
        self._config = config
        self._states: dict[str, GenerationState] = {}
        self._consumers: list[Consumer] = []
        versions.add_activation_listener(self._on_generation_activated)

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    def state_of(self, version: str) -> Optional[GenerationState]:
        """Current state of *version*, or ``None`` if unknown or discarded."""
        return self._states.get(version)

    @property
    def states(self) -> dict[str, GenerationState]:
        return dict(self._states)

    def register_consumer(self, consumer: Consumer) -> None:
        self._consumers.append(consumer)

    def unregister_consumer(self, consumer: Consumer) -> None:
        if consumer in self._consumers:
            self._consumers.remove(consumer)

    # ------------------------------------------------------------------ #
    # Host events
    # ------------------------------------------------------------------ #

    async def on_install(self, version: Optional[str] = None) -> Generation:
        """Install *version* (default: the configured one).

        On success the generation is waiting, or active right away when
        ``skip_waiting`` is configured.

        Raises:
            InstallError: Installation failed; the generation is forgotten
                and the active generation keeps serving.
        """
        version = version or self._config.version
        self._transition(version, GenerationState.INSTALLING)
        try:
            generation = await self._versions.begin_install(version)
        except Exception:
            self._states.pop(version, None)
            raise
        self._transition(version, GenerationState.WAITING)

        if self._config.skip_waiting:
            await self._versions.activate(version)
        return generation

    async def on_activate(self, version: Optional[str] = None) -> Generation:
        """Activate the waiting generation (or *version*, which must be waiting).

        Raises:
            LifecycleError: No matching generation has finished installing.
        """
        if version is None:
            waiting = self._versions.waiting
            if waiting is None:
                raise LifecycleError("No installed generation is waiting for activation")
            version = waiting.version
        state = self.state_of(version)
        if state is GenerationState.ACTIVE:
            active = self._versions.active
            assert active is not None
            return active
        if state is not GenerationState.WAITING:
            raise LifecycleError(
                f"Generation '{version}' cannot be activated from state {state.value if state else 'unknown'}"
            )
        return await self._versions.activate(version)

    async def on_message(self, data: Any) -> bool:
        """Handle a message from a consumer.

        Returns:
            ``True`` if the message forced an activation.
        """
        if not isinstance(data, str) or data not in ACTIVATE_MESSAGES:
            logger.debug("Ignoring message %r", data)
            return False
        generation = await self._versions.force_activate()
        logger.info("Forced activation of generation %s", generation.version)
        return True

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _transition(self, version: str, new: GenerationState) -> None:
        current = self._states.get(version)
        if new not in TRANSITIONS[current]:
            raise LifecycleError(
                f"Generation '{version}' cannot move from "
                f"{current.value if current else 'unknown'} to {new.value}"
            )
        logger.debug("Generation %s: %s -> %s", version, current.value if current else "-", new.value)
        self._states[version] = new

    async def _on_generation_activated(
        self, generation: Generation, previous: Optional[Generation]
    ) -> None:
        for version, state in list(self._states.items()):
            if version != generation.version and state in (
                GenerationState.ACTIVE,
                GenerationState.WAITING,
            ):
                self._transition(version, GenerationState.REDUNDANT)
        if self._states.get(generation.version) is GenerationState.WAITING:
            self._transition(generation.version, GenerationState.ACTIVE)
        else:
            # activated directly on the version manager (e.g. restored from the store)
            self._states[generation.version] = GenerationState.ACTIVE

        for consumer in list(self._consumers):
            try:
                await consumer.on_controller_change(generation.version)
            except Exception as exc:
                logger.warning("Consumer %r failed to handle controller change: %s", consumer, exc)
