"""
Copy-on-write holder for the config snapshot.

Admin handlers never touch the snapshot directly. They call
ConfigStore.transaction() with a function that maps the current snapshot to
a new one; the store persists the new snapshot to the env file and only then
makes it current. Commits are serialised by a lock and recorded in an
in-memory transaction log.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import RLock
from typing import Callable, Optional

from config_models import Settings
from env_file import EnvFile, to_env

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transaction:
    seq: int
    description: str
    changed_keys: tuple[str, ...]
    committed_at: datetime


class ConfigStore:
    def __init__(self, settings: Settings, env_file: Optional[EnvFile] = None):
        self._current = settings
        self._env_file = env_file
        self._lock = RLock()
        self._history: list[Transaction] = []

    @property
    def current(self) -> Settings:
        return self._current

    @property
    def env_file(self) -> Optional[EnvFile]:
        return self._env_file

    @property
    def history(self) -> tuple[Transaction, ...]:
        with self._lock:
            return tuple(self._history)

    def transaction(self, description: str, mutate: Callable[[Settings], Settings]) -> Settings:
        """
        Apply mutate() to the current snapshot, persist, then swap it in.

        If persisting fails the current snapshot is left unchanged and the
        error propagates to the caller.
        """
        with self._lock:
            before = self._current
            after = mutate(before)
            if not isinstance(after, Settings):
                raise TypeError(f"transaction {description!r} must return Settings, got {type(after).__name__}")

            old_values = to_env(before)
            new_values = to_env(after)
            changed = tuple(k for k, v in new_values.items() if old_values.get(k) != v)

            if self._env_file is not None:
                self._env_file.save(new_values)

            self._current = after
            tx = Transaction(
                seq=len(self._history) + 1,
                description=description,
                changed_keys=changed,
                committed_at=datetime.now(timezone.utc),
            )
            self._history.append(tx)

        logger.info("Config tx #%d committed: %s (changed: %s)", tx.seq, description, ", ".join(changed) or "none")
        return after

    def save(self) -> None:
        """Write the current snapshot as-is (used at startup)."""
        self.transaction("save current settings", lambda settings: settings)
