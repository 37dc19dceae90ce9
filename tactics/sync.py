"""
State sync layer for battles shared between two remote clients.

Holds version-stamped state blobs, an append-only action log, and the phase
guard that reconciles lobby flags with the recorded match phase.
"""

import copy
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .actions import Action, ActionType, BattleEngine
from .state import TacticalGameState
from .units import Player

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class PersistenceConflict(Exception):
    """A write carried a stale version; re-fetch and retry."""

    def __init__(self, match_id: str, expected: int, actual: int):
        super().__init__(f"Match {match_id}: expected version {expected}, store has {actual}")
        self.match_id = match_id
        self.expected = expected
        self.actual = actual


class MatchPhase(Enum):
    LOBBY = "lobby"
    DECKBUILDING = "deckbuilding"
    DEPLOYMENT = "deployment"
    COMBAT_SETUP = "combat_setup"  # legacy
    COMBAT = "combat"
    FINISHED = "finished"


@dataclass
class MatchFlags:
    """Readiness flags set by the lobby collaborators."""
    player1_deck_confirmed: bool = False
    player2_deck_confirmed: bool = False
    player1_deployment_confirmed: bool = False
    player2_deployment_confirmed: bool = False

    @property
    def decks_confirmed(self) -> bool:
        return self.player1_deck_confirmed and self.player2_deck_confirmed

    @property
    def deployments_confirmed(self) -> bool:
        return self.player1_deployment_confirmed and self.player2_deployment_confirmed


@dataclass
class VersionedState:
    """A serialized battle state and its monotonically increasing version."""
    version: int
    blob: dict

    @classmethod
    def wrap(cls, state: TacticalGameState, version: int) -> "VersionedState":
        return cls(version=version, blob=state.to_dict())

    def state(self) -> TacticalGameState:
        return TacticalGameState.from_dict(self.blob)


@dataclass
class ActionLogEntry:
    """One applied action, for audit and replay."""
    actor_id: str
    action_type: str
    payload: dict
    phase_at_time: str
    resulting_version: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class MatchRecord:
    """Everything persisted for one match."""
    match_id: str
    phase: MatchPhase = MatchPhase.LOBBY
    flags: MatchFlags = field(default_factory=MatchFlags)
    state: Optional[VersionedState] = None
    actions: list[ActionLogEntry] = field(default_factory=list)
    notices: list[str] = field(default_factory=list)

    @property
    def version(self) -> int:
        return self.state.version if self.state else 0

    def to_dict(self) -> dict:
        return {
            "match_id": self.match_id,
            "phase": self.phase.value,
            "flags": vars(self.flags).copy(),
            "state": {"version": self.state.version, "blob": self.state.blob} if self.state else None,
            "actions": [vars(a).copy() for a in self.actions],
            "notices": list(self.notices),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MatchRecord":
        state = data.get("state")
        return cls(
            match_id=data["match_id"],
            phase=MatchPhase(data.get("phase", MatchPhase.LOBBY.value)),
            flags=MatchFlags(**data.get("flags", {})),
            state=VersionedState(state["version"], state["blob"]) if state else None,
            actions=[ActionLogEntry(**a) for a in data.get("actions", [])],
            notices=list(data.get("notices", [])),
        )


class MatchStore:
    """In-memory match persistence with per-match locking.

    Reads return copies; writes go through `save` (optimistic, version checked)
    or `update` (read-modify-write under the match lock).
    """

    def __init__(self):
        self._records: dict[str, MatchRecord] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _lock(self, match_id: str) -> threading.RLock:
        with self._registry_lock:
            return self._locks.setdefault(match_id, threading.RLock())

    # Storage hooks
    def _read(self, match_id: str) -> Optional[MatchRecord]:
        record = self._records.get(match_id)
        return copy.deepcopy(record) if record else None

    def _write(self, record: MatchRecord):
        self._records[record.match_id] = copy.deepcopy(record)

    # Contract
    def create(self, match_id: str, phase: MatchPhase = MatchPhase.LOBBY) -> MatchRecord:
        with self._lock(match_id):
            if self._read(match_id) is not None:
                raise ValueError(f"Match {match_id} already exists")
            record = MatchRecord(match_id=match_id, phase=phase)
            self._write(record)
            return copy.deepcopy(record)

    def get(self, match_id: str) -> MatchRecord:
        record = self._read(match_id)
        if record is None:
            raise KeyError(match_id)
        return record

    def exists(self, match_id: str) -> bool:
        return self._read(match_id) is not None

    def update(self, match_id: str, fn: Callable[[MatchRecord], None]) -> MatchRecord:
        """Atomically apply fn to the stored record and persist the result."""
        with self._lock(match_id):
            record = self.get(match_id)
            before = record.version
            fn(record)
            if record.version < before:
                raise PersistenceConflict(match_id, before, record.version)
            self._write(record)
            return copy.deepcopy(record)

    def save(self, match_id: str, state: VersionedState, expected_version: int) -> MatchRecord:
        """Store a new state if the stored version still equals expected_version."""
        with self._lock(match_id):
            record = self.get(match_id)
            if record.version != expected_version or state.version <= record.version:
                raise PersistenceConflict(match_id, expected_version, record.version)
            record.state = state
            self._write(record)
            return record

    def append_action(self, match_id: str, entry: ActionLogEntry):
        self.update(match_id, lambda record: record.actions.append(entry))


class JsonMatchStore(MatchStore):
    """MatchStore persisted as one JSON file per match."""

    def __init__(self, directory: Path | str):
        super().__init__()
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, match_id: str) -> Path:
        return self.directory / f"{match_id}.json"

    def _read(self, match_id: str) -> Optional[MatchRecord]:
        path = self._path(match_id)
        if not path.exists():
            return None
        with open(path) as f:
            return MatchRecord.from_dict(json.load(f))

    def _write(self, record: MatchRecord):
        path = self._path(record.match_id)
        tmp = path.with_suffix(".tmp")
        with open(tmp, "w") as f:
            json.dump(record.to_dict(), f, indent=2)
        tmp.replace(path)


class StateReader:
    """Client-side view that only ever moves forward in version."""

    def __init__(self, initial: Optional[VersionedState] = None):
        self.current: Optional[VersionedState] = initial

    @property
    def version(self) -> int:
        return self.current.version if self.current else -1

    def accept(self, update: VersionedState) -> bool:
        """Take the update if it is newer; stale or duplicate versions are dropped."""
        if update.version <= self.version:
            logger.debug("Discarding stale state v%d (have v%d)", update.version, self.version)
            return False
        self.current = update
        return True


# Phase guard
def detect_phase_inconsistency(phase: MatchPhase, flags: MatchFlags) -> Optional[MatchPhase]:
    """The phase the match should be in, or None if the recorded phase is consistent."""
    if phase == MatchPhase.DECKBUILDING and flags.decks_confirmed:
        return MatchPhase.DEPLOYMENT
    if phase == MatchPhase.DEPLOYMENT and flags.deployments_confirmed:
        return MatchPhase.COMBAT
    if phase == MatchPhase.COMBAT_SETUP:
        return MatchPhase.COMBAT if flags.deployments_confirmed else MatchPhase.DEPLOYMENT
    return None


def apply_phase_guard(store: MatchStore, match_id: str) -> Optional[str]:
    """Correct an inconsistent match phase once. Returns the user notice, if any."""
    notice = None

    def fix(record: MatchRecord):
        nonlocal notice
        corrected = detect_phase_inconsistency(record.phase, record.flags)
        if corrected is None:
            return
        logger.warning("Match %s: phase inconsistency %s -> %s",
                       match_id, record.phase.value, corrected.value)
        record.actions.append(ActionLogEntry(
            actor_id=SYSTEM_ACTOR,
            action_type="system_fix",
            payload={
                "from_phase": record.phase.value,
                "to_phase": corrected.value,
                "reason": "phase_inconsistency_detected",
            },
            phase_at_time=record.phase.value,
            resulting_version=record.version,
        ))
        record.phase = corrected
        notice = f"Phase corrected automatically: {corrected.value}"
        record.notices.append(notice)

    store.update(match_id, fix)
    return notice


class BattleSession:
    """Runs engine actions against a stored match, one version per action."""

    def __init__(self, store: MatchStore, match_id: str,
                 engine: Optional[BattleEngine] = None):
        self.store = store
        self.match_id = match_id
        self.engine = engine or BattleEngine()

    def start(self, state: TacticalGameState) -> VersionedState:
        """Store the initial battle state as version 1 and enter combat."""
        versioned = VersionedState.wrap(state, 1)

        def begin(record: MatchRecord):
            if record.state is not None:
                raise PersistenceConflict(self.match_id, 0, record.version)
            record.state = versioned
            record.phase = MatchPhase.COMBAT

        self.store.update(self.match_id, begin)
        return versioned

    def current(self) -> VersionedState:
        record = self.store.get(self.match_id)
        if record.state is None:
            raise KeyError(f"Match {self.match_id} has no battle yet")
        return record.state

    def submit(self, actor_id: str, player: Player, action: Action) -> VersionedState:
        """Apply an action and persist the result; InvalidAction leaves the store as is."""
        result: Optional[VersionedState] = None

        def apply(record: MatchRecord):
            nonlocal result
            if record.state is None:
                raise KeyError(f"Match {self.match_id} has no battle yet")
            state = record.state.state()
            phase_at_time = state.phase.value
            new_state = self.engine.execute_action(state, player, action)
            result = VersionedState.wrap(new_state, record.version + 1)
            record.state = result
            record.actions.append(ActionLogEntry(
                actor_id=actor_id,
                action_type=action.type.value,
                payload=action.to_dict(),
                phase_at_time=phase_at_time,
                resulting_version=result.version,
            ))
            if new_state.is_finished:
                record.phase = MatchPhase.FINISHED

        self.store.update(self.match_id, apply)
        logger.debug("Match %s: %s by %s -> v%d", self.match_id, action.type.value,
                     actor_id, result.version)
        return result

    def surrender(self, actor_id: str, player: Player) -> VersionedState:
        return self.submit(actor_id, player, Action(ActionType.SURRENDER))
