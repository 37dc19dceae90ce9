import pytest

from tactics import Phase, Player
from tactics.actions import Action, ActionType, InvalidAction
from tactics.sync import (
    SYSTEM_ACTOR, BattleSession, JsonMatchStore, MatchFlags, MatchPhase, MatchStore,
    PersistenceConflict, StateReader, VersionedState, apply_phase_guard,
    detect_phase_inconsistency,
)
from tests.helpers import make_battle, make_unit

P1, P2 = Player.PLAYER1, Player.PLAYER2


@pytest.fixture
def battle():
    units = [make_unit("a1", P1, 2, 2), make_unit("b1", P2, 15, -5)]
    return make_battle(units)


@pytest.fixture
def store():
    return MatchStore()


def test_reader_only_moves_forward(battle):
    _, state = battle
    reader = StateReader()
    assert reader.accept(VersionedState.wrap(state, 3))
    assert not reader.accept(VersionedState.wrap(state, 2))
    assert not reader.accept(VersionedState.wrap(state, 3))
    assert reader.version == 3
    assert reader.accept(VersionedState.wrap(state, 4))
    assert reader.current.state().match_id == "test"


def test_save_rejects_stale_versions(store, battle):
    _, state = battle
    store.create("m1")
    store.save("m1", VersionedState.wrap(state, 1), expected_version=0)

    with pytest.raises(PersistenceConflict) as exc:
        store.save("m1", VersionedState.wrap(state, 2), expected_version=0)
    assert exc.value.actual == 1
    with pytest.raises(PersistenceConflict):
        store.save("m1", VersionedState.wrap(state, 1), expected_version=1)

    store.save("m1", VersionedState.wrap(state, 2), expected_version=1)
    assert store.get("m1").version == 2


def test_update_cannot_roll_back_a_version(store, battle):
    _, state = battle
    store.create("m1")
    store.save("m1", VersionedState.wrap(state, 5), expected_version=0)

    def rollback(record):
        record.state = VersionedState.wrap(state, 4)

    with pytest.raises(PersistenceConflict):
        store.update("m1", rollback)
    assert store.get("m1").version == 5


def test_reads_are_copies(store):
    store.create("m1")
    record = store.get("m1")
    record.notices.append("scribble")
    assert store.get("m1").notices == []


def test_store_contract(store):
    store.create("m1")
    assert store.exists("m1")
    assert not store.exists("m2")
    with pytest.raises(ValueError):
        store.create("m1")
    with pytest.raises(KeyError):
        store.get("m2")


@pytest.mark.parametrize("phase,flags,expected", [
    (MatchPhase.DECKBUILDING, MatchFlags(True, True), MatchPhase.DEPLOYMENT),
    (MatchPhase.DECKBUILDING, MatchFlags(True, False), None),
    (MatchPhase.DEPLOYMENT, MatchFlags(True, True, True, True), MatchPhase.COMBAT),
    (MatchPhase.DEPLOYMENT, MatchFlags(True, True, True, False), None),
    (MatchPhase.COMBAT_SETUP, MatchFlags(True, True, True, True), MatchPhase.COMBAT),
    (MatchPhase.COMBAT_SETUP, MatchFlags(True, True), MatchPhase.DEPLOYMENT),
    (MatchPhase.COMBAT, MatchFlags(True, True, True, True), None),
    (MatchPhase.LOBBY, MatchFlags(), None),
])
def test_phase_inconsistency_detection(phase, flags, expected):
    assert detect_phase_inconsistency(phase, flags) == expected


def test_phase_guard_corrects_once(store):
    store.create("m1", MatchPhase.DECKBUILDING)
    store.update("m1", lambda r: setattr(r, "flags", MatchFlags(True, True)))

    notice = apply_phase_guard(store, "m1")
    record = store.get("m1")
    assert notice == "Phase corrected automatically: deployment"
    assert record.phase == MatchPhase.DEPLOYMENT
    assert record.notices == [notice]

    fix = record.actions[-1]
    assert fix.actor_id == SYSTEM_ACTOR
    assert fix.action_type == "system_fix"
    assert fix.payload == {
        "from_phase": "deckbuilding",
        "to_phase": "deployment",
        "reason": "phase_inconsistency_detected",
    }

    assert apply_phase_guard(store, "m1") is None
    assert len(store.get("m1").actions) == 1


def test_session_versions_every_action(store, battle):
    engine, state = battle
    store.create("m1")
    session = BattleSession(store, "m1", engine)

    first = session.start(state)
    assert first.version == 1
    assert store.get("m1").phase == MatchPhase.COMBAT
    with pytest.raises(PersistenceConflict):
        session.start(state)

    second = session.submit("alice", P1, Action(ActionType.END_PHASE))
    assert second.version == 2
    assert second.state().phase == Phase.INITIATIVE

    entry = store.get("m1").actions[-1]
    assert entry.actor_id == "alice"
    assert entry.action_type == "end_phase"
    assert entry.phase_at_time == "setup"
    assert entry.resulting_version == 2


def test_rejected_action_leaves_store_alone(store, battle):
    engine, state = battle
    store.create("m1")
    session = BattleSession(store, "m1", engine)
    session.start(state)

    with pytest.raises(InvalidAction):
        session.submit("alice", P1, Action(ActionType.ATTACK, unit_id="a1",
                                           target_unit_id="b1"))
    record = store.get("m1")
    assert record.version == 1
    assert record.actions == []


def test_surrender_finishes_the_match(store, battle):
    engine, state = battle
    store.create("m1")
    session = BattleSession(store, "m1", engine)
    session.start(state)

    result = session.surrender("bob", P2)
    assert result.state().winner == P1
    assert store.get("m1").phase == MatchPhase.FINISHED


def test_session_without_battle(store):
    store.create("m1")
    with pytest.raises(KeyError):
        BattleSession(store, "m1").current()


def test_json_store_survives_restart(tmp_path, battle):
    engine, state = battle
    store = JsonMatchStore(tmp_path / "matches")
    store.create("m1")
    session = BattleSession(store, "m1", engine)
    session.start(state)
    session.submit("alice", P1, Action(ActionType.END_PHASE))

    reopened = JsonMatchStore(tmp_path / "matches")
    record = reopened.get("m1")
    assert record.version == 2
    assert record.phase == MatchPhase.COMBAT
    assert record.actions[0].payload == {"type": "end_phase"}
    assert record.state.state().phase == Phase.INITIATIVE
    assert BattleSession(reopened, "m1", engine).current().version == 2

    with pytest.raises(ValueError):
        reopened.create("m1")
    with pytest.raises(KeyError):
        reopened.get("nope")
