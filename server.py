"""
WebSocket match server for hex tactics battles.

Hosts human vs human and human vs bot matches. Every accepted action bumps the
stored state version and the new state is broadcast to both seats.
"""

import os
import json
import uuid
import random
import asyncio
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
import websockets
from websockets.http11 import Response
from websockets.datastructures import Headers

from tactics import BattleEngine, BattleRules, Player
from tactics.actions import Action, InvalidAction, SHARED_PHASES
from tactics.roster import RosterManager
from tactics.sync import (
    BattleSession, JsonMatchStore, MatchStore, PersistenceConflict, VersionedState,
    apply_phase_guard,
)
from bots import HexBot, ThinkingDelay

logger = logging.getLogger(__name__)

DATA_PATH = Path(os.environ.get("DATA_PATH", "data"))
CLIENT_HTML = Path(__file__).parent / "battle_client.html"


def client_action(payload) -> Action:
    """An action submitted over the wire. Dice are always rolled by the server."""
    action = Action.from_dict(payload)
    if action.rolls:
        raise InvalidAction("forbidden", "Initiative dice are rolled by the server")
    return action


class MatchHost:
    """One running match: its session, the connected seats and an optional bot."""

    def __init__(self, match_id: str, store: MatchStore, rules: BattleRules):
        self.match_id = match_id
        self.session = BattleSession(store, match_id, BattleEngine(rules))
        self.rules = rules
        self.seats: dict[Player, object] = {}
        self.names: dict[Player, str] = {}
        self.bot: Optional[HexBot] = None
        self.pending: Optional[ThinkingDelay] = None
        self.tasks: set[asyncio.Task] = set()
        self.pending_armies: tuple[str, str, str] = ("iron_legion", "free_companies", "open_field")

    def seat_of(self, websocket) -> Optional[Player]:
        for player, ws in self.seats.items():
            if ws is websocket:
                return player
        return None

    def open_seat(self) -> Optional[Player]:
        for player in Player:
            if player not in self.seats and not (self.bot and self.bot.player == player):
                return player
        return None

    def state_message(self, versioned: VersionedState) -> dict:
        return {"match_id": self.match_id, "version": versioned.version, "state": versioned.blob}

    async def broadcast(self, msg_type: str, data: dict):
        payload = json.dumps({"type": msg_type, **data}, default=str)
        for websocket in list(self.seats.values()):
            try:
                await websocket.send(payload)
            except websockets.exceptions.ConnectionClosed:
                pass

    async def broadcast_state(self, versioned: Optional[VersionedState] = None):
        versioned = versioned or self.session.current()
        await self.broadcast("state", self.state_message(versioned))
        state = versioned.state()
        if state.is_finished:
            winner = state.winner.value if state.winner else "draw"
            await self.broadcast("game_over", {"match_id": self.match_id, "winner": winner})
        else:
            self.schedule_bot(versioned)

    # Bot pacing
    def schedule_bot(self, versioned: VersionedState):
        """Decide the bot's move now and apply it after its thinking delay."""
        if self.bot is None or self.pending is not None:
            return
        state = versioned.state()
        if state.is_finished or state.phase in SHARED_PHASES:
            return
        if state.active_player != self.bot.player:
            return

        decision = self.bot.decide(state)
        if decision.waiting:
            return
        delay = self.bot.thinking_delay()
        logger.debug(f"{self.bot.name} thinks for {delay}ms: {decision.reason}")

        def apply():
            self.pending = None
            if self.session.current().version != versioned.version:
                logger.info(f"Match {self.match_id}: state moved on, dropping bot move")
                return
            try:
                result = self.session.submit(self.bot.name, self.bot.player, decision.action)
            except (InvalidAction, PersistenceConflict) as e:
                logger.warning(f"Match {self.match_id}: bot move rejected: {e}")
                return
            self.spawn(self.broadcast_state(result))

        self.pending = ThinkingDelay(delay, apply).start()

    def spawn(self, coro) -> asyncio.Task:
        """Run a coroutine in the background, holding a reference until it finishes."""
        task = asyncio.get_running_loop().create_task(coro)
        self.tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self.tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Match {self.match_id}: background task failed", exc_info=task.exception())

    def cancel_bot(self):
        if self.pending is not None:
            self.pending.cancel()
            self.pending = None


class MatchRegistry:
    """All matches hosted by this server process."""

    def __init__(self, store: MatchStore, rules: BattleRules, roster: RosterManager):
        self.store = store
        self.rules = rules
        self.roster = roster
        self.matches: dict[str, MatchHost] = {}

    def create(self, websocket, name: str, army1: str, army2: str,
               battlefield: str, bot_difficulty: Optional[str] = None) -> MatchHost:
        for army in (army1, army2):
            if army not in self.roster.armies:
                raise KeyError(army)
        if battlefield not in self.roster.battlefields:
            raise KeyError(battlefield)

        match_id = uuid.uuid4().hex[:8]
        self.store.create(match_id)
        host = MatchHost(match_id, self.store, self.rules)
        host.seats[Player.PLAYER1] = websocket
        host.names[Player.PLAYER1] = name

        if bot_difficulty:
            host.bot = HexBot(Player.PLAYER2, bot_difficulty, self.rules, rng=random.Random())
            host.names[Player.PLAYER2] = host.bot.name

        if host.bot:
            self._start(host, army1, army2, battlefield)
        else:
            host.pending_armies = (army1, army2, battlefield)
        self.matches[match_id] = host
        logger.info(f"Match {match_id} created by {name}"
                    + (f" against {host.bot.name} ({bot_difficulty})" if host.bot else ""))
        return host

    def join(self, websocket, match_id: str, name: str) -> tuple[MatchHost, Player]:
        host = self.matches.get(match_id)
        if host is None:
            raise KeyError(match_id)
        seat = host.open_seat()
        if seat is None:
            raise ValueError(f"Match {match_id} is full")
        host.seats[seat] = websocket
        host.names[seat] = name
        if not self.store.get(match_id).state:
            self._start(host, *host.pending_armies)
        return host, seat

    def _start(self, host: MatchHost, army1: str, army2: str, battlefield: str):
        state = self.roster.create_battle(
            host.session.engine, army1, army2, battlefield,
            player1_name=host.names.get(Player.PLAYER1, "Player 1"),
            player2_name=host.names.get(Player.PLAYER2, "Player 2"),
            match_id=host.match_id,
        )
        host.session.start(state)
        apply_phase_guard(self.store, host.match_id)

    def leave(self, websocket):
        for match_id, host in list(self.matches.items()):
            seat = host.seat_of(websocket)
            if seat is None:
                continue
            del host.seats[seat]
            host.cancel_bot()
            logger.info(f"Match {match_id}: {host.names.get(seat)} left")
            if not host.seats:
                del self.matches[match_id]


registry: Optional[MatchRegistry] = None


def create_registry() -> MatchRegistry:
    rules = BattleRules.load(DATA_PATH / "rules.yaml")
    match_dir = os.environ.get("MATCH_DIR")
    store = JsonMatchStore(match_dir) if match_dir else MatchStore()
    return MatchRegistry(store, rules, RosterManager(DATA_PATH / "armies.yaml", rules))


async def handle_websocket(websocket):
    """Handle a single WebSocket connection (one seat in one match)."""
    host: Optional[MatchHost] = None
    seat: Optional[Player] = None

    async def send_json(msg_type: str, data: dict):
        await websocket.send(json.dumps({"type": msg_type, **data}, default=str))

    try:
        async for raw in websocket:
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await send_json("error", {"reason": "malformed", "message": "Invalid JSON"})
                continue

            msg_type = msg.get("type", "")

            if msg_type == "create_match":
                difficulty = msg.get("bot")
                if difficulty and difficulty not in registry.rules.difficulty:
                    await send_json("error", {"reason": "malformed",
                                              "message": f"Unknown difficulty {difficulty}"})
                    continue
                try:
                    host = registry.create(
                        websocket, msg.get("name", "Player 1"),
                        msg.get("army1", "iron_legion"), msg.get("army2", "free_companies"),
                        msg.get("battlefield", "open_field"), difficulty,
                    )
                except KeyError as e:
                    await send_json("error", {"reason": "malformed", "message": f"Unknown roster {e}"})
                    continue
                seat = Player.PLAYER1
                await send_json("match_created", {"match_id": host.match_id, "seat": seat.value})
                if host.bot:
                    await host.broadcast_state()

            elif msg_type == "join_match":
                try:
                    host, seat = registry.join(websocket, msg.get("match_id", ""),
                                               msg.get("name", "Player 2"))
                except (KeyError, ValueError) as e:
                    await send_json("error", {"reason": "cannot_join", "message": str(e)})
                    continue
                await send_json("joined", {"match_id": host.match_id, "seat": seat.value})
                await host.broadcast_state()

            elif msg_type == "get_state":
                if host is None or host.session.store.get(host.match_id).state is None:
                    await send_json("error", {"reason": "no_match", "message": "No battle in progress"})
                    continue
                await send_json("state", host.state_message(host.session.current()))

            elif msg_type == "action":
                if host is None or seat is None:
                    await send_json("error", {"reason": "no_match", "message": "No battle in progress"})
                    continue
                try:
                    action = client_action(msg.get("action", {}))
                    versioned = host.session.submit(host.names[seat], seat, action)
                except InvalidAction as e:
                    await send_json("error", e.to_dict())
                    continue
                except PersistenceConflict as e:
                    await send_json("error", {"reason": "conflict", "message": str(e)})
                    await send_json("state", host.state_message(host.session.current()))
                    continue
                except KeyError:
                    await send_json("error", {"reason": "no_match", "message": "Battle not started"})
                    continue
                host.cancel_bot()
                await host.broadcast_state(versioned)

            else:
                await send_json("error", {"reason": "malformed",
                                          "message": f"Unknown message type: {msg_type}"})

    except websockets.exceptions.ConnectionClosed:
        logger.info("Client disconnected")
    finally:
        registry.leave(websocket)


def http_handler(connection, request):
    """Serve battle_client.html on GET / (websockets v16 process_request)."""
    if request.path == "/" or request.path == "":
        try:
            body = CLIENT_HTML.read_bytes()
        except FileNotFoundError:
            body = b"<h1>battle_client.html not found</h1>"
        return Response(
            200,
            "OK",
            Headers([
                ("Content-Type", "text/html; charset=utf-8"),
                ("Content-Length", str(len(body))),
            ]),
            body,
        )
    return None  # Let websockets handle WebSocket upgrade


async def main():
    global registry
    registry = create_registry()

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8080"))

    logger.info(f"Starting server on http://{host}:{port}")

    async with websockets.serve(
        handle_websocket,
        host,
        port,
        process_request=http_handler,
        max_size=10 * 1024 * 1024,  # 10MB max message
    ):
        await asyncio.Future()  # run forever


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
