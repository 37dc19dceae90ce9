"""
Main game runner for the hex tactics battle.

Pits two bots against each other on a roster-built battlefield and writes a
JSON log of the battle.
"""

import json
import logging
import random
from pathlib import Path
from datetime import datetime
from typing import Optional

from dotenv import load_dotenv

from tactics import BattleEngine, BattleRules, Phase, Player, check_invariants
from tactics.actions import Action, ActionType, InvalidAction
from tactics.roster import RosterManager
from bots import HexBot

logger = logging.getLogger(__name__)

# Upper bound on engine calls per turn, in case both bots stall
MAX_ACTIONS_PER_TURN = 500


class BattleSimulation:
    """Bot-versus-bot battle orchestrator."""

    def __init__(
        self,
        data_path: str = "data",
        army1: str = "iron_legion",
        army2: str = "free_companies",
        battlefield: str = "river_crossing",
        difficulty1: str = "medium",
        difficulty2: str = "medium",
        seed: Optional[int] = None,
        log_dir: str = "logs",
    ):
        self.data_path = Path(data_path)
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(exist_ok=True)
        self.seed = seed
        self.army1, self.army2, self.battlefield = army1, army2, battlefield

        logger.info("Loading rules...")
        self.rules = BattleRules.load(self.data_path / "rules.yaml")

        logger.info("Loading rosters...")
        self.roster = RosterManager(self.data_path / "armies.yaml", self.rules)

        # One seeded source drives the dice and both bots
        rng = random.Random(seed)
        self.engine = BattleEngine(self.rules, rng=random.Random(rng.random()))
        self.bots = {
            Player.PLAYER1: HexBot(Player.PLAYER1, difficulty1, self.rules,
                                   rng=random.Random(rng.random())),
            Player.PLAYER2: HexBot(Player.PLAYER2, difficulty2, self.rules,
                                   rng=random.Random(rng.random())),
        }

        self.state = None
        self.game_log: list[dict] = []
        self.start_time: Optional[datetime] = None

    def initialize(self):
        """Build the battle from the rosters."""
        self.state = self.roster.create_battle(
            self.engine, self.army1, self.army2, self.battlefield,
            player1_name=self.bots[Player.PLAYER1].name,
            player2_name=self.bots[Player.PLAYER2].name,
        )
        self.start_time = datetime.now()

        self._log_event("game_start", {
            "match_id": self.state.match_id,
            "seed": self.seed,
            "battlefield": self.battlefield,
            "player1": {"name": self.state.player1_name, "army": self.army1,
                        "units": len(self.state.units_of(Player.PLAYER1))},
            "player2": {"name": self.state.player2_name, "army": self.army2,
                        "units": len(self.state.units_of(Player.PLAYER2))},
        })
        logger.info(f"Battle {self.state.match_id}: "
                    f"{self.state.player1_name} vs {self.state.player2_name}")

    def _acting_player(self) -> Player:
        if self.state.phase in (Phase.SETUP, Phase.INITIATIVE):
            return Player.PLAYER1
        return self.state.active_player

    def step(self):
        """Let the bot holding the turn play one action."""
        player = self._acting_player()
        decision = self.bots[player].decide(self.state)
        if decision.waiting:
            return
        try:
            self.state = self.engine.execute_action(self.state, player, decision.action)
        except InvalidAction as e:
            logger.error(f"{self.bots[player].name} chose an illegal action "
                         f"({decision.action}): {e.reason}")
            self.state = self.engine.execute_action(self.state, player, Action(ActionType.END_PHASE))

        problems = check_invariants(self.state, self.rules)
        if problems:
            logger.error(f"State invariants broken: {problems}")

    def run_turn(self) -> dict:
        """Play until the turn counter moves on or the battle ends."""
        turn = self.state.turn
        logger.info(f"\n{'='*60}")
        logger.info(f"TURN {turn}")
        logger.info(f"{'='*60}")

        log_start = len(self.state.battle_log)
        actions = 0
        while self.state.turn == turn and not self.state.is_finished:
            self.step()
            actions += 1
            if actions >= MAX_ACTIONS_PER_TURN:
                logger.warning(f"Turn {turn} stalled, forcing the phase on")
                self.state = self.engine.end_phase(self.state)
                actions = 0

        turn_log = {
            "turn": turn,
            "initiative": dict(self.state.initiative_rolls),
            "events": [e.message for e in self.state.battle_log[log_start:]],
            "effective_units": {
                p.value: len(self.state.effective_units(p)) for p in Player
            },
        }
        self._log_event("turn_complete", turn_log)

        logger.info(f"\nTurn {turn} Complete:")
        logger.info(f"  Events: {len(turn_log['events'])}")
        logger.info(f"  Effective units - {self.state.player1_name}: "
                    f"{turn_log['effective_units']['player1']}, {self.state.player2_name}: "
                    f"{turn_log['effective_units']['player2']}")
        return turn_log

    def run_game(self, max_turns: int = 20) -> dict:
        """Run the full battle."""
        self.initialize()

        while self.state.turn <= max_turns and not self.state.is_finished:
            self.run_turn()

        results = self._compile_results()
        self._log_event("game_end", results)
        self._save_game_log()
        return results

    def _compile_results(self) -> dict:
        state = self.state
        if state.is_finished:
            winner = state.player_name(state.winner) if state.winner else "draw"
        else:
            winner = None

        return {
            "turns_played": state.turn if state.is_finished else state.turn - 1,
            "winner": winner,
            "surviving_forces": {
                p.value: len(state.effective_units(p)) for p in Player
            },
            "casualties": {
                p.value: sum(u.max_health - u.current_health for u in state.units_of(p, alive_only=False))
                for p in Player
            },
            "duration": str(datetime.now() - self.start_time) if self.start_time else None,
        }

    def _log_event(self, event_type: str, data: dict):
        """Log a game event."""
        self.game_log.append({
            "timestamp": datetime.now().isoformat(),
            "event": event_type,
            "data": data,
        })

    def _save_game_log(self):
        """Save game log and final state to file."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = self.log_dir / f"battle_{timestamp}.json"

        with open(log_path, "w") as f:
            json.dump({"events": self.game_log, "final_state": self.state.to_dict()},
                      f, indent=2, default=str)

        logger.info(f"Game log saved to: {log_path}")


def main():
    """Run a bot-versus-bot battle."""
    import argparse

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    parser = argparse.ArgumentParser(description="Hex Tactics Battle Simulation")
    parser.add_argument("--army1", default="iron_legion", help="Roster for player 1")
    parser.add_argument("--army2", default="free_companies", help="Roster for player 2")
    parser.add_argument("--battlefield", default="river_crossing", help="Battlefield name")
    parser.add_argument("--difficulty1", default="medium", choices=["easy", "medium", "hard"])
    parser.add_argument("--difficulty2", default="medium", choices=["easy", "medium", "hard"])
    parser.add_argument("--seed", type=int, default=None, help="Random seed for a reproducible battle")
    parser.add_argument("--turns", type=int, default=20, help="Max turns")
    parser.add_argument("--data", default="data", help="Data directory path")
    parser.add_argument("--logs", default="logs", help="Log directory path")

    args = parser.parse_args()

    sim = BattleSimulation(
        data_path=args.data,
        army1=args.army1,
        army2=args.army2,
        battlefield=args.battlefield,
        difficulty1=args.difficulty1,
        difficulty2=args.difficulty2,
        seed=args.seed,
        log_dir=args.logs,
    )

    results = sim.run_game(max_turns=args.turns)

    print("\n" + "="*60)
    print("FINAL RESULTS")
    print("="*60)
    print(f"Turns played: {results['turns_played']}")
    print(f"Winner: {results['winner'] or 'undecided'}")
    print(f"Surviving forces - player1: {results['surviving_forces']['player1']}, "
          f"player2: {results['surviving_forces']['player2']}")
    print(f"Casualties - player1: {results['casualties']['player1']}, "
          f"player2: {results['casualties']['player2']}")
    print(f"Duration: {results['duration']}")


if __name__ == "__main__":
    main()
