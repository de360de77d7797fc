"""Autopilot for bot players.

Bots vote lazily: only when a council is about to be resolved. Wolf bots pick
a victim at random, and a bot with a pending revenge shot fires at a random
alive player.
"""

import logging
import random
from typing import Optional

from autogarou.engine.ledger import ActionLedger
from autogarou.engine.roles import EffectKind, GamePhase, Team, TriggerKind
from autogarou.engine.state import Player
from autogarou.io.store import GameStore

logger = logging.getLogger(__name__)


class BotAutopilot:
    def __init__(self, store: GameStore, ledger: ActionLedger):
        self.store = store
        self.ledger = ledger
        self._rngs: dict[str, random.Random] = {}

    def _rng(self, game_id: str) -> random.Random:
        if game_id not in self._rngs:
            seed = self.store.get_game(game_id).settings.random_seed
            self._rngs[game_id] = random.Random(seed)
        return self._rngs[game_id]

    def _alive_bots(self, players: list[Player]) -> list[Player]:
        return [p for p in players if p.is_bot and p.is_alive]

    def fill_council_votes(self, game_id: str, phase_seq: int) -> int:
        """Cast a random vote for every alive bot that has not voted yet."""
        game = self.store.get_game(game_id)
        if game.phase != GamePhase.COUNCIL or game.phase_seq != phase_seq:
            return 0

        players = self.store.get_players(game_id)
        voted = {v.voter_id for v in self.ledger.query_votes(game_id, phase_seq)}
        alive = [p for p in players if p.is_alive]
        cast = 0
        for bot in self._alive_bots(players):
            if bot.id in voted:
                continue
            candidates = [p for p in alive if p.id != bot.id]
            if not candidates:
                continue
            target = self._rng(game_id).choice(candidates)
            result = self.ledger.submit_vote(game_id, phase_seq, bot.id, target.id)
            if result.accepted:
                cast += 1
            else:
                logger.debug("Bot vote from %s rejected: %s", bot.name, result.message)
        return cast

    def fill_night_actions(self, game_id: str, phase_seq: int) -> int:
        """Let wolf bots that have not acted choose a random victim."""
        game = self.store.get_game(game_id)
        if game.phase != GamePhase.NIGHT or game.phase_seq != phase_seq:
            return 0

        catalog = self.store.get_catalog(game_id)
        players = self.store.get_players(game_id)
        acted = {(a.player_id, a.power_id) for a in self.ledger.query(game_id, phase_seq)}
        prey = [p for p in players if p.is_alive and catalog.team_of(p) != Team.WOLVES]
        submitted = 0
        for bot in self._alive_bots(players):
            power = catalog.holds_effect(bot, EffectKind.WOLF_ATTACK)
            if power is None or (bot.id, power.id) in acted:
                continue
            candidates = [p for p in prey if p.id != bot.id]
            if not candidates:
                continue
            target = self._rng(game_id).choice(candidates)
            result = self.ledger.submit(game_id, phase_seq, bot.id, power.id, [target.id])
            if result.accepted:
                submitted += 1
        return submitted

    def pending_revenge_shots(self, game_id: str) -> list[tuple[str, str, str]]:
        """Return (shooter_id, power_id, target_id) for every bot awaiting its shot."""
        game = self.store.get_game(game_id)
        catalog = self.store.get_catalog(game_id)
        players = {p.id: p for p in self.store.get_players(game_id)}
        shots: list[tuple[str, str, str]] = []
        for trigger in game.pending_triggers:
            if trigger.kind != TriggerKind.AWAITING_REVENGE:
                continue
            shooter = players.get(trigger.player_id)
            if shooter is None or not shooter.is_bot:
                continue
            power = catalog.holds_effect(shooter, EffectKind.REVENGE_SHOT)
            candidates = [p for p in players.values() if p.is_alive and p.id != shooter.id]
            if power is None or not candidates:
                continue
            target = self._rng(game_id).choice(candidates)
            shots.append((shooter.id, power.id, target.id))
        return shots

    def forget(self, game_id: str) -> Optional[random.Random]:
        return self._rngs.pop(game_id, None)
