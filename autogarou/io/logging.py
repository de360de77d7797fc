import json
import logging
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel

from autogarou.engine.state import DeathReport, EventRecord, GameSettings, Player, Winner


class GameLogLevel(str, Enum):
    MINIMAL = "minimal"
    STANDARD = "standard"
    VERBOSE = "verbose"


class LogCategory(str, Enum):
    GAME = "game"
    PHASE = "phase"
    EVENT = "event"
    ACTION = "action"
    VOTE = "vote"
    DEATH = "death"
    RESOLUTION = "resolution"
    TRIGGER = "trigger"
    ERROR = "error"


class LogEntry(BaseModel):
    timestamp: datetime
    level: str
    category: str
    message: str
    data: dict[str, Any] = {}


class GameLogger:
    """Per-game structured log.

    Every entry is kept in memory (``entries``, ``export_json``) and mirrored
    to a dedicated ``autogarou.game.<id>`` logger, filtered by ``log_level``.
    """

    def __init__(
        self,
        game_id: str,
        log_level: GameLogLevel = GameLogLevel.STANDARD,
        output_path: Optional[Path] = None,
        enable_console: bool = True,
        enable_file: bool = False,
    ):
        self.game_id = game_id
        self.log_level = log_level
        self.output_path = output_path
        self.enable_console = enable_console
        self.enable_file = enable_file
        self.entries: list[LogEntry] = []

        self._logger = logging.getLogger(f"autogarou.game.{game_id}")
        self._logger.setLevel(logging.DEBUG)
        self._logger.propagate = False

        for handler in self._logger.handlers[:]:
            self._logger.removeHandler(handler)

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(logging.INFO)
            console_handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", "%H:%M:%S")
            )
            self._logger.addHandler(console_handler)

        if enable_file and output_path:
            output_path.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(output_path / f"{game_id}.log", encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
            )
            self._logger.addHandler(file_handler)

    def _should_log(self, required_level: GameLogLevel) -> bool:
        levels = [GameLogLevel.MINIMAL, GameLogLevel.STANDARD, GameLogLevel.VERBOSE]
        return levels.index(self.log_level) >= levels.index(required_level)

    def _add_entry(
        self,
        level: str,
        category: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        entry = LogEntry(
            timestamp=datetime.now(),
            level=level,
            category=category,
            message=message,
            data=data or {},
        )
        self.entries.append(entry)

    def log_game_start(self, settings: GameSettings, players: list[Player]) -> None:
        self._add_entry(
            level="INFO",
            category=LogCategory.GAME.value,
            message="Game started",
            data={
                "settings": settings.model_dump(mode="json"),
                "players": [{"id": p.id, "name": p.name, "role": p.role_id} for p in players],
            },
        )
        self._logger.info(f"Game {self.game_id} started with {len(players)} players")

    def log_phase_change(self, phase_seq: int, phase: str, alive_count: int) -> None:
        msg = f"Phase {phase_seq} - {phase.upper()}"
        self._add_entry(
            level="INFO",
            category=LogCategory.PHASE.value,
            message=msg,
            data={"phase_seq": phase_seq, "phase": phase, "alive_players": alive_count},
        )
        if self._should_log(GameLogLevel.STANDARD):
            self._logger.info(f"{msg} ({alive_count} players alive)")

    def log_event(self, event: EventRecord, players: dict[str, Player]) -> None:
        public = event.visibility.value == "public"
        description = self._describe_event(event, players)
        self._add_entry(
            level="INFO" if public else "DEBUG",
            category=LogCategory.EVENT.value,
            message=description,
            data=event.model_dump(mode="json"),
        )
        if public and self._should_log(GameLogLevel.STANDARD):
            self._logger.info(description)
        elif self._should_log(GameLogLevel.VERBOSE):
            self._logger.debug(description)

    def log_submission(
        self,
        player_id: str,
        power_id: str,
        target_ids: list[str],
        accepted: bool,
        reason: Optional[str] = None,
    ) -> None:
        status = "accepted" if accepted else f"rejected ({reason})"
        self._add_entry(
            level="DEBUG" if accepted else "WARNING",
            category=LogCategory.ACTION.value,
            message=f"Action {power_id} by {player_id} {status}",
            data={
                "player_id": player_id,
                "power_id": power_id,
                "target_ids": target_ids,
                "accepted": accepted,
                "reason": reason,
            },
        )
        if self._should_log(GameLogLevel.VERBOSE):
            self._logger.debug(f"Action: {power_id} by {player_id} {status}")

    def log_vote(
        self,
        voter_id: str,
        voter_name: str,
        target_id: Optional[str],
        target_name: Optional[str],
        accepted: bool = True,
        reason: Optional[str] = None,
    ) -> None:
        if target_name:
            msg = f"{voter_name} voted for {target_name}"
        else:
            msg = f"{voter_name} abstained"
        if not accepted:
            msg = f"{msg} (rejected: {reason})"

        self._add_entry(
            level="INFO" if accepted else "WARNING",
            category=LogCategory.VOTE.value,
            message=msg,
            data={
                "voter_id": voter_id,
                "target_id": target_id,
                "accepted": accepted,
                "reason": reason,
            },
        )
        if self._should_log(GameLogLevel.VERBOSE):
            self._logger.debug(f"[Vote] {msg}")

    def log_death(self, report: DeathReport) -> None:
        cause = report.cause.value if report.cause else "unknown"
        self._add_entry(
            level="INFO",
            category=LogCategory.DEATH.value,
            message=f"{report.name} died ({cause})",
            data=report.model_dump(mode="json"),
        )
        if self._should_log(GameLogLevel.STANDARD):
            self._logger.info(f"[Death] {report.name} died ({cause})")

    def log_vote_result(
        self,
        vote_counts: dict[str, int],
        eliminated_name: Optional[str],
        tie: bool = False,
        immunity_used: bool = False,
    ) -> None:
        self._add_entry(
            level="INFO",
            category=LogCategory.VOTE.value,
            message="Vote completed",
            data={
                "vote_counts": vote_counts,
                "eliminated": eliminated_name,
                "tie": tie,
                "immunity_used": immunity_used,
            },
        )
        if self._should_log(GameLogLevel.STANDARD):
            if eliminated_name:
                self._logger.info(f"[Vote Result] {eliminated_name} was eliminated")
            elif immunity_used:
                self._logger.info("[Vote Result] Immunity saved the target")
            elif tie:
                self._logger.info("[Vote Result] Tie, no one was eliminated")
            else:
                self._logger.info("[Vote Result] No one was eliminated")

    def log_resolution(self, kind: str, phase_seq: int, details: Optional[dict[str, Any]] = None) -> None:
        self._add_entry(
            level="INFO",
            category=LogCategory.RESOLUTION.value,
            message=f"Resolution {kind} for phase {phase_seq}",
            data={"kind": kind, "phase_seq": phase_seq, **(details or {})},
        )
        if self._should_log(GameLogLevel.STANDARD):
            self._logger.info(f"[Resolution] {kind} (phase {phase_seq})")

    def log_trigger(self, kind: str, player_id: str, status: str) -> None:
        self._add_entry(
            level="INFO",
            category=LogCategory.TRIGGER.value,
            message=f"Trigger {kind} for {player_id}: {status}",
            data={"kind": kind, "player_id": player_id, "status": status},
        )
        if self._should_log(GameLogLevel.STANDARD):
            self._logger.info(f"[Trigger] {kind} for {player_id}: {status}")

    def log_game_end(self, winner: Winner, final_day: int, survivors: list[Player]) -> None:
        self._add_entry(
            level="INFO",
            category=LogCategory.GAME.value,
            message=f"Game ended - {winner.team.value} wins",
            data={
                "winner": winner.model_dump(mode="json"),
                "final_day": final_day,
                "survivors": [{"id": p.id, "name": p.name, "role": p.role_id} for p in survivors],
            },
        )
        self._logger.info(f"Game ended on day {final_day}: {winner.team.value.upper()} wins!")

    def log_error(
        self,
        message: str,
        error_type: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self._add_entry(
            level="ERROR",
            category=LogCategory.ERROR.value,
            message=message,
            data={"error_type": error_type, **(details or {})},
        )
        self._logger.error(f"[Error] {error_type}: {message}")

    def _describe_event(self, event: EventRecord, players: dict[str, Player]) -> str:
        actor = players.get(event.actor_id) if event.actor_id else None
        target = players.get(event.target_id) if event.target_id else None
        actor_name = actor.name if actor else "Unknown"
        target_name = target.name if target else "Unknown"

        descriptions = {
            "game_started": "Game started",
            "game_ended": f"Game ended - {event.data.get('winner', 'unknown')} wins",
            "phase_changed": f"Phase changed to {event.data.get('to', 'unknown')}",
            "wolf_attack": f"Wolves targeted {target_name}",
            "wolf_attack_tied": "Wolves could not agree on a victim",
            "player_protected": f"{actor_name} protected {target_name}",
            "witch_life_potion": f"Witch saved {target_name}",
            "witch_death_potion": f"Witch poisoned {target_name}",
            "lovers_bonded": "Two players were bonded",
            "roles_swapped": "Two roles were swapped",
            "role_inspected": f"{actor_name} inspected {target_name}",
            "player_transformed": f"{target_name} transformed",
            "player_killed": f"{target_name} was found dead",
            "player_eliminated": f"{target_name} was eliminated by the council",
            "vote_result": "Vote concluded",
            "immunity_used": f"{actor_name} used immunity",
            "hunter_shot": f"{actor_name} shot {target_name}",
            "revenge_awaited": f"{actor_name} takes aim before dying",
            "revenge_skipped": f"{actor_name} did not shoot",
            "night_skipped": "Night skipped by the operator",
            "no_death": "No one died",
        }

        event_type = event.event_type.value
        return f"[Event] {descriptions.get(event_type, f'{event_type}: {actor_name} -> {target_name}')}"

    def get_entries(self, category: Optional[str] = None) -> list[LogEntry]:
        if category:
            return [e for e in self.entries if e.category == category]
        return self.entries.copy()

    def export_json(self) -> str:
        return json.dumps(
            [e.model_dump(mode="json") for e in self.entries],
            indent=2,
            ensure_ascii=False,
            default=str,
        )


def create_game_logger(
    game_id: Optional[str] = None,
    log_level: GameLogLevel = GameLogLevel.STANDARD,
    output_path: Optional[Union[str, Path]] = None,
    enable_console: bool = True,
    enable_file: bool = False,
) -> GameLogger:
    if game_id is None:
        game_id = datetime.now().strftime("%Y%m%d_%H%M%S")

    path = Path(output_path) if output_path else None

    return GameLogger(
        game_id=game_id,
        log_level=log_level,
        output_path=path,
        enable_console=enable_console,
        enable_file=enable_file,
    )
