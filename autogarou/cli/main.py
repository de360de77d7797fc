import logging
from pathlib import Path
from typing import Optional

import typer
import yaml

from autogarou.config.game_rules import (
    find_config_file,
    get_config_template,
    load_game_settings,
    save_default_config,
)
from autogarou.engine.state import (
    AlreadyResolved,
    EventRecord,
    Game,
    GameSettings,
    NotReady,
)
from autogarou.io.logging import GameLogLevel
from autogarou.io.persistence import GameSnapshot, capture_snapshot, load_snapshot, save_snapshot
from autogarou.orchestrator.phase_coordinator import PhaseCoordinator

app = typer.Typer(
    name="autogarou",
    help="AutoGarou - night action and council vote resolution for Loup-Garou games",
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

MAX_SIMULATED_PHASES = 500


def run_bot_game(
    settings: GameSettings,
    log_level: GameLogLevel = GameLogLevel.STANDARD,
    verbose: bool = False,
) -> tuple[PhaseCoordinator, Game]:
    """Play a game with bots only until someone wins.

    Every phase is force-resolved; bots vote and shoot on their own, and an
    awaited revenge shot that never comes is skipped.
    """
    settings = settings.model_copy(update={"bot_autopilot": True, "auto_mode": False})
    coordinator = PhaseCoordinator(log_level=log_level, enable_console_logging=verbose)
    game = coordinator.create_game(settings=settings)
    coordinator.start_game(game.id)

    for _ in range(MAX_SIMULATED_PHASES):
        game = coordinator.get_game(game.id)
        if game.is_over:
            break
        result = coordinator.resolve(game.id, game.phase_seq, force=True)
        if isinstance(result, (AlreadyResolved, NotReady)) and game.blocking_triggers():
            coordinator.skip_pending_triggers(game.id)
    else:
        logger.warning(f"Game {game.id} did not finish after {MAX_SIMULATED_PHASES} phases")

    return coordinator, coordinator.get_game(game.id)


def print_game_result(snapshot: GameSnapshot) -> None:
    typer.echo("\n" + "=" * 60)
    typer.echo("GAME RESULT")
    typer.echo("=" * 60)

    winner = snapshot.game.winner
    if winner:
        typer.echo(f"\nWinner: {winner.team.value.upper()} ({winner.reason})")
    else:
        typer.echo("\nWinner: none")
    typer.echo(f"Days played: {snapshot.game.day_count}")

    typer.echo("\n--- Final Player Status ---")
    for player in snapshot.players:
        status = "ALIVE" if player.is_alive else f"DEAD ({player.death_cause.value})"
        typer.echo(
            f"  {player.name} (Seat {player.seat_number}): "
            f"{player.role_id.upper()} - {status}"
        )

    typer.echo("\n" + "=" * 60)


def format_event(event: EventRecord, names: dict[str, str]) -> str:
    actor = names.get(event.actor_id, event.actor_id) if event.actor_id else None
    target = names.get(event.target_id, event.target_id) if event.target_id else None
    parts = [f"#{event.sequence:<4} [{event.phase.value}:{event.phase_seq}] {event.event_type.value}"]
    if actor:
        parts.append(f"by {actor}")
    if target:
        parts.append(f"-> {target}")
    if event.data:
        details = ", ".join(f"{k}={v}" for k, v in event.data.items())
        parts.append(f"({details})")
    if event.visibility.value != "public":
        parts.append(f"[{event.visibility.value}]")
    return " ".join(parts)


@app.command(name="init-config")
def init_config(
    output: Path = typer.Option(
        Path("autogarou_config.yaml"),
        "--output",
        "-o",
        help="Output path for the configuration file",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration file",
    ),
    template: bool = typer.Option(
        False,
        "--template",
        "-t",
        help="Generate template with comments (recommended for first-time setup)",
    ),
) -> None:
    """Generate a default game configuration file."""
    if output.exists() and not force:
        typer.echo(f"Error: File already exists: {output}", err=True)
        typer.echo("Use --force to overwrite.", err=True)
        raise typer.Exit(code=1)

    try:
        if template:
            output.parent.mkdir(parents=True, exist_ok=True)
            with open(output, "w", encoding="utf-8") as f:
                f.write(get_config_template())
        else:
            save_default_config(output)
    except OSError as e:
        typer.echo(f"Error creating configuration file: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Configuration file created: {output}")
    typer.echo("\nYou can now customize the rules and start the server with:")
    typer.echo(f"  autogarou serve --config {output}")


@app.command(name="show-config")
def show_config(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to game configuration YAML file",
    ),
) -> None:
    """Print the effective game settings."""
    found = find_config_file(config)
    typer.echo(f"# Source: {found if found else 'built-in defaults'}")
    settings = load_game_settings(config)
    typer.echo(
        yaml.safe_dump(
            settings.model_dump(mode="json"),
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )
    )


@app.command()
def serve(
    host: str = typer.Option(
        "0.0.0.0",
        "--host",
        "-h",
        help="Host to bind the server to",
    ),
    port: int = typer.Option(
        8000,
        "--port",
        "-p",
        help="Port to run the server on",
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to game configuration YAML file (default: autogarou_config.yaml)",
    ),
) -> None:
    """Start the API server."""
    from autogarou.web.server import run_server

    display_host = "localhost" if host == "0.0.0.0" else host
    typer.echo("\nAutoGarou Server Starting...")
    typer.echo("=" * 50)
    typer.echo(f"  API Base:   http://{display_host}:{port}/api")
    typer.echo(f"  API Docs:   http://{display_host}:{port}/docs")
    typer.echo("=" * 50)

    run_server(host=host, port=port, config_path=config)


@app.command()
def simulate(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to game configuration YAML file",
    ),
    seed: Optional[int] = typer.Option(
        None,
        "--seed",
        "-s",
        help="Random seed for reproducibility",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Save the final snapshot to this file (.json or .yaml)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Print game log entries to the console",
    ),
    log_level: str = typer.Option(
        "standard",
        "--log-level",
        "-l",
        help="Game log level: minimal, standard, verbose",
    ),
) -> None:
    """Play a game with bot players only."""
    try:
        level = GameLogLevel(log_level)
    except ValueError:
        typer.echo(f"Error: Unknown log level: {log_level}", err=True)
        raise typer.Exit(code=1)

    settings = load_game_settings(config)
    if seed is not None:
        settings = settings.model_copy(update={"random_seed": seed})

    coordinator, game = run_bot_game(settings, log_level=level, verbose=verbose)
    snapshot = capture_snapshot(coordinator.store, game.id)
    print_game_result(snapshot)

    if output:
        save_snapshot(snapshot, output)
        typer.echo(f"Snapshot saved to: {output}")


@app.command()
def inspect(
    snapshot_file: Path = typer.Argument(
        ...,
        help="Path to a saved snapshot (.json or .yaml)",
    ),
    viewer: Optional[str] = typer.Option(
        None,
        "--viewer",
        help="Show the feed as this player sees it",
    ),
    public: bool = typer.Option(
        False,
        "--public",
        help="Show only what every player sees",
    ),
) -> None:
    """Print the event feed of a saved snapshot."""
    if not snapshot_file.exists():
        typer.echo(f"Error: File not found: {snapshot_file}", err=True)
        raise typer.Exit(code=1)

    try:
        snapshot = load_snapshot(snapshot_file)
    except (ValueError, yaml.YAMLError) as e:
        typer.echo(f"Error loading snapshot: {e}", err=True)
        raise typer.Exit(code=1)

    privileged = viewer is None and not public
    names = {p.id: p.name for p in snapshot.players}
    current_seq = snapshot.game.phase_seq
    for event in snapshot.events:
        if not event.is_visible_to(viewer, privileged=privileged):
            continue
        shown = event if privileged else event.redacted(current_seq)
        typer.echo(format_event(shown, names))

    print_game_result(snapshot)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
