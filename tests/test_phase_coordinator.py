"""Tests for the phase coordinator."""

import threading

import pytest

from autogarou.engine.errors import EngineIntegrityError, InvalidTransitionError
from autogarou.engine.roles import (
    DeathCause,
    EffectKind,
    GamePhase,
    ResolutionState,
    Team,
    TriggerKind,
)
from autogarou.engine.state import (
    AlreadyResolved,
    CouncilOutcome,
    EventType,
    GameSettings,
    ImmediateOutcome,
    NightOutcome,
    NotReady,
    PhaseAdvance,
    PhaseDurations,
    TriggersSkipped,
)
from autogarou.orchestrator.phase_coordinator import PhaseCoordinator, public_outcome

from conftest import GAME_ID, make_game, make_players, seed_game

PLAYER_NAMES = [f"Player {i}" for i in range(1, 9)]


def council_game(**fields):
    return make_game(phase=GamePhase.COUNCIL, phase_seq=3, **fields)


def alive_ids(coordinator):
    return {p.id for p in coordinator.get_players(GAME_ID) if p.is_alive}


def event_types(coordinator):
    return [e.event_type for e in coordinator.events(GAME_ID, privileged=True)]


class TestLifecycle:
    def test_create_and_start(self, coordinator):
        game = coordinator.create_game(PLAYER_NAMES, GameSettings(bot_autopilot=False))
        assert game.phase == GamePhase.LOBBY
        assert len(coordinator.get_players(game.id)) == 8

        advance = coordinator.start_game(game.id)

        assert advance.to_phase == GamePhase.NIGHT
        started = coordinator.get_game(game.id)
        assert started.phase == GamePhase.NIGHT
        assert started.phase_seq == 1
        types = [e.event_type for e in coordinator.events(game.id)]
        assert types == [EventType.GAME_STARTED, EventType.PHASE_CHANGED]

    def test_start_twice_fails(self, coordinator):
        game = coordinator.create_game(PLAYER_NAMES)
        coordinator.start_game(game.id)
        with pytest.raises(InvalidTransitionError):
            coordinator.start_game(game.id)

    def test_lobby_is_not_ready(self, coordinator):
        game = coordinator.create_game(PLAYER_NAMES)
        result = coordinator.resolve(game.id)
        assert isinstance(result, NotReady)
        assert result.reason == "game_not_started"

    def test_full_cycle(self, coordinator, village):
        seed_game(coordinator, village)
        coordinator.submit_action(GAME_ID, 1, "w1", "devorer", ["v1"])
        coordinator.submit_action(GAME_ID, 1, "w2", "devorer", ["v1"])

        night = coordinator.resolve(GAME_ID)
        assert isinstance(night, NightOutcome)
        assert coordinator.get_game(GAME_ID).phase == GamePhase.DAY

        day = coordinator.resolve(GAME_ID)
        assert isinstance(day, PhaseAdvance)
        assert day.to_phase == GamePhase.COUNCIL

        for voter in ("seer", "witch", "hunter", "guard", "cupid", "v2", "w2"):
            coordinator.submit_vote(GAME_ID, 3, voter, "w1")
        coordinator.submit_vote(GAME_ID, 3, "w1", "seer")

        council = coordinator.resolve(GAME_ID)
        assert isinstance(council, CouncilOutcome)
        assert council.eliminated.player_id == "w1"
        game = coordinator.get_game(GAME_ID)
        assert game.phase == GamePhase.NIGHT
        assert game.phase_seq == 4
        assert game.day_count == 1


class TestExactlyOnce:
    def test_second_resolve_is_already_resolved(self, coordinator, village):
        seed_game(coordinator, village)
        coordinator.submit_action(GAME_ID, 1, "w1", "devorer", ["v1"])
        coordinator.resolve(GAME_ID, 1, force=True)
        events_before = len(coordinator.events(GAME_ID, privileged=True))

        again = coordinator.resolve(GAME_ID, 1, force=True)

        assert isinstance(again, AlreadyResolved)
        assert again.current_phase_seq == 2
        assert len(coordinator.events(GAME_ID, privileged=True)) == events_before

    def test_concurrent_resolutions(self, coordinator, village):
        seed_game(coordinator, village)
        coordinator.submit_action(GAME_ID, 1, "w1", "devorer", ["v1"])
        coordinator.submit_action(GAME_ID, 1, "w2", "devorer", ["v1"])

        barrier = threading.Barrier(8)
        results = []

        def worker():
            barrier.wait()
            results.append(coordinator.resolve(GAME_ID, 1, force=True))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        outcomes = [r for r in results if isinstance(r, NightOutcome)]
        assert len(outcomes) == 1
        assert all(isinstance(r, AlreadyResolved) for r in results if r is not outcomes[0])
        killed = [e for e in coordinator.events(GAME_ID, privileged=True) if e.event_type == EventType.PLAYER_KILLED]
        assert len(killed) == 1

    def test_capped_power_applies_once_under_concurrency(self, coordinator):
        players = make_players({
            "assassin": "assassin",
            "w1": "loup_garou",
            "v1": "villageois",
            "v2": "villageois",
            "v3": "villageois",
            "v4": "villageois",
        })
        seed_game(coordinator, players)
        targets = ["v1", "v2", "v3", "v4"]
        barrier = threading.Barrier(len(targets))
        results = []

        def worker(target):
            barrier.wait()
            results.append(coordinator.submit_action(GAME_ID, 1, "assassin", "assassiner", [target]))

        threads = [threading.Thread(target=worker, args=(t,)) for t in targets]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(1 for r in results if r.accepted) == 1
        assert len(set(targets) - alive_ids(coordinator)) == 1


class TestParticipation:
    def test_status_counts_wolves(self, coordinator, village):
        seed_game(coordinator, village)
        coordinator.submit_action(GAME_ID, 1, "w1", "devorer", ["v1"])
        coordinator.submit_action(GAME_ID, 1, "seer", "voir_role", ["w1"])

        status = coordinator.status(GAME_ID)
        assert (status.submitted, status.required) == (1, 2)
        assert not status.can_resolve

    def test_incomplete_participation_needs_force(self, coordinator, village):
        seed_game(coordinator, village)
        coordinator.submit_action(GAME_ID, 1, "w1", "devorer", ["v1"])

        result = coordinator.resolve(GAME_ID)
        assert isinstance(result, NotReady)
        assert result.reason == "incomplete_participation"

        forced = coordinator.resolve(GAME_ID, force=True)
        assert isinstance(forced, NightOutcome)
        assert "v1" not in alive_ids(coordinator)

    def test_phase_resolved_during_participation_check(self, coordinator, village, monkeypatch):
        """A caller overtaken between its read and the status check loses the race."""
        seed_game(coordinator, village, council_game())
        status = coordinator.status

        def overtaken(game_id):
            monkeypatch.setattr(coordinator, "status", status)
            coordinator.resolve(game_id, 3, force=True)
            return status(game_id)

        monkeypatch.setattr(coordinator, "status", overtaken)
        result = coordinator.resolve(GAME_ID, 3)

        assert isinstance(result, AlreadyResolved)
        assert result.phase_seq == 3
        assert result.current_phase_seq == 4

    def test_council_status_counts_voters(self, coordinator, village):
        seed_game(coordinator, village, council_game())
        coordinator.submit_vote(GAME_ID, 3, "v1", "w1")
        status = coordinator.status(GAME_ID)
        assert (status.submitted, status.required) == (1, 9)


class TestRevengeShot:
    @pytest.fixture
    def hunter_table(self, coordinator):
        players = make_players({
            "w1": "loup_garou",
            "w2": "loup_garou",
            "hunter": "chasseur",
            "p4": "villageois",
            "v1": "villageois",
        })
        seed_game(coordinator, players, council_game())
        coordinator.submit_vote(GAME_ID, 3, "w1", "hunter")
        coordinator.submit_vote(GAME_ID, 3, "w2", "hunter")
        coordinator.submit_vote(GAME_ID, 3, "v1", "w1")
        return coordinator.resolve(GAME_ID, force=True)

    def test_victory_waits_for_the_shot(self, coordinator, hunter_table):
        """Wolves reach parity on the elimination but the verdict waits for the shot."""
        assert hunter_table.eliminated.player_id == "hunter"
        assert hunter_table.winner is None
        game = coordinator.get_game(GAME_ID)
        assert game.phase == GamePhase.COUNCIL
        assert game.resolution == ResolutionState.AWAITING_TRIGGERS
        assert isinstance(coordinator.resolve(GAME_ID), AlreadyResolved)

        result = coordinator.submit_action(GAME_ID, 3, "hunter", "tir_mortel", ["p4"])

        assert result.accepted
        assert isinstance(result.outcome, ImmediateOutcome)
        assert [d.player_id for d in result.outcome.deaths] == ["p4"]
        assert result.outcome.deaths[0].cause == DeathCause.HUNTER_SHOT
        assert result.outcome.winner.team == Team.WOLVES
        assert result.outcome.phase_finalized
        game = coordinator.get_game(GAME_ID)
        assert game.phase == GamePhase.FINISHED
        assert game.winner.team == Team.WOLVES

        events = coordinator.events(GAME_ID, privileged=True)
        eliminated = [e for e in events if e.event_type == EventType.PLAYER_ELIMINATED]
        shot = [e for e in events if e.event_type == EventType.PLAYER_KILLED]
        assert [e.target_id for e in eliminated] == ["hunter"]
        assert [e.target_id for e in shot] == ["p4"]
        assert eliminated[0].sequence < shot[0].sequence

    def test_second_shot_is_rejected(self, coordinator, hunter_table):
        coordinator.submit_action(GAME_ID, 3, "hunter", "tir_mortel", ["v1"])
        game = coordinator.get_game(GAME_ID)
        result = coordinator.submit_action(GAME_ID, game.phase_seq, "hunter", "tir_mortel", ["p4"])
        assert not result.accepted

    def test_skip_finalizes_the_phase(self, coordinator, hunter_table):
        skipped = coordinator.skip_pending_triggers(GAME_ID)

        assert isinstance(skipped, TriggersSkipped)
        assert skipped.skipped_player_ids == ["hunter"]
        assert skipped.phase_finalized
        assert skipped.winner.team == Team.WOLVES
        assert coordinator.get_game(GAME_ID).phase == GamePhase.FINISHED
        assert EventType.REVENGE_SKIPPED in event_types(coordinator)

    def test_tick_expires_the_wait(self, coordinator, clock, hunter_table):
        assert coordinator.tick() == []

        clock.advance(91)
        results = coordinator.tick()

        assert [type(r) for r in results] == [TriggersSkipped]
        assert coordinator.get_game(GAME_ID).pending_triggers == []


class TestImmediatePowers:
    def test_silent_kill_is_a_mystery(self, coordinator):
        players = make_players({
            "assassin": "assassin",
            "w1": "loup_garou",
            "v1": "villageois",
            "v2": "villageois",
            "v3": "villageois",
        })
        seed_game(coordinator, players, make_game(phase=GamePhase.DAY, phase_seq=2))

        result = coordinator.submit_action(GAME_ID, 2, "assassin", "assassiner", ["v1"])

        assert result.accepted
        assert result.outcome.deaths[0].cause is None
        public = [e for e in coordinator.events(GAME_ID) if e.event_type == EventType.PLAYER_KILLED][0]
        assert "cause" not in public.data
        assert public.actor_id is None
        assert not any(e.event_type == EventType.POWER_USED for e in coordinator.events(GAME_ID))
        mine = [e.event_type for e in coordinator.events(GAME_ID, viewer_id="assassin")]
        assert EventType.POWER_USED in mine
        privileged = [e for e in coordinator.events(GAME_ID, privileged=True) if e.event_type == EventType.PLAYER_KILLED]
        assert privileged[0].data["cause"] == DeathCause.ASSASSINATED.value

    def test_silent_kill_can_end_the_game(self, coordinator):
        players = make_players({"assassin": "assassin", "w1": "loup_garou", "v1": "villageois"})
        seed_game(coordinator, players, make_game(phase=GamePhase.DAY, phase_seq=2))

        result = coordinator.submit_action(GAME_ID, 2, "assassin", "assassiner", ["w1"])

        assert result.outcome.winner.team == Team.VILLAGE
        assert coordinator.get_game(GAME_ID).phase == GamePhase.FINISHED


class TestOperatorControls:
    def test_skip_night_discards_wolf_attack(self, coordinator, village):
        seed_game(coordinator, village)
        coordinator.submit_action(GAME_ID, 1, "w1", "devorer", ["v1"])
        coordinator.submit_action(GAME_ID, 1, "w2", "devorer", ["v1"])

        outcome = coordinator.skip_night_attack(GAME_ID)

        assert outcome.skipped
        assert outcome.deaths == []
        assert outcome.wolf_target_id is None
        assert "v1" in alive_ids(coordinator)
        assert coordinator.get_game(GAME_ID).phase == GamePhase.DAY
        assert EventType.NIGHT_SKIPPED in event_types(coordinator)

    def test_skip_night_keeps_other_night_actions(self, coordinator, village):
        """First-night bonds and protections still land when the attack is skipped."""
        seed_game(coordinator, village)
        coordinator.submit_action(GAME_ID, 1, "cupid", "lien_amoureux", ["v1", "v2"])
        coordinator.submit_action(GAME_ID, 1, "guard", "proteger", ["seer"])
        coordinator.submit_action(GAME_ID, 1, "witch", "potion_vie", [])
        coordinator.submit_action(GAME_ID, 1, "w1", "devorer", ["v1"])
        coordinator.submit_action(GAME_ID, 1, "w2", "devorer", ["v1"])

        coordinator.skip_night_attack(GAME_ID)

        players = {p.id: p for p in coordinator.get_players(GAME_ID)}
        assert players["v1"].bonded_partner_id == "v2"
        assert players["v2"].bonded_partner_id == "v1"
        assert EventType.PLAYER_PROTECTED in event_types(coordinator)
        used = {(u.player_id, u.power_id) for u in coordinator.store.list_power_uses(GAME_ID)}
        assert ("cupid", "lien_amoureux") in used
        assert ("witch", "potion_vie") not in used
        assert not any(u.power_id == "devorer" for u in coordinator.store.list_power_uses(GAME_ID))

    def test_skip_night_applies_death_potion(self, coordinator, village):
        seed_game(coordinator, village)
        coordinator.submit_action(GAME_ID, 1, "witch", "potion_mort", ["v2"])

        outcome = coordinator.skip_night_attack(GAME_ID)

        assert [d.player_id for d in outcome.deaths] == ["v2"]
        assert "v2" not in alive_ids(coordinator)

    def test_skip_night_keeps_immediate_deaths(self, coordinator):
        players = make_players({
            "assassin": "assassin",
            "w1": "loup_garou",
            "v1": "villageois",
            "v2": "villageois",
            "v3": "villageois",
        })
        seed_game(coordinator, players)
        coordinator.submit_action(GAME_ID, 1, "assassin", "assassiner", ["v1"])

        coordinator.skip_night_attack(GAME_ID)

        assert "v1" not in alive_ids(coordinator)
        assert coordinator.get_game(GAME_ID).phase == GamePhase.DAY

    def test_skip_night_still_checks_victory(self, coordinator):
        players = make_players({"assassin": "assassin", "w1": "loup_garou", "v1": "villageois", "v2": "villageois"})
        seed_game(coordinator, players)
        coordinator.submit_action(GAME_ID, 1, "assassin", "assassiner", ["v1"])
        coordinator.submit_action(GAME_ID, 1, "w1", "devorer", ["v2"])

        outcome = coordinator.skip_night_attack(GAME_ID)

        # w1 against the assassin and v2
        assert outcome.winner is None
        assert "v2" in alive_ids(coordinator)

    def test_skip_night_outside_night(self, coordinator, village):
        seed_game(coordinator, village, council_game())
        with pytest.raises(InvalidTransitionError):
            coordinator.skip_night_attack(GAME_ID)


class TestIntegrity:
    def test_broken_invariant_aborts_without_writing(self, coordinator):
        players = make_players({"w1": "loup_garou", "v1": "villageois", "v2": "villageois", "v3": "villageois"})
        players["v2"].bonded_partner_id = "v3"
        seed_game(coordinator, players)
        coordinator.submit_action(GAME_ID, 1, "w1", "devorer", ["v1"])
        events_before = len(coordinator.events(GAME_ID, privileged=True))

        with pytest.raises(EngineIntegrityError):
            coordinator.resolve(GAME_ID, force=True)

        game = coordinator.get_game(GAME_ID)
        assert game.phase_seq == 1
        assert game.resolution == ResolutionState.OPEN
        assert alive_ids(coordinator) == {"w1", "v1", "v2", "v3"}
        assert len(coordinator.events(GAME_ID, privileged=True)) == events_before
        errors = coordinator.game_logger(GAME_ID).get_entries("error")
        assert errors and errors[0].data["error_type"] == "EngineIntegrityError"


class TestTransformations:
    def test_model_death_transforms_at_next_night(self, coordinator):
        players = make_players({
            "w1": "loup_garou",
            "child": "enfant_sauvage",
            "model": "villageois",
            "v1": "villageois",
            "v2": "villageois",
            "v3": "villageois",
            "v4": "villageois",
        })
        seed_game(coordinator, players)
        published = []
        coordinator.set_outcome_callback(lambda game_id, outcome: published.append(outcome))

        coordinator.submit_action(GAME_ID, 1, "child", "choisir_modele", ["model"])
        coordinator.submit_action(GAME_ID, 1, "w1", "devorer", ["v1"])
        coordinator.resolve(GAME_ID)
        coordinator.resolve(GAME_ID)
        for voter in ("w1", "child", "v2", "v3", "v4"):
            coordinator.submit_vote(GAME_ID, 3, voter, "model")

        council = coordinator.resolve(GAME_ID, force=True)

        assert council.eliminated.player_id == "model"
        assert [t.kind for t in council.transformations] == [EffectKind.MODEL_TRANSFORM]
        child = [p for p in coordinator.get_players(GAME_ID) if p.id == "child"][0]
        assert child.role_id == "loup_garou"
        assert child.transformed
        assert coordinator.get_game(GAME_ID).pending_triggers == []
        assert "transformations" not in published[-1]
        transformed = [
            e for e in coordinator.events(GAME_ID, viewer_id="w1")
            if e.event_type == EventType.PLAYER_TRANSFORMED
        ]
        assert len(transformed) == 1
        assert not any(
            e.event_type == EventType.PLAYER_TRANSFORMED for e in coordinator.events(GAME_ID, viewer_id="v2")
        )


class TestOutcomeBroadcast:
    def test_each_outcome_is_published_once(self, coordinator, village):
        seed_game(coordinator, village)
        published = []
        coordinator.set_outcome_callback(lambda game_id, outcome: published.append((game_id, outcome)))
        coordinator.submit_action(GAME_ID, 1, "w1", "devorer", ["v1"])

        coordinator.resolve(GAME_ID, force=True)
        coordinator.resolve(GAME_ID, 1, force=True)

        assert len(published) == 1
        game_id, outcome = published[0]
        assert game_id == GAME_ID
        assert outcome["kind"] == "night"
        assert "wolf_target_id" not in outcome

    def test_callback_failure_does_not_break_resolution(self, coordinator, village):
        seed_game(coordinator, village)

        def explode(game_id, outcome):
            raise RuntimeError("subscriber down")

        coordinator.set_outcome_callback(explode)
        result = coordinator.resolve(GAME_ID, force=True)
        assert isinstance(result, NightOutcome)

    def test_public_outcome_keeps_deaths(self):
        outcome = NightOutcome(game_id=GAME_ID, phase_seq=1, wolf_target_id="v1")
        data = public_outcome(outcome)
        assert data["deaths"] == []
        assert "wolf_target_id" not in data


class TestTimer:
    def test_auto_mode_resolves_overdue_phase(self, clock):
        coordinator = PhaseCoordinator(clock=clock)
        settings = GameSettings(auto_mode=True, bot_autopilot=False, phase_durations=PhaseDurations(nuit=60))
        game = coordinator.create_game(PLAYER_NAMES, settings)
        coordinator.start_game(game.id)
        assert coordinator.get_game(game.id).phase_ends_at is not None

        assert coordinator.tick() == []
        clock.advance(61)
        results = coordinator.tick()

        assert [type(r) for r in results] == [NightOutcome]
        day = coordinator.get_game(game.id)
        assert day.phase == GamePhase.DAY
        assert day.phase_ends_at is not None

    def test_manual_mode_never_times_out(self, clock, coordinator):
        game = coordinator.create_game(PLAYER_NAMES, GameSettings(bot_autopilot=False))
        coordinator.start_game(game.id)
        clock.advance(10_000)
        assert coordinator.tick() == []
        assert coordinator.get_game(game.id).phase == GamePhase.NIGHT


class TestBots:
    def test_bots_vote_before_council_resolution(self, coordinator):
        players = make_players(
            {"w1": "loup_garou", "b1": "villageois", "b2": "villageois", "b3": "villageois"},
            b1={"is_bot": True},
            b2={"is_bot": True},
            b3={"is_bot": True},
        )
        seed_game(coordinator, players, council_game(settings=GameSettings(bot_autopilot=True, random_seed=7)))
        coordinator.submit_vote(GAME_ID, 3, "w1", "b1")

        outcome = coordinator.resolve(GAME_ID)

        assert isinstance(outcome, CouncilOutcome)
        assert sum(outcome.vote_counts.values()) == 4

    def test_bot_fires_pending_revenge_shot(self, coordinator):
        players = make_players(
            {"w1": "loup_garou", "w2": "loup_garou", "bot": "chasseur", "v1": "villageois", "v2": "villageois", "v3": "villageois"},
            bot={"is_bot": True},
        )
        seed_game(coordinator, players, council_game(settings=GameSettings(bot_autopilot=True, random_seed=3)))
        for voter in ("w1", "w2", "v1", "v2", "v3"):
            coordinator.submit_vote(GAME_ID, 3, voter, "bot")

        coordinator.resolve(GAME_ID)

        game = coordinator.get_game(GAME_ID)
        assert not any(t.kind == TriggerKind.AWAITING_REVENGE for t in game.pending_triggers)
        assert EventType.HUNTER_SHOT in event_types(coordinator)
