"""Tests for submission validation."""

import pytest

from autogarou.engine.catalog import default_role_catalog
from autogarou.engine.errors import GameNotFoundError, PlayerNotFoundError
from autogarou.engine.ledger import ActionLedger
from autogarou.engine.roles import DeathCause, GamePhase, RejectionReason, ResolutionState, TriggerKind
from autogarou.engine.state import PendingTrigger, RuleVariants
from autogarou.io.store import InMemoryGameStore

from conftest import GAME_ID, FakeClock, make_game, make_players, make_settings, power_use


def build_ledger(players, game=None, power_uses=None):
    store = InMemoryGameStore()
    store.create_game(game or make_game(), list(players.values()), default_role_catalog())
    if power_uses:
        store.restore(
            game=store.get_game(GAME_ID),
            players=store.get_players(GAME_ID),
            catalog=store.get_catalog(GAME_ID),
            actions=[],
            votes=[],
            power_uses=power_uses,
            events=[],
        )
    return ActionLedger(store, clock=FakeClock()), store


class TestActionValidation:
    def test_valid_action_is_recorded(self, village):
        ledger, _ = build_ledger(village)
        result = ledger.submit(GAME_ID, 1, "seer", "voir_role", ["w1"])

        assert result.accepted
        records = ledger.query(GAME_ID, 1)
        assert [(r.player_id, r.power_id, r.target_ids) for r in records] == [("seer", "voir_role", ["w1"])]

    def test_resubmission_replaces_previous(self, village):
        ledger, _ = build_ledger(village)
        ledger.submit(GAME_ID, 1, "w1", "devorer", ["v1"])
        ledger.submit(GAME_ID, 1, "w1", "devorer", ["v2"])
        records = ledger.query(GAME_ID, 1)
        assert len(records) == 1
        assert records[0].target_ids == ["v2"]

    def test_stale_phase(self, village):
        ledger, _ = build_ledger(village)
        result = ledger.submit(GAME_ID, 0, "seer", "voir_role", ["w1"])
        assert result.reason == RejectionReason.STALE_PHASE

    def test_power_not_held(self, village):
        ledger, _ = build_ledger(village)
        result = ledger.submit(GAME_ID, 1, "v1", "voir_role", ["w1"])
        assert result.reason == RejectionReason.POWER_NOT_HELD

    def test_dead_actor(self, village):
        village["seer"].kill(DeathCause.DEVOURED, 0)
        ledger, _ = build_ledger(village)
        result = ledger.submit(GAME_ID, 1, "seer", "voir_role", ["w1"])
        assert result.reason == RejectionReason.NOT_ALIVE

    def test_night_power_during_council(self, village):
        ledger, _ = build_ledger(village, game=make_game(phase=GamePhase.COUNCIL, phase_seq=3))
        result = ledger.submit(GAME_ID, 3, "seer", "voir_role", ["w1"])
        assert result.reason == RejectionReason.WRONG_PHASE

    def test_first_night_only(self, village):
        ledger, _ = build_ledger(village, game=make_game(phase_seq=4, day_count=1))
        result = ledger.submit(GAME_ID, 4, "cupid", "lien_amoureux", ["v1", "v2"])
        assert result.reason == RejectionReason.WRONG_PHASE

    def test_exhausted_power(self, village):
        ledger, _ = build_ledger(village, power_uses=[power_use("witch", "potion_mort")])
        result = ledger.submit(GAME_ID, 1, "witch", "potion_mort", ["w1"])
        assert result.reason == RejectionReason.POWER_EXHAUSTED

    def test_rejected_while_resolving(self, village):
        ledger, store = build_ledger(village)
        assert store.begin_resolution(GAME_ID, 1)
        result = ledger.submit(GAME_ID, 1, "seer", "voir_role", ["w1"])
        assert result.reason == RejectionReason.STALE_PHASE

    def test_unknown_game_and_player(self, village):
        ledger, _ = build_ledger(village)
        with pytest.raises(GameNotFoundError):
            ledger.submit("missing", 1, "seer", "voir_role", ["w1"])
        with pytest.raises(PlayerNotFoundError):
            ledger.submit(GAME_ID, 1, "nobody", "voir_role", ["w1"])


class TestTargetValidation:
    @pytest.mark.parametrize(
        "player_id,power_id,targets",
        [
            ("w1", "devorer", ["w2"]),
            ("w1", "devorer", []),
            ("seer", "voir_role", ["seer"]),
            ("cupid", "lien_amoureux", ["v1"]),
            ("cupid", "lien_amoureux", ["v1", "v1"]),
            ("witch", "potion_mort", ["ghost"]),
        ],
    )
    def test_invalid_targets(self, village, player_id, power_id, targets):
        ledger, _ = build_ledger(village)
        result = ledger.submit(GAME_ID, 1, player_id, power_id, targets)
        assert result.reason == RejectionReason.INVALID_TARGET

    def test_dead_target(self, village):
        village["v1"].kill(DeathCause.DEVOURED, 0)
        ledger, _ = build_ledger(village)
        result = ledger.submit(GAME_ID, 1, "seer", "voir_role", ["v1"])
        assert result.reason == RejectionReason.INVALID_TARGET

    def test_guard_self_protection_variant(self, village):
        ledger, _ = build_ledger(village)
        assert ledger.submit(GAME_ID, 1, "guard", "proteger", ["guard"]).accepted

        game = make_game(settings=make_settings(RuleVariants(protector_can_self_protect=False)))
        ledger, _ = build_ledger(village, game=game)
        result = ledger.submit(GAME_ID, 1, "guard", "proteger", ["guard"])
        assert result.reason == RejectionReason.INVALID_TARGET

    def test_guard_cannot_repeat_last_night(self, village):
        ledger, _ = build_ledger(
            village,
            game=make_game(phase_seq=4, day_count=1),
            power_uses=[power_use("guard", "proteger", last_target_ids=["v1"], last_night=1)],
        )
        assert ledger.submit(GAME_ID, 4, "guard", "proteger", ["v1"]).reason == RejectionReason.INVALID_TARGET
        assert ledger.submit(GAME_ID, 4, "guard", "proteger", ["v2"]).accepted

    def test_life_potion_target_is_optional(self, village):
        ledger, _ = build_ledger(village)
        assert ledger.submit(GAME_ID, 1, "witch", "potion_vie", []).accepted


class TestRevengeShotValidation:
    def test_dead_hunter_with_trigger(self, village):
        village["hunter"].kill(DeathCause.DEVOURED, 1)
        trigger = PendingTrigger(kind=TriggerKind.AWAITING_REVENGE, player_id="hunter", phase_seq=1)
        game = make_game(pending_triggers=[trigger], resolution=ResolutionState.AWAITING_TRIGGERS)
        ledger, _ = build_ledger(village, game=game)

        result, record = ledger.validate(GAME_ID, 1, "hunter", "tir_mortel", ["w1"])
        assert result.accepted
        assert record.target_ids == ["w1"]

    def test_alive_hunter_cannot_shoot(self, village):
        ledger, _ = build_ledger(village)
        result, record = ledger.validate(GAME_ID, 1, "hunter", "tir_mortel", ["w1"])
        assert result.reason == RejectionReason.WRONG_PHASE
        assert record is None

    def test_dead_hunter_without_trigger(self, village):
        village["hunter"].kill(DeathCause.DEVOURED, 0)
        ledger, _ = build_ledger(village)
        result, _ = ledger.validate(GAME_ID, 1, "hunter", "tir_mortel", ["w1"])
        assert result.reason == RejectionReason.NOT_ALIVE


class TestVotes:
    @pytest.fixture
    def council(self, village):
        return build_ledger(village, game=make_game(phase=GamePhase.COUNCIL, phase_seq=3))

    def test_vote_is_recorded_and_replaced(self, council):
        ledger, _ = council
        assert ledger.submit_vote(GAME_ID, 3, "v1", "w1").accepted
        assert ledger.submit_vote(GAME_ID, 3, "v1", "w2").accepted
        votes = ledger.query_votes(GAME_ID, 3)
        assert [(v.voter_id, v.target_id) for v in votes] == [("v1", "w2")]

    def test_abstention(self, council):
        ledger, _ = council
        assert ledger.submit_vote(GAME_ID, 3, "v1", None).accepted

    def test_self_vote_rejected(self, council):
        ledger, _ = council
        assert ledger.submit_vote(GAME_ID, 3, "v1", "v1").reason == RejectionReason.INVALID_TARGET

    def test_vote_outside_council(self, village):
        ledger, _ = build_ledger(village)
        assert ledger.submit_vote(GAME_ID, 1, "v1", "w1").reason == RejectionReason.WRONG_PHASE

    def test_dead_voter(self, village):
        village["v1"].kill(DeathCause.DEVOURED, 1)
        ledger, _ = build_ledger(village, game=make_game(phase=GamePhase.COUNCIL, phase_seq=3))
        assert ledger.submit_vote(GAME_ID, 3, "v1", "w1").reason == RejectionReason.NOT_ALIVE

    def test_double_vote_requires_power(self, council):
        ledger, _ = council
        result = ledger.submit_vote(GAME_ID, 3, "v1", "w1", double=True)
        assert result.reason == RejectionReason.POWER_NOT_HELD

    def test_double_vote_with_granted_power(self, village):
        village["v1"].granted_powers = ["double_vote"]
        ledger, _ = build_ledger(village, game=make_game(phase=GamePhase.COUNCIL, phase_seq=3))
        assert ledger.submit_vote(GAME_ID, 3, "v1", "w1", double=True).accepted
        assert ledger.query_votes(GAME_ID, 3)[0].weight == 2

    def test_spent_anonymous_vote(self, village):
        village["v1"].granted_powers = ["vote_anonyme"]
        ledger, _ = build_ledger(
            village,
            game=make_game(phase=GamePhase.COUNCIL, phase_seq=3),
            power_uses=[power_use("v1", "vote_anonyme")],
        )
        result = ledger.submit_vote(GAME_ID, 3, "v1", "w1", anonymous=True)
        assert result.reason == RejectionReason.POWER_EXHAUSTED

    def test_immunity_is_armed_during_council(self, village):
        village["v1"].granted_powers = ["immunite"]
        ledger, _ = build_ledger(village, game=make_game(phase=GamePhase.COUNCIL, phase_seq=3))
        assert ledger.submit(GAME_ID, 3, "v1", "immunite", []).accepted
