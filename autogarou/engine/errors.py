"""Exception hierarchy for the resolution engine.

Validation failures at submission time are not exceptions; they are returned as
rejected ``SubmissionResult`` values. The exceptions below cover unknown
records, lost races and rules-composition faults.
"""


class AutoGarouError(Exception):
    """Base class for engine errors."""


class GameNotFoundError(AutoGarouError):
    def __init__(self, game_id: str):
        super().__init__(f"Game '{game_id}' not found")
        self.game_id = game_id


class PlayerNotFoundError(AutoGarouError):
    def __init__(self, game_id: str, player_id: str):
        super().__init__(f"Player '{player_id}' not found in game '{game_id}'")
        self.game_id = game_id
        self.player_id = player_id


class StalePhaseError(AutoGarouError):
    """The phase sequence advanced under the caller."""

    def __init__(self, game_id: str, expected_seq: int, current_seq: int):
        super().__init__(
            f"Game '{game_id}' is at phase {current_seq}, expected {expected_seq}"
        )
        self.game_id = game_id
        self.expected_seq = expected_seq
        self.current_seq = current_seq


class InvalidTransitionError(AutoGarouError):
    """A phase transition not allowed from the current phase."""


class EngineIntegrityError(AutoGarouError):
    """A cascade or victory invariant was violated.

    Indicates a rules-composition bug. The resolution must be aborted without
    persisting anything.
    """
