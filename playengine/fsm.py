from __future__ import annotations

from statemachine import State, StateMachine

from playengine.api.models import GameState, SessionPhase


class SessionFSM(StateMachine):
    """FSM wrapper around the session phase of a GameState.

    Scene-to-scene moves are driven by the navigator; this machine only guards
    the lifecycle: a session is in progress until it reaches a terminal scene,
    then it is completed for good.
    """

    in_progress = State(
        SessionPhase.in_progress.value,
        value=SessionPhase.in_progress.value,
        initial=True,
    )
    completed = State(SessionPhase.completed.value, value=SessionPhase.completed.value, final=True)

    finish = in_progress.to(completed)

    def __init__(self, game: GameState):
        self.game = game
        super().__init__(start_value=game.phase.value)

    @property
    def is_completed(self) -> bool:
        return self.current_state_value == self.completed.value

    def sync_phase_to_model(self) -> None:
        self.game.phase = SessionPhase(str(self.current_state_value))
