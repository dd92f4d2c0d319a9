from __future__ import annotations

from statemachine import State, StateMachine

from gamestack.api.models import OrchestrationState, Phase


class PhaseMachine(StateMachine):
    """FSM wrapper around OrchestrationState.phase.

    Phases are advisory: every event is accepted from every phase, so the
    machine records the lifecycle label without ever refusing an operation.
    - stopped/running/error -> switching -> running | error
    - any -> running (start), any -> stopped (stop)
    """

    stopped = State(Phase.stopped.value, value=Phase.stopped.value, initial=True)
    running = State(Phase.running.value, value=Phase.running.value)
    switching = State(Phase.switching.value, value=Phase.switching.value)
    failed = State(Phase.error.value, value=Phase.error.value)

    begin_switch = (
        stopped.to(switching) | running.to(switching) | failed.to(switching) | switching.to(switching)
    )
    mark_running = stopped.to(running) | switching.to(running) | failed.to(running) | running.to(running)
    mark_stopped = running.to(stopped) | switching.to(stopped) | failed.to(stopped) | stopped.to(stopped)
    mark_error = stopped.to(failed) | running.to(failed) | switching.to(failed) | failed.to(failed)

    def __init__(self, record: OrchestrationState):
        self.record = record
        super().__init__(start_value=record.phase.value)

    def sync_phase_to_model(self) -> None:
        self.record.phase = Phase(str(self.current_state.value))


def apply_phase(record: OrchestrationState, event: str) -> OrchestrationState:
    """Run `event` against the record's phase and write the result back."""

    fsm = PhaseMachine(record)
    fsm.send(event)
    fsm.sync_phase_to_model()
    return record
