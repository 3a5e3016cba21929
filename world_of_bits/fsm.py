from __future__ import annotations

from statemachine import State, StateMachine


class InteractionFSM(StateMachine):
    """Guards a single cell interaction: idle -> taking | combining | storing -> idle.

    Token mutation lives in `world_of_bits.actions`; the FSM only makes sure one
    interaction runs at a time and always returns to idle.
    """

    idle = State("Idle", initial=True)
    taking = State("Taking")
    combining = State("Combining")
    storing = State("Storing")

    take = idle.to(taking)
    combine = idle.to(combining)
    store = idle.to(storing)
    finish = taking.to(idle) | combining.to(idle) | storing.to(idle)

    @property
    def is_idle(self) -> bool:
        return self.current_state == self.idle
