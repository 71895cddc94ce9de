"""Forge pipeline states in their fixed order."""

from enum import Enum
from typing import Optional


class ForgeState(str, Enum):
    CREATED = "CREATED"
    CAPTURED = "CAPTURED"
    NORMALIZED = "NORMALIZED"
    SEEDED = "SEEDED"
    PARAMETRIZED = "PARAMETRIZED"
    VALIDATED = "VALIDATED"
    CERTIFIED = "CERTIFIED"

    @property
    def position(self) -> int:
        return FORGE_STATES.index(self)

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def description(self) -> str:
        return STATE_DESCRIPTIONS[self]

    @property
    def is_terminal(self) -> bool:
        return self is TERMINAL_STATE

    def next(self) -> Optional["ForgeState"]:
        if self.is_terminal:
            return None
        return FORGE_STATES[self.position + 1]

    def previous(self) -> Optional["ForgeState"]:
        if self.position == 0:
            return None
        return FORGE_STATES[self.position - 1]


FORGE_STATES = tuple(ForgeState)
INITIAL_STATE = ForgeState.CREATED
TERMINAL_STATE = ForgeState.CERTIFIED

STATE_DESCRIPTIONS = {
    ForgeState.CREATED: "Forge initialized, awaiting capture",
    ForgeState.CAPTURED: "All capture data received",
    ForgeState.NORMALIZED: "Data normalized and processed",
    ForgeState.SEEDED: "Dataset seed generated",
    ForgeState.PARAMETRIZED: "Parameters extracted",
    ForgeState.VALIDATED: "Validation checks passed",
    ForgeState.CERTIFIED: "Digital twin certified and locked",
}


def parse_state(value) -> ForgeState:
    """Coerce a state name, raising ValueError for unknown names."""
    if isinstance(value, ForgeState):
        return value
    try:
        return ForgeState(str(value).upper())
    except ValueError:
        raise ValueError(f"Unknown forge state: {value}") from None
