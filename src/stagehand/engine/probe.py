"""
Stagehand State Probe & Differ

Value types shared by every action kind: the observed state of a host
resource, and the result of comparing it with the desired state.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union


@dataclass(frozen=True)
class CurrentState:
    """Observed state of a resource on a host."""

    values: Mapping[str, Any] = field(default_factory=dict)
    # False when the kind cannot observe anything (run-once commands)
    observable: bool = True

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    @classmethod
    def unknown(cls) -> 'CurrentState':
        return cls(values={}, observable=False)


@dataclass(frozen=True)
class NoChange:
    """The resource already matches the desired state."""

    reason: str = ""

    @property
    def changed(self) -> bool:
        return False


@dataclass(frozen=True)
class Change:
    """The resource diverges; ``delta`` describes what must be done."""

    delta: Dict[str, Any] = field(default_factory=dict)
    diff: Optional[str] = None

    @property
    def changed(self) -> bool:
        return True


Diff = Union[NoChange, Change]


def diff_states(current: CurrentState, desired: Mapping[str, Any]) -> Diff:
    """
    Compare each desired key against the observed state.

    Keys whose desired value is None are not managed and never produce a delta.
    An unobservable state always yields a Change.
    """
    if not current.observable:
        return Change(delta={key: {'before': None, 'after': value}
                             for key, value in desired.items() if value is not None})

    delta: Dict[str, Any] = {}
    for key, wanted in desired.items():
        if wanted is None:
            continue
        before = current.get(key)
        if before != wanted:
            delta[key] = {'before': before, 'after': wanted}

    if not delta:
        return NoChange()
    return Change(delta=delta)
