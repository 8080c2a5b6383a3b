"""
Stagehand Action Base

Base class and registry for all action kinds. Every kind converges one
resource in three steps: probe the current state, diff it against the
desired state, and apply the change only when they diverge.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type

from stagehand.engine.context import HostContext
from stagehand.engine.errors import ActionError
from stagehand.engine.probe import Change, CurrentState, Diff, NoChange, diff_states


@dataclass
class ActionOutput:
    """What an applied change produced."""

    msg: str = ""
    rc: Optional[int] = None
    stdout: str = ""
    stderr: str = ""


class Action(ABC):
    """
    Base class for all action kinds.

    Subclasses implement probe() and apply(); diff() compares the probed
    state against desired() unless a kind needs its own comparison.
    """

    # Action kind (used for registration)
    kind: str = ""

    # Required arguments
    required_args: List[str] = []

    # Optional arguments with defaults
    optional_args: Dict[str, Any] = {}

    def __init__(
        self,
        args: Dict[str, Any],
        context: HostContext,
        variables: Optional[Mapping[str, Any]] = None,
    ):
        self.args = args
        self.context = context
        self.connection = context.connection
        self.variables = variables if variables is not None else context.get_vars()

    @property
    def host_name(self) -> str:
        return self.context.host.name

    def validate_args(self) -> Optional[str]:
        """
        Validate action arguments.

        Returns:
            Error message if validation fails, None otherwise
        """
        for required in self.required_args:
            if self.args.get(required) in (None, ''):
                return f"Missing required argument: {required}"
        return None

    def get_arg(self, name: str, default: Any = None) -> Any:
        """Get an argument value with optional default."""
        if name in self.args:
            return self.args[name]
        if name in self.optional_args:
            return self.optional_args[name]
        return default

    def desired(self) -> Dict[str, Any]:
        """Desired resource state, keyed like the probed CurrentState."""
        return {}

    @abstractmethod
    async def probe(self) -> CurrentState:
        """Observe the resource on the host without changing it."""
        pass

    def diff(self, current: CurrentState) -> Diff:
        return diff_states(current, self.desired())

    @abstractmethod
    async def apply(self, change: Change) -> ActionOutput:
        """Perform the side effects described by ``change``."""
        pass

    async def converge(self, check_mode: bool = False) -> Tuple[Diff, Optional[ActionOutput]]:
        """
        Probe, diff and (unless the resource already matches) apply.

        In check mode the apply step is skipped and no output is returned.
        """
        current = await self.probe()
        result = self.diff(current)
        if isinstance(result, NoChange) or check_mode:
            return result, None
        return result, await self.apply(result)

    async def run_checked(self, command: str, message: Optional[str] = None, **kwargs: Any):
        """
        Run a command and raise ActionError when it exits non-zero.

        Returns:
            The connection's RunResult
        """
        result = await self.connection.run(command, **kwargs)
        if result.rc != 0:
            raise ActionError(
                self.kind,
                self.host_name,
                message or f"'{command}' exited with {result.rc}",
                rc=result.rc,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result

    def fail(self, message: str) -> ActionError:
        return ActionError(self.kind, self.host_name, message)


def boolean(value: Any) -> bool:
    """Interpret yes/no style argument values."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ('true', 'yes', '1', 'on')
    return bool(value)


def normalize_mode(mode: Any) -> Optional[str]:
    """Normalize a file mode to four octal digits ('0644')."""
    if mode is None:
        return None
    if isinstance(mode, int):
        return format(mode, '04o')
    text = str(mode).strip()
    try:
        return format(int(text, 8), '04o')
    except ValueError:
        raise ValueError(f"Invalid file mode: {mode!r}")


# Action registry
_actions: Dict[str, Type[Action]] = {}
_actions_imported = False


def register_action(cls: Type[Action]) -> Type[Action]:
    """Decorator to register an action class."""
    _actions[cls.kind] = cls
    return cls


def get_action(kind: str) -> Optional[Type[Action]]:
    """Get an action class by kind."""
    _ensure_actions_imported()
    return _actions.get(kind)


def list_actions() -> List[str]:
    """List all registered action kinds."""
    _ensure_actions_imported()
    return sorted(_actions)


def _ensure_actions_imported() -> None:
    global _actions_imported
    if not _actions_imported:
        _import_builtin_actions()
        _actions_imported = True


def _import_builtin_actions() -> None:
    """Import all built-in actions to register them."""
    # These imports trigger the @register_action decorators
    from stagehand.actions import command  # noqa: F401
    from stagehand.actions import copy  # noqa: F401
    from stagehand.actions import grant  # noqa: F401
    from stagehand.actions import package  # noqa: F401
    from stagehand.actions import service  # noqa: F401
    from stagehand.actions import template  # noqa: F401
