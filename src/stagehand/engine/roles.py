"""
Stagehand Role Loader

Parses role directories into Role, Task, Handler and ArtifactTemplate objects.

Layout of a role directory:

    roles/<name>/
        tasks/main.yml       ordered task list (required)
        handlers/main.yml    handler list (optional)
        defaults/main.yml    lowest-precedence role variables (optional)
        vars/main.yml        high-precedence role variables (optional)
        templates/           artifact templates for 'template' tasks
        files/               static sources for 'copy' tasks
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import yaml

from stagehand.engine.errors import ParseError, UnsupportedFeatureError


# Action kinds understood by the engine, mapped from accepted aliases
ACTION_ALIASES = {
    'package': 'package',
    'apt': 'package',
    'yum': 'package',
    'dnf': 'package',
    'service': 'service',
    'systemd': 'service',
    'copy': 'copy',
    'command': 'command',
    'shell': 'command',
    'template': 'template',
    'grant': 'grant',
    'mysql_user': 'grant',
}

ACTION_KINDS = frozenset(ACTION_ALIASES.values())

# Task keys that are NOT action names
TASK_KEYWORDS = {
    'name', 'when', 'notify', 'listen', 'ignore_errors', 'tags', 'vars',
}

# Ansible keywords that have no meaning for a convergence step
UNSUPPORTED_TASK_KEYS = {
    'loop', 'with_items', 'register', 'block', 'delegate_to', 'async', 'poll',
    'include_tasks', 'import_tasks', 'include_role', 'import_role',
}

# Inline "key=value" action arguments
INLINE_ARG_PATTERN = re.compile(r'(\w+)=(?:"([^"]*)"|\'([^\']*)\'|(\S+))')


@dataclass
class Task:
    """A single ordered step of a role."""

    name: str
    action: str
    args: Dict[str, Any]
    role: str = ""
    position: int = 0
    when: Optional[Any] = None
    notify: List[str] = field(default_factory=list)
    ignore_errors: bool = False
    tags: List[str] = field(default_factory=list)
    vars: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        return f"Task({self.role}[{self.position}] {self.name!r}, action={self.action!r})"


@dataclass
class Handler(Task):
    """A deferred step, run at most once per host after a notifying change."""

    listen: List[str] = field(default_factory=list)

    @property
    def triggers(self) -> List[str]:
        """Notification keys that trigger this handler."""
        return [self.name] + [name for name in self.listen if name != self.name]

    def __repr__(self) -> str:
        return f"Handler({self.role}:{self.name!r}, action={self.action!r})"


@dataclass(frozen=True)
class ArtifactTemplate:
    """Template source for a rendered artifact."""

    name: str
    source: str
    encoding: str = 'utf-8'


@dataclass
class Role:
    """An ordered task list with its handlers, templates and variables."""

    name: str
    tasks: List[Task] = field(default_factory=list)
    handlers: Dict[str, Handler] = field(default_factory=dict)
    artifacts: Dict[str, ArtifactTemplate] = field(default_factory=dict)
    defaults: Dict[str, Any] = field(default_factory=dict)
    vars: Dict[str, Any] = field(default_factory=dict)
    path: Optional[Path] = None

    def handlers_for(self, notification: str) -> List[Handler]:
        """Every handler answering to a notification by name or listen topic, in definition order."""
        return [h for h in self.handlers.values() if notification in h.triggers]

    def get_artifact(self, src: str) -> Optional[ArtifactTemplate]:
        return self.artifacts.get(src) or self.artifacts.get(src[:-3] if src.endswith('.j2') else src + '.j2')

    def file_path(self, src: str) -> Optional[Path]:
        """Resolve a 'copy' source against the role's files/ directory."""
        candidate = Path(src)
        if not candidate.is_absolute() and self.path is not None:
            candidate = self.path / 'files' / src
        return candidate if candidate.is_file() else None

    def __repr__(self) -> str:
        return f"Role(name={self.name!r}, tasks={len(self.tasks)}, handlers={len(self.handlers)})"


class RoleLoader:
    """
    Load role directories from a list of search paths.

    Roles are cached: a role bound to several tiers is parsed once.
    """

    def __init__(self, search_paths: Sequence[Union[str, Path]]):
        self.search_paths = [Path(p) for p in search_paths]
        self._cache: Dict[str, Role] = {}

    def load(self, role_name: str) -> Role:
        """
        Load a role by name.

        Raises:
            ParseError: If the role is missing or a document is malformed
            UnsupportedFeatureError: If a task uses an unknown action or keyword
        """
        if role_name in self._cache:
            return self._cache[role_name]

        role_path = self._find_role_path(role_name)
        if role_path is None:
            searched = ", ".join(str(p) for p in self.search_paths)
            raise ParseError(f"Role not found: {role_name}", details=f"Searched: {searched}")

        tasks_file = role_path / "tasks" / "main.yml"
        if not tasks_file.exists():
            raise ParseError("Role tasks file not found", file_path=str(tasks_file))

        role = Role(name=role_name, path=role_path)
        role.defaults = self._load_mapping(role_path / "defaults" / "main.yml")
        role.vars = self._load_mapping(role_path / "vars" / "main.yml")

        for position, task_data in enumerate(self._load_list(tasks_file)):
            task = parse_task(task_data, role_name, position, str(tasks_file))
            role.tasks.append(task)

        handlers_file = role_path / "handlers" / "main.yml"
        if handlers_file.exists():
            for position, handler_data in enumerate(self._load_list(handlers_file)):
                handler = parse_handler(handler_data, role_name, position, str(handlers_file))
                if handler.name in role.handlers:
                    raise ParseError(
                        f"Duplicate handler name '{handler.name}' in role {role_name}",
                        file_path=str(handlers_file),
                    )
                role.handlers[handler.name] = handler

        role.artifacts = self._load_artifacts(role_path / "templates")

        validate_role(role, str(tasks_file))
        self._cache[role_name] = role
        return role

    def _find_role_path(self, role_name: str) -> Optional[Path]:
        for base in self.search_paths:
            path = base / role_name
            if path.is_dir():
                return path
        return None

    def _load_yaml(self, path: Path) -> Any:
        try:
            return yaml.safe_load(path.read_text(encoding='utf-8'))
        except yaml.YAMLError as e:
            raise ParseError(f"YAML syntax error: {e}", file_path=str(path))

    def _load_mapping(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        data = self._load_yaml(path) or {}
        if not isinstance(data, dict):
            raise ParseError(
                f"Expected a mapping, got {type(data).__name__}",
                file_path=str(path),
            )
        return data

    def _load_list(self, path: Path) -> List[Dict[str, Any]]:
        data = self._load_yaml(path) or []
        if not isinstance(data, list):
            raise ParseError("Expected a list of tasks", file_path=str(path))
        for entry in data:
            if not isinstance(entry, dict):
                raise ParseError(
                    f"Each task must be a mapping, got {type(entry).__name__}",
                    file_path=str(path),
                )
        return data

    def _load_artifacts(self, templates_dir: Path) -> Dict[str, ArtifactTemplate]:
        artifacts: Dict[str, ArtifactTemplate] = {}
        if not templates_dir.is_dir():
            return artifacts
        for item in sorted(templates_dir.rglob('*')):
            if item.is_file():
                name = item.relative_to(templates_dir).as_posix()
                try:
                    source = item.read_text(encoding='utf-8')
                except UnicodeDecodeError as e:
                    raise ParseError(f"Template is not valid UTF-8: {e}", file_path=str(item))
                artifacts[name] = ArtifactTemplate(name=name, source=source)
        return artifacts


def validate_role(role: Role, file_path: Optional[str] = None) -> None:
    """Check that every notification names a handler of the same role."""
    for task in role.tasks:
        for notification in task.notify:
            if not role.handlers_for(notification):
                raise ParseError(
                    f"Task '{task.name}' notifies unknown handler '{notification}'",
                    file_path=file_path,
                )
        if task.action == 'template' and isinstance(task.args.get('src'), str):
            src = task.args['src']
            if '{{' not in src and role.get_artifact(src) is None:
                raise ParseError(
                    f"Task '{task.name}' uses missing template '{src}'",
                    file_path=file_path,
                )


def parse_task(
    data: Dict[str, Any],
    role_name: str = "",
    position: int = 0,
    file_path: Optional[str] = None,
) -> Task:
    """Parse a single task mapping."""
    return Task(**_parse_step(data, role_name, position, file_path))


def parse_handler(
    data: Dict[str, Any],
    role_name: str = "",
    position: int = 0,
    file_path: Optional[str] = None,
) -> Handler:
    """Parse a single handler mapping."""
    fields = _parse_step(data, role_name, position, file_path)
    if 'name' not in data:
        raise ParseError("Handler is missing required 'name'", file_path=file_path)
    fields['listen'] = _ensure_list(data.get('listen'))
    return Handler(**fields)


def _parse_step(
    data: Dict[str, Any],
    role_name: str,
    position: int,
    file_path: Optional[str],
) -> Dict[str, Any]:
    for key in UNSUPPORTED_TASK_KEYS:
        if key in data:
            raise UnsupportedFeatureError(
                f"'{key}' in role {role_name}",
                suggestion="Split the step into separate ordered tasks",
            )

    action_keys = [key for key in data if key not in TASK_KEYWORDS]
    if not action_keys:
        raise ParseError(
            f"Task has no action: {list(data.keys())}",
            file_path=file_path,
        )
    if len(action_keys) > 1:
        unknown = [key for key in action_keys if key not in ACTION_ALIASES]
        if unknown:
            raise UnsupportedFeatureError(
                f"Action '{unknown[0]}' is not supported",
                suggestion=f"Use one of: {', '.join(sorted(ACTION_KINDS))}",
            )
        raise ParseError(
            f"Task declares more than one action: {action_keys}",
            file_path=file_path,
        )

    action_key = action_keys[0]
    if action_key not in ACTION_ALIASES:
        raise UnsupportedFeatureError(
            f"Action '{action_key}' is not supported",
            suggestion=f"Use one of: {', '.join(sorted(ACTION_KINDS))}",
        )
    action = ACTION_ALIASES[action_key]
    args = _normalize_args(action, data[action_key])
    if action_key in ('apt', 'yum', 'dnf'):
        args.setdefault('manager', action_key)

    when = data.get('when')
    if isinstance(when, list):
        when = ' and '.join(f"({w})" for w in when)

    task_vars = data.get('vars') or {}
    if not isinstance(task_vars, dict):
        raise ParseError("'vars' must be a mapping", file_path=file_path)

    return {
        'name': str(data.get('name') or f"{action} #{position + 1}"),
        'action': action,
        'args': args,
        'role': role_name,
        'position': position,
        'when': when,
        'notify': [str(n) for n in _ensure_list(data.get('notify'))],
        'ignore_errors': bool(data.get('ignore_errors', False)),
        'tags': _ensure_list(data.get('tags')),
        'vars': task_vars,
    }


def _normalize_args(action: str, args: Any) -> Dict[str, Any]:
    """Normalize action arguments to a dictionary."""
    if args is None:
        return {}

    if isinstance(args, dict):
        return dict(args)

    if isinstance(args, str):
        if action == 'command':
            return {'cmd': args}
        parsed = {}
        for match in INLINE_ARG_PATTERN.finditer(args):
            key = match.group(1)
            value = match.group(2) or match.group(3) or match.group(4)
            parsed[key] = value
        if not parsed:
            # "package: nginx" / "service: nginx"
            parsed['name'] = args.strip()
        return parsed

    if isinstance(args, list) and action == 'package':
        return {'name': list(args)}

    raise ParseError(f"Invalid arguments for '{action}': {args!r}")


def _ensure_list(value: Any) -> List[Any]:
    """Ensure a value is a list."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]
