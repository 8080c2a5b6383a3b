"""
Stagehand Run Configuration

Settings for one run. Precedence, lowest first: built-in defaults, keys of
the site document, command-line flags.
"""

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, FrozenSet, Optional

from stagehand.engine.errors import ParseError
from stagehand.engine.plan import Site


@dataclass
class RunConfig:
    """Settings for one convergence run."""

    forks: int = 5
    strict: bool = False
    check_mode: bool = False
    diff_mode: bool = False
    verbosity: int = 0
    json_output: bool = False
    connect_retries: int = 2
    connect_retry_delay: float = 1.0
    report_file: Optional[str] = None
    extra_vars: Dict[str, Any] = field(default_factory=dict)
    # Names of settings given explicitly on the command line
    cli_settings: FrozenSet[str] = field(default_factory=frozenset, compare=False)

    def __post_init__(self):
        if self.forks < 1:
            raise ParseError(f"forks must be at least 1, got {self.forks}")
        if self.connect_retries < 0:
            raise ParseError(f"connect_retries cannot be negative, got {self.connect_retries}")

    def merged_with_site(self, site: Site) -> 'RunConfig':
        """
        Apply the site document's settings to every value still at its default
        and not given explicitly on the command line.

        Returns:
            A new RunConfig; self is left untouched
        """
        defaults = {f.name: f.default for f in fields(self) if f.name in site.settings}
        overrides = {}
        for key, value in site.settings.items():
            if key not in self.cli_settings and getattr(self, key) == defaults[key]:
                overrides[key] = _coerce(key, value, defaults[key])
        return replace(self, **overrides)


def _coerce(key: str, value: Any, default: Any) -> Any:
    try:
        if isinstance(default, bool):
            if isinstance(value, str):
                return value.strip().lower() in ('true', 'yes', '1', 'on')
            return bool(value)
        return type(default)(value)
    except (TypeError, ValueError):
        raise ParseError(f"Invalid value for site setting '{key}': {value!r}")
