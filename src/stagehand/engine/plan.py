"""
Stagehand Execution Plan

Parses the site document (the ordered tier bindings) and binds each tier to
its resolved hosts and loaded role.

Example site document:

    name: three-tier
    inventory: inventory.yml
    roles_path: roles
    forks: 10
    vars:
      app_port: 8000
    tiers:
      - name: database
        hosts: db
        role: mysql
      - name: application
        hosts: app
        role: flask_app
        vars:
          workers: 4
      - name: web
        hosts: web
        role: nginx
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

import yaml

from stagehand.engine.errors import ParseError
from stagehand.engine.inventory import Host, InventoryManager
from stagehand.engine.roles import Role, RoleLoader

# Site keys that configure the run rather than describe tiers
SITE_SETTINGS = ('forks', 'strict', 'connect_retries', 'connect_retry_delay')


@dataclass
class TierBinding:
    """A (hosts, role) pair: one tier of the deployment."""

    name: str
    hosts: str
    role: str
    vars: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Site:
    """The top-level role-binding document."""

    name: str
    tiers: List[TierBinding]
    vars: Dict[str, Any] = field(default_factory=dict)
    roles_path: List[Path] = field(default_factory=list)
    settings: Dict[str, Any] = field(default_factory=dict)
    inventory: Optional[Path] = None
    path: Optional[Path] = None


@dataclass
class Stage:
    """A bound tier: the hosts to converge and the role to apply."""

    name: str
    hosts: List[Host]
    role: Role
    vars: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        return f"Stage({self.name!r}, role={self.role.name!r}, hosts={[h.name for h in self.hosts]})"


@dataclass
class ExecutionPlan:
    """Stages in strict execution order."""

    stages: List[Stage] = field(default_factory=list)

    def __iter__(self) -> Iterator[Stage]:
        return iter(self.stages)

    def __len__(self) -> int:
        return len(self.stages)

    @property
    def host_names(self) -> List[str]:
        """Every host touched by the plan, in first-appearance order."""
        seen: Dict[str, None] = {}
        for stage in self.stages:
            for host in stage.hosts:
                seen.setdefault(host.name, None)
        return list(seen)


class SiteLoader:
    """Parse a site document into a Site."""

    def __init__(self, site_path: Union[str, Path]):
        self.site_path = Path(site_path)
        self._base_dir = self.site_path.parent

    def load(self) -> Site:
        """
        Parse the site file.

        Raises:
            ParseError: If the document is missing or malformed
        """
        if not self.site_path.exists():
            raise ParseError(f"Site document not found: {self.site_path}", file_path=str(self.site_path))

        try:
            data = yaml.safe_load(self.site_path.read_text(encoding='utf-8'))
        except yaml.YAMLError as e:
            raise ParseError(f"YAML syntax error: {e}", file_path=str(self.site_path))

        # A bare list is shorthand for a document holding only tiers
        if isinstance(data, list):
            data = {'tiers': data}
        if not isinstance(data, dict):
            raise ParseError("Site document must be a mapping", file_path=str(self.site_path))

        tiers_data = data.get('tiers')
        if not isinstance(tiers_data, list) or not tiers_data:
            raise ParseError("Site document needs a non-empty 'tiers' list", file_path=str(self.site_path))

        site_vars = data.get('vars') or {}
        if not isinstance(site_vars, dict):
            raise ParseError("'vars' must be a mapping", file_path=str(self.site_path))

        roles_path = data.get('roles_path') or ['roles']
        if isinstance(roles_path, str):
            roles_path = [roles_path]

        inventory = data.get('inventory')

        return Site(
            name=str(data.get('name') or self.site_path.stem),
            tiers=[self._parse_tier(entry, index) for index, entry in enumerate(tiers_data)],
            vars=site_vars,
            roles_path=[self._base_dir / p for p in roles_path],
            settings={key: data[key] for key in SITE_SETTINGS if key in data},
            inventory=self._base_dir / inventory if inventory else None,
            path=self.site_path,
        )

    def _parse_tier(self, entry: Any, index: int) -> TierBinding:
        if not isinstance(entry, dict):
            raise ParseError(f"Tier #{index + 1} must be a mapping", file_path=str(self.site_path))

        for key in ('hosts', 'role'):
            if not entry.get(key):
                raise ParseError(
                    f"Tier #{index + 1} is missing required '{key}'",
                    file_path=str(self.site_path),
                )

        hosts = entry['hosts']
        if isinstance(hosts, list):
            hosts = ','.join(str(h) for h in hosts)

        tier_vars = entry.get('vars') or {}
        if not isinstance(tier_vars, dict):
            raise ParseError(f"'vars' of tier #{index + 1} must be a mapping", file_path=str(self.site_path))

        return TierBinding(
            name=str(entry.get('name') or entry['role']),
            hosts=str(hosts),
            role=str(entry['role']),
            vars=tier_vars,
        )


def bind(
    bindings: Sequence[TierBinding],
    inventory: InventoryManager,
    loader: RoleLoader,
    defaults: Optional[Dict[str, Any]] = None,
) -> ExecutionPlan:
    """
    Bind an ordered list of tiers into an ExecutionPlan.

    Every tier's host pattern must resolve against the inventory, and every
    role must load, before anything runs.

    Raises:
        InventoryError: A tier names a group or host absent from the inventory
        ParseError: A role cannot be loaded
    """
    plan = ExecutionPlan()
    for binding in bindings:
        hosts = inventory.resolve(binding.hosts, defaults=defaults)
        role = loader.load(binding.role)
        plan.stages.append(Stage(
            name=binding.name,
            hosts=hosts,
            role=role,
            vars=dict(binding.vars),
        ))
    return plan
