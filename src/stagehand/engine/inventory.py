"""
Stagehand Inventory Manager

Parses and manages inventory from INI files, YAML files, and host/group vars
directories, and resolves hosts with their merged variable mappings.
"""

import json
import re
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple, Union

import yaml

from stagehand.engine.errors import InventoryError

IMPLICIT_GROUPS = ('all', 'ungrouped')


class Host:
    """Represents a single host in the inventory."""

    def __init__(self, name: str, variables: Optional[Mapping[str, Any]] = None):
        self.name = name
        self.vars: Mapping[str, Any] = dict(variables) if variables else {}
        self._groups: List[str] = []

    @property
    def address(self) -> str:
        """Get the actual address to connect to (ansible_host or name)."""
        return self.vars.get('ansible_host', self.name)

    @property
    def port(self) -> int:
        """Get the port number."""
        return int(self.vars.get('ansible_port', 22))

    @property
    def user(self) -> Optional[str]:
        """Get the user to connect as."""
        return self.vars.get('ansible_user')

    @property
    def connection(self) -> str:
        """Get the connection type (ssh, local)."""
        return self.vars.get('ansible_connection', 'ssh')

    @property
    def groups(self) -> List[str]:
        """Return group names this host belongs to, in membership order."""
        return list(self._groups)

    @property
    def frozen(self) -> bool:
        return isinstance(self.vars, MappingProxyType)

    def add_group(self, group_name: str) -> None:
        """Add this host to a group."""
        if group_name not in self._groups:
            self._groups.append(group_name)

    def set_variable(self, key: str, value: Any) -> None:
        """Set a host variable."""
        if self.frozen:
            raise InventoryError(f"Host {self.name} is resolved and read-only")
        self.vars[key] = value  # type: ignore[index]

    def get_variable(self, key: str, default: Any = None) -> Any:
        """Get a host variable."""
        return self.vars.get(key, default)

    def get_vars(self) -> Dict[str, Any]:
        """Return all host variables including computed ones."""
        result = dict(self.vars)
        result['inventory_hostname'] = self.name
        result['inventory_hostname_short'] = self.name.split('.')[0]
        result['ansible_host'] = self.address
        result['group_names'] = [g for g in self._groups if g not in IMPLICIT_GROUPS]
        return result

    def __repr__(self) -> str:
        return f"Host({self.name!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Host):
            return NotImplemented
        return self.name == other.name

    def __hash__(self) -> int:
        return hash(self.name)


class Group:
    """Represents a group of hosts."""

    def __init__(self, name: str, variables: Optional[Dict[str, Any]] = None):
        self.name = name
        self.vars: Dict[str, Any] = variables.copy() if variables else {}
        self._hosts: List[str] = []
        self._children: List[str] = []
        self._parents: List[str] = []

    @property
    def hosts(self) -> List[str]:
        """Return host names directly in this group."""
        return list(self._hosts)

    @property
    def children(self) -> List[str]:
        """Return child group names."""
        return list(self._children)

    @property
    def parents(self) -> List[str]:
        """Return parent group names."""
        return list(self._parents)

    def add_host(self, host_name: str) -> None:
        if host_name not in self._hosts:
            self._hosts.append(host_name)

    def add_child(self, group_name: str) -> None:
        if group_name not in self._children:
            self._children.append(group_name)

    def add_parent(self, group_name: str) -> None:
        if group_name not in self._parents:
            self._parents.append(group_name)

    def set_variable(self, key: str, value: Any) -> None:
        self.vars[key] = value

    def __repr__(self) -> str:
        return f"Group({self.name!r}, hosts={len(self._hosts)})"


class InventoryManager:
    """
    Manages inventory parsing and host resolution.

    Supports:
    - INI format inventory files
    - YAML format inventory files
    - host_vars/ and group_vars/ directories
    - Host patterns: names, groups, "a,b", "!a", "a:&b"
    """

    # Pattern for host range expansion: web[01:10].example.com
    RANGE_PATTERN = re.compile(r'\[(\d+):(\d+)\]')
    # Pattern for INI variable assignment: key=value
    VAR_PATTERN = re.compile(r'(\w+)=(?:"([^"]*)"|\'([^\']*)\'|(\S+))')

    def __init__(self):
        self.hosts: Dict[str, Host] = {}
        self.groups: Dict[str, Group] = {}
        self._inventory_dir: Optional[Path] = None
        self.source: Optional[str] = None

        # Always create 'all' and 'ungrouped' groups
        self.groups['all'] = Group('all')
        self.groups['ungrouped'] = Group('ungrouped')

    def parse(self, source: Union[str, Path]) -> 'InventoryManager':
        """
        Parse an inventory source.

        Args:
            source: Path to inventory file or directory

        Returns:
            self for chaining
        """
        source_path = Path(source)
        self.source = str(source_path)

        if not source_path.exists():
            raise InventoryError(f"Inventory path does not exist: {source_path}")

        if source_path.is_file():
            self._inventory_dir = source_path.parent
            self._parse_file(source_path)
        elif source_path.is_dir():
            self._inventory_dir = source_path
            self._parse_directory(source_path)
        else:
            raise InventoryError(f"Invalid inventory source: {source_path}")

        if self._inventory_dir:
            self._load_vars_directories(self._inventory_dir)

        self._finalize()
        return self

    def parse_data(self, data: Dict[str, Any]) -> 'InventoryManager':
        """Parse an already-loaded YAML-style inventory mapping."""
        self._parse_yaml_data(data)
        self._finalize()
        return self

    def _finalize(self) -> None:
        """Ensure every host is in 'all', and hosts without a group in 'ungrouped'."""
        for host_name, host in self.hosts.items():
            self.groups['all'].add_host(host_name)
            host.add_group('all')

            explicit = [g for g in host.groups if g not in IMPLICIT_GROUPS]
            if not explicit:
                self.groups['ungrouped'].add_host(host_name)
                host.add_group('ungrouped')

    def get_hosts(self, pattern: str = "all", strict: bool = False) -> List[Host]:
        """
        Get hosts matching a pattern, in inventory order.

        Supported patterns:
        - "all" - all hosts
        - "group_name" - all hosts in a group (including children)
        - "host_name" - single host
        - "host1,group2" - union
        - "group1:&group2" - intersection
        - "!group" - exclusion

        Args:
            pattern: Host pattern string
            strict: Raise InventoryError when a name matches no group or host

        Returns:
            List of matching Host objects
        """
        names = self._match(pattern.strip() if pattern else "all", strict)
        return [host for name, host in self.hosts.items() if name in names]

    def _match(self, pattern: str, strict: bool) -> Set[str]:
        if not pattern or pattern == "all":
            return set(self.hosts)

        if ',' in pattern:
            result: Set[str] = set()
            excluded: Set[str] = set()
            for sub_pattern in pattern.split(','):
                sub_pattern = sub_pattern.strip()
                if not sub_pattern:
                    continue
                if sub_pattern.startswith('!'):
                    excluded |= self._match(sub_pattern[1:], strict)
                else:
                    result |= self._match(sub_pattern, strict)
            return result - excluded

        if pattern.startswith('!'):
            return set(self.hosts) - self._match(pattern[1:], strict)

        if ':&' in pattern:
            left, _, right = pattern.partition(':&')
            return self._match(left, strict) & self._match(right, strict)

        if pattern in self.groups:
            return self._group_host_names(pattern)

        if pattern in self.hosts:
            return {pattern}

        if strict:
            raise InventoryError(
                f"'{pattern}' does not match any declared group or host",
                file_path=self.source,
            )
        return set()

    def _group_host_names(self, group_name: str, _seen: Optional[Set[str]] = None) -> Set[str]:
        """Get all host names in a group, including from child groups."""
        seen = _seen if _seen is not None else set()
        if group_name in seen or group_name not in self.groups:
            return set()
        seen.add(group_name)

        group = self.groups[group_name]
        result = set(group.hosts)
        for child_name in group.children:
            result |= self._group_host_names(child_name, seen)
        return result

    def group_order(self, host: Host) -> List[str]:
        """
        Groups contributing variables to a host, lowest precedence first.

        'all' comes first, then each membership group preceded by its ancestors.
        """
        ordered: List[str] = ['all']

        def visit(name: str, trail: Tuple[str, ...]) -> None:
            if name in trail or name in ordered or name not in self.groups:
                return
            for parent in self.groups[name].parents:
                visit(parent, trail + (name,))
            ordered.append(name)

        for group_name in host.groups:
            if group_name not in IMPLICIT_GROUPS:
                visit(group_name, ())
        return ordered

    def get_host_vars(
        self,
        host_name: str,
        defaults: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Get all variables for a host (merged from defaults, groups and host)."""
        if host_name not in self.hosts:
            raise InventoryError(f"Unknown host: {host_name}", file_path=self.source)

        host = self.hosts[host_name]
        merged_vars: Dict[str, Any] = dict(defaults or {})

        for group_name in self.group_order(host):
            merged_vars.update(self.groups[group_name].vars)

        # Host vars override group vars
        merged_vars.update(host.get_vars())
        return merged_vars

    def resolve(
        self,
        pattern: Optional[str] = None,
        defaults: Optional[Mapping[str, Any]] = None,
    ) -> List[Host]:
        """
        Resolve hosts matching ``pattern`` into read-only hosts with merged vars.

        Raises:
            InventoryError: a name in the pattern matches nothing in the inventory
        """
        resolved: List[Host] = []
        for host in self.get_hosts(pattern or "all", strict=True):
            merged = self.get_host_vars(host.name, defaults)
            frozen = Host(host.name)
            frozen._groups = host.groups
            frozen.vars = MappingProxyType(merged)
            resolved.append(frozen)
        return resolved

    # Parsing

    def _get_or_create_host(self, name: str) -> Host:
        if name not in self.hosts:
            self.hosts[name] = Host(name)
        return self.hosts[name]

    def _get_or_create_group(self, name: str) -> Group:
        if name not in self.groups:
            self.groups[name] = Group(name)
        return self.groups[name]

    def _parse_file(self, path: Path) -> None:
        """Parse a single inventory file."""
        content = path.read_text(encoding='utf-8')

        if path.suffix in ('.yml', '.yaml'):
            self._parse_yaml_string(content, path)
        elif path.suffix == '.json':
            try:
                data = json.loads(content)
            except json.JSONDecodeError as e:
                raise InventoryError(f"Invalid JSON: {e}", file_path=str(path))
            self._parse_yaml_data(data, path)
        elif content.strip().startswith(('---', 'all:')):
            self._parse_yaml_string(content, path)
        else:
            self._parse_ini_string(content, path)

    def _parse_directory(self, path: Path) -> None:
        """Parse all inventory files in a directory."""
        for item in sorted(path.iterdir()):
            if not item.is_file() or item.name.startswith('.'):
                continue
            if item.suffix in ('.bak', '.orig', '.pyc', '.pyo'):
                continue
            self._parse_file(item)

    def _load_vars_file(self, path: Path) -> Dict[str, Any]:
        try:
            data = yaml.safe_load(path.read_text(encoding='utf-8')) or {}
        except yaml.YAMLError as e:
            raise InventoryError(f"YAML syntax error: {e}", file_path=str(path))
        if not isinstance(data, dict):
            raise InventoryError("Variables file must contain a mapping", file_path=str(path))
        return data

    def _vars_files(self, item: Path) -> List[Path]:
        if item.is_file() and item.suffix in ('.yml', '.yaml'):
            return [item]
        if item.is_dir():
            return sorted(list(item.glob('*.yml')) + list(item.glob('*.yaml')))
        return []

    def _load_vars_directories(self, base_path: Path) -> None:
        """Load variables from host_vars/ and group_vars/ directories."""
        group_vars_dir = base_path / 'group_vars'
        if group_vars_dir.is_dir():
            for item in sorted(group_vars_dir.iterdir()):
                files = self._vars_files(item)
                if not files:
                    continue
                group = self._get_or_create_group(item.stem)
                for vars_file in files:
                    group.vars.update(self._load_vars_file(vars_file))

        host_vars_dir = base_path / 'host_vars'
        if host_vars_dir.is_dir():
            for item in sorted(host_vars_dir.iterdir()):
                if item.stem not in self.hosts:
                    continue
                host = self.hosts[item.stem]
                for vars_file in self._vars_files(item):
                    for key, value in self._load_vars_file(vars_file).items():
                        host.set_variable(key, value)

    def _parse_ini_string(self, content: str, source_path: Optional[Path] = None) -> None:
        """Parse INI format inventory."""
        current_group: Optional[str] = None
        current_section: Optional[str] = None  # 'hosts', 'vars', 'children'

        for line_num, line in enumerate(content.splitlines(), 1):
            line = line.strip()

            if not line or line.startswith('#') or line.startswith(';'):
                continue

            if line.startswith('[') and line.endswith(']'):
                header = line[1:-1].strip()
                if header.endswith(':vars'):
                    current_group = header[:-len(':vars')].strip()
                    current_section = 'vars'
                elif header.endswith(':children'):
                    current_group = header[:-len(':children')].strip()
                    current_section = 'children'
                else:
                    current_group = header
                    current_section = 'hosts'
                if not current_group:
                    raise InventoryError(
                        f"Empty group name at line {line_num}",
                        file_path=str(source_path) if source_path else None,
                    )
                self._get_or_create_group(current_group)
                continue

            if current_section == 'vars':
                key, value = self._parse_variable_line(line)
                if current_group and key:
                    self.groups[current_group].set_variable(key, value)

            elif current_section == 'children':
                child = self._get_or_create_group(line)
                self.groups[current_group].add_child(child.name)
                child.add_parent(current_group)

            else:
                for host_name, variables in self._parse_host_line(line):
                    host = self._get_or_create_host(host_name)
                    for key, value in variables.items():
                        host.set_variable(key, value)
                    if current_group:
                        self.groups[current_group].add_host(host_name)
                        host.add_group(current_group)

    def _parse_host_line(self, line: str) -> List[Tuple[str, Dict[str, Any]]]:
        """Parse a single host line, handling ranges and variables."""
        parts = line.split()
        if not parts:
            return []

        host_pattern = parts[0]
        var_string = ' '.join(parts[1:])

        variables: Dict[str, Any] = {}
        for match in self.VAR_PATTERN.finditer(var_string):
            key = match.group(1)
            value = match.group(2) or match.group(3) or match.group(4)
            variables[key] = self._convert_value(value)

        return [(name, variables) for name in self._expand_host_pattern(host_pattern)]

    def _expand_host_pattern(self, pattern: str) -> List[str]:
        """Expand host patterns like web[01:03].example.com."""
        match = self.RANGE_PATTERN.search(pattern)
        if not match:
            return [pattern]

        start = int(match.group(1))
        end = int(match.group(2))
        width = len(match.group(1))

        results = []
        for i in range(start, end + 1):
            num_str = str(i).zfill(width)
            expanded = pattern[:match.start()] + num_str + pattern[match.end():]
            results.extend(self._expand_host_pattern(expanded))
        return results

    def _parse_variable_line(self, line: str) -> Tuple[str, Any]:
        """Parse a variable assignment line."""
        if '=' not in line:
            return '', None

        key, _, value = line.partition('=')
        key = key.strip()
        value = value.strip()

        if (value.startswith('"') and value.endswith('"')) or \
           (value.startswith("'") and value.endswith("'")):
            value = value[1:-1]

        return key, self._convert_value(value)

    def _convert_value(self, value: str) -> Any:
        """Convert string value to appropriate Python type."""
        if not isinstance(value, str):
            return value

        if value.lower() in ('true', 'yes'):
            return True
        if value.lower() in ('false', 'no'):
            return False
        if value.lower() in ('null', 'none', '~'):
            return None

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def _parse_yaml_string(self, content: str, source_path: Optional[Path] = None) -> None:
        """Parse YAML format inventory."""
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise InventoryError(
                f"YAML syntax error: {e}",
                file_path=str(source_path) if source_path else None,
            )
        if data:
            self._parse_yaml_data(data, source_path)

    def _parse_yaml_data(self, data: Any, source_path: Optional[Path] = None) -> None:
        """Parse YAML inventory data structure."""
        if not isinstance(data, dict):
            raise InventoryError(
                "Inventory must be a mapping of group names",
                file_path=str(source_path) if source_path else None,
            )

        for group_name, group_data in data.items():
            self._parse_yaml_group(str(group_name), group_data or {}, source_path)

    def _parse_yaml_group(
        self,
        name: str,
        data: Any,
        source_path: Optional[Path] = None,
    ) -> None:
        """Parse a single group from YAML inventory."""
        group = self._get_or_create_group(name)

        if not isinstance(data, dict):
            raise InventoryError(
                f"Group '{name}' must be a mapping",
                file_path=str(source_path) if source_path else None,
            )

        hosts_data = data.get('hosts') or {}
        if isinstance(hosts_data, list):
            hosts_data = {host_name: {} for host_name in hosts_data}
        for host_name, host_vars in hosts_data.items():
            if host_vars is not None and not isinstance(host_vars, dict):
                raise InventoryError(
                    f"Variables for host '{host_name}' must be a mapping",
                    file_path=str(source_path) if source_path else None,
                )
            host = self._get_or_create_host(str(host_name))
            for key, value in (host_vars or {}).items():
                host.set_variable(key, value)
            group.add_host(host.name)
            host.add_group(name)

        vars_data = data.get('vars') or {}
        if not isinstance(vars_data, dict):
            raise InventoryError(
                f"'vars' of group '{name}' must be a mapping",
                file_path=str(source_path) if source_path else None,
            )
        for key, value in vars_data.items():
            group.set_variable(key, value)

        children_data = data.get('children') or {}
        for child_name, child_data in children_data.items():
            group.add_child(str(child_name))
            self._parse_yaml_group(str(child_name), child_data or {}, source_path)
            self.groups[str(child_name)].add_parent(name)
