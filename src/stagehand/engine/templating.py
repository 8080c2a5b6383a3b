"""
Stagehand Templating Engine

Jinja2-based templating with a minimal filter set for variable expansion,
'when' guard evaluation, and artifact rendering/comparison.
"""

import base64
import difflib
import hashlib
import json
import os
import re
from typing import Any, Callable, Dict, Mapping, Optional

import yaml
from jinja2 import Environment, StrictUndefined, TemplateSyntaxError, UndefinedError

from stagehand.engine.errors import RenderError
from stagehand.engine.probe import Change, Diff, NoChange


def _filter_default(value: Any, default: Any = '', boolean: bool = False) -> Any:
    """Return default if value is None (or falsy, with boolean=True)."""
    if boolean:
        return value if value else default
    return default if value is None else value


def _filter_to_yaml(value: Any) -> str:
    """Convert value to YAML string."""
    return yaml.safe_dump(value, default_flow_style=False)


def _filter_bool(value: Any) -> bool:
    """Convert value to boolean."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ('true', 'yes', '1', 'on')
    return bool(value)


def _filter_regex_replace(value: str, pattern: str, replacement: str) -> str:
    """Regex replacement in string."""
    return re.sub(pattern, replacement, str(value))


def _filter_b64encode(value: Any) -> str:
    """Encode string to base64."""
    if isinstance(value, bytes):
        return base64.b64encode(value).decode('utf-8')
    return base64.b64encode(str(value).encode('utf-8')).decode('utf-8')


def _filter_quote(value: Any) -> str:
    """Single-quote a value for a POSIX shell."""
    return shell_quote(str(value))


CUSTOM_FILTERS: Dict[str, Callable[..., Any]] = {
    'default': _filter_default,
    'd': _filter_default,
    'lower': lambda x: str(x).lower(),
    'upper': lambda x: str(x).upper(),
    'to_json': lambda x: json.dumps(x, sort_keys=True),
    'to_yaml': _filter_to_yaml,
    'bool': _filter_bool,
    'basename': lambda p: os.path.basename(str(p)),
    'dirname': lambda p: os.path.dirname(str(p)),
    'regex_replace': _filter_regex_replace,
    'b64encode': _filter_b64encode,
    'b64decode': lambda x: base64.b64decode(x).decode('utf-8'),
    'quote': _filter_quote,
}


def shell_quote(s: str) -> str:
    """Quote a string for shell use."""
    return "'" + s.replace("'", "'\"'\"'") + "'"


def checksum(content: bytes) -> str:
    """SHA256 checksum of content."""
    return hashlib.sha256(content).hexdigest()


class TemplateEngine:
    """
    Jinja2 templating engine.

    Provides:
    - Variable interpolation in strings
    - Recursive template rendering in dicts/lists
    - 'when' condition evaluation
    - Artifact rendering to bytes
    """

    def __init__(self):
        self.env = Environment(
            undefined=StrictUndefined,
            # Don't auto-escape (we're not rendering HTML)
            autoescape=False,
            keep_trailing_newline=True,
        )

        for name, func in CUSTOM_FILTERS.items():
            self.env.filters[name] = func

    def render(self, template_str: str, variables: Mapping[str, Any]) -> Any:
        """
        Render a template string with variables.

        Args:
            template_str: String potentially containing {{ }} expressions
            variables: Mapping of variables for rendering

        Returns:
            Rendered string (non-strings are returned untouched)

        Raises:
            RenderError: If template is invalid or variable is undefined
        """
        if not isinstance(template_str, str):
            return template_str

        # Fast path: no template markers
        if '{{' not in template_str and '{%' not in template_str:
            return template_str

        return self._render_source(template_str, variables)

    def _render_source(self, source: str, variables: Mapping[str, Any], name: Optional[str] = None) -> str:
        label = name or source
        try:
            template = self.env.from_string(source)
            return template.render(dict(variables))
        except UndefinedError as e:
            raise RenderError(f"Undefined variable: {e}", template=label)
        except TemplateSyntaxError as e:
            raise RenderError(f"Template syntax error: {e}", template=label)
        except RenderError:
            raise
        except Exception as e:
            raise RenderError(f"Template error: {e}", template=label)

    def render_recursive(self, data: Any, variables: Mapping[str, Any]) -> Any:
        """
        Recursively render templates in a data structure.

        Args:
            data: Data structure (dict, list, or scalar)
            variables: Mapping of variables for rendering

        Returns:
            Data structure with all templates rendered
        """
        if isinstance(data, str):
            return self.render(data, variables)

        if isinstance(data, dict):
            return {
                self.render(k, variables): self.render_recursive(v, variables)
                for k, v in data.items()
            }

        if isinstance(data, list):
            return [self.render_recursive(item, variables) for item in data]

        return data

    def render_artifact(self, template: Any, variables: Mapping[str, Any]) -> bytes:
        """
        Render an artifact template to bytes.

        Pure and deterministic: the same (template, variables) always yields
        the same bytes.
        """
        rendered = self._render_source(template.source, variables, name=template.name)
        return rendered.encode(getattr(template, 'encoding', 'utf-8'))

    def evaluate_when(self, condition: Any, variables: Mapping[str, Any]) -> bool:
        """
        Evaluate a 'when' condition.

        Args:
            condition: Jinja2 expression (without {{ }}), or a literal bool
            variables: Mapping of variables for evaluation

        Raises:
            RenderError: If condition is invalid
        """
        if isinstance(condition, bool):
            return condition
        if condition is None or not str(condition).strip():
            return True

        try:
            expression = self.env.compile_expression(
                str(condition).strip(), undefined_to_none=False
            )
        except TemplateSyntaxError as e:
            raise RenderError(f"Invalid condition: {e}", template=str(condition))
        try:
            return self._to_bool(expression(**dict(variables)))
        except UndefinedError as e:
            raise RenderError(f"Undefined variable: {e}", template=str(condition))

    def _to_bool(self, value: Any) -> bool:
        """Convert a value to boolean."""
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            value_lower = value.lower().strip()
            if value_lower in ('true', 'yes', '1', 'on'):
                return True
            if value_lower in ('false', 'no', '0', 'off', ''):
                return False
            return True
        # bool() of StrictUndefined raises UndefinedError
        return bool(value)


def deploy_artifact(content: bytes, target_path: str, current: Optional[bytes]) -> Diff:
    """
    Compare rendered bytes against what is on the target, byte-for-byte.

    Args:
        content: Rendered artifact bytes
        target_path: Destination path on the host
        current: Current bytes at target_path, or None when absent

    Returns:
        NoChange when identical, otherwise Change with checksums and a text diff
    """
    if current is not None and current == content:
        return NoChange(reason=f"{target_path} already up to date")

    before = current.decode('utf-8', errors='replace') if current is not None else ''
    after = content.decode('utf-8', errors='replace')
    text_diff = ''.join(difflib.unified_diff(
        before.splitlines(keepends=True),
        after.splitlines(keepends=True),
        fromfile=f"{target_path} (current)" if current is not None else '/dev/null',
        tofile=f"{target_path} (rendered)",
    ))
    return Change(
        delta={
            'path': target_path,
            'before_checksum': checksum(current) if current is not None else None,
            'after_checksum': checksum(content),
        },
        diff=text_diff,
    )


# Singleton instance for convenience
_engine: Optional[TemplateEngine] = None


def get_template_engine() -> TemplateEngine:
    """Get the singleton template engine instance."""
    global _engine
    if _engine is None:
        _engine = TemplateEngine()
    return _engine


def render_recursive(data: Any, variables: Mapping[str, Any]) -> Any:
    """Convenience function to render templates recursively."""
    return get_template_engine().render_recursive(data, variables)


def evaluate_when(condition: Any, variables: Mapping[str, Any]) -> bool:
    """Convenience function to evaluate a when condition."""
    return get_template_engine().evaluate_when(condition, variables)
