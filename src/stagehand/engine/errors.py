# Copyright (c) 2024 Stagehand Contributors
# MIT License

"""
Stagehand Error Classes.

All custom exceptions for clear error handling and exit codes.
Load-time errors (inventory, site and role documents) abort the run before any
host is touched; task-level errors are recorded in the owning host's report.
"""

from __future__ import annotations

import enum


class ExitCode(enum.IntEnum):
    """Process exit codes for the stagehand CLI."""

    SUCCESS = 0
    GENERIC_ERROR = 1
    DEGRADED = 2
    TOTAL_FAILURE = 3
    LOAD_ERROR = 4
    KEYBOARD_INTERRUPT = 130


class StagehandError(Exception):
    """Base exception for all Stagehand errors."""

    exit_code: int = ExitCode.GENERIC_ERROR

    def __init__(self, message: str, details: str | None = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}\n  Details: {self.details}"
        return self.message


class ParseError(StagehandError):
    """Error parsing inventory, site, role or other input files."""

    exit_code: int = ExitCode.LOAD_ERROR

    def __init__(
        self,
        message: str,
        file_path: str | None = None,
        line: int | None = None,
        details: str | None = None,
    ) -> None:
        self.file_path = file_path
        self.line = line
        location = ""
        if file_path:
            location = f" in {file_path}"
            if line:
                location += f" at line {line}"
        super().__init__(f"Parse error{location}: {message}", details)


class InventoryError(ParseError):
    """Malformed or inconsistent host/group data."""

    def __init__(self, message: str, file_path: str | None = None) -> None:
        super().__init__(message, file_path=file_path)


class UnsupportedFeatureError(StagehandError):
    """A role document uses an action kind or keyword Stagehand does not know."""

    exit_code: int = ExitCode.LOAD_ERROR

    def __init__(self, feature: str, suggestion: str | None = None) -> None:
        self.feature = feature
        msg = f"Unsupported feature: {feature}"
        if suggestion:
            msg += f"\n  Suggestion: {suggestion}"
        super().__init__(msg)


class RenderError(StagehandError):
    """Error rendering a Jinja2 template or resolving a variable."""

    def __init__(
        self,
        message: str,
        template: str | None = None,
        variable: str | None = None,
    ) -> None:
        self.template = template
        self.variable = variable

        details = None
        if template:
            # Truncate long templates
            truncated = template[:100] + "..." if len(template) > 100 else template
            details = f"Template: {truncated}"

        super().__init__(f"Render error: {message}", details)


class ActionError(StagehandError):
    """A remote action exited non-zero or a probe returned unexpected output."""

    def __init__(
        self,
        action: str,
        host: str,
        message: str,
        rc: int | None = None,
        stdout: str | None = None,
        stderr: str | None = None,
    ) -> None:
        self.action = action
        self.host = host
        self.rc = rc
        self.stdout = stdout
        self.stderr = stderr

        details_parts = []
        if rc is not None:
            details_parts.append(f"rc={rc}")
        if stderr:
            details_parts.append(f"stderr: {stderr[:200]}")

        super().__init__(
            f"Action '{action}' failed on {host}: {message}",
            "; ".join(details_parts) if details_parts else None
        )


class UnreachableHost(StagehandError):
    """The transport could not establish a session with a host."""

    def __init__(
        self,
        host: str,
        message: str,
        connection_type: str | None = None,
        details: str | None = None,
    ) -> None:
        self.host = host
        self.connection_type = connection_type
        conn_info = f" ({connection_type})" if connection_type else ""
        super().__init__(f"Connection to {host}{conn_info} failed: {message}", details)


class HandlerError(StagehandError):
    """One or more notified handlers failed on a host."""

    def __init__(self, host: str, handlers: list[str]) -> None:
        self.host = host
        self.handlers = list(handlers)
        super().__init__(f"Handler(s) failed on {host}: {', '.join(self.handlers)}")
