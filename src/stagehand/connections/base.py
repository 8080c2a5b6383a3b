"""
Stagehand Connection Base Class

Abstract transport used by probes and actions, plus the connection factory.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Optional

from stagehand.engine.errors import UnreachableHost
from stagehand.engine.inventory import Host


@dataclass
class RunResult:
    """Result of running a command on a host."""

    rc: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.rc == 0


class Connection(ABC):
    """
    Abstract base class for connections.

    All transports (SSH, local) implement this interface.
    """

    def __init__(self, host: Host):
        self.host = host

    @abstractmethod
    async def connect(self) -> None:
        """Establish the connection."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection."""
        pass

    @abstractmethod
    async def run(
        self,
        command: str,
        shell: bool = True,
        timeout: Optional[int] = None,
        cwd: Optional[str] = None,
        environment: Optional[dict] = None,
    ) -> RunResult:
        """
        Run a command on the host.

        Args:
            command: Command to execute
            shell: If True, run through a shell
            timeout: Optional timeout in seconds
            cwd: Working directory
            environment: Environment variables

        Returns:
            RunResult with rc, stdout, stderr
        """
        pass

    @abstractmethod
    async def read_file(self, path: str) -> Optional[bytes]:
        """
        Read a file from the host.

        Returns:
            The file's bytes, or None when it does not exist
        """
        pass

    @abstractmethod
    async def write_file(self, path: str, data: bytes, mode: Optional[str] = None) -> None:
        """
        Write bytes to a file on the host, creating parent directories.

        Args:
            path: Destination path
            data: File content
            mode: Optional file mode (e.g., '0644')
        """
        pass

    @abstractmethod
    async def stat(self, path: str) -> Optional[dict]:
        """
        Get file/directory information.

        Returns:
            Dict with 'exists', 'isdir', 'isfile', 'size', 'mode' or None if not found
        """
        pass

    @property
    def connection_type(self) -> str:
        """Return the connection type name."""
        return self.__class__.__name__.replace('Connection', '').lower()


ConnectionFactory = Callable[[Host], Coroutine[Any, Any, Connection]]


def _connection_class(conn_type: str):
    if conn_type == 'local':
        from stagehand.connections.local import LocalConnection
        return LocalConnection
    if conn_type == 'ssh':
        from stagehand.connections.ssh_asyncssh import SSHConnection
        return SSHConnection
    return None


def create_connection_factory(retries: int = 2, delay: float = 1.0) -> ConnectionFactory:
    """
    Create a connection factory function.

    Returns a coroutine that creates the appropriate connection based on host
    settings. Establishing the session is retried ``retries`` times, sleeping
    ``delay`` seconds in between; the last failure raises UnreachableHost.
    """
    async def factory(host: Host) -> Connection:
        conn_type = host.connection
        conn_class = _connection_class(conn_type)
        if conn_class is None:
            raise UnreachableHost(host.name, f"Unknown connection type: {conn_type}")

        last_error: Optional[Exception] = None
        for attempt in range(retries + 1):
            if attempt:
                await asyncio.sleep(delay)
            conn = conn_class(host)
            try:
                await conn.connect()
                return conn
            except (UnreachableHost, OSError, asyncio.TimeoutError) as e:
                last_error = e

        if isinstance(last_error, UnreachableHost):
            raise last_error
        raise UnreachableHost(host.name, str(last_error), connection_type=conn_type)

    return factory
