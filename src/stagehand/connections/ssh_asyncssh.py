"""
Stagehand SSH Connection (asyncssh)

SSH transport using asyncssh, with SFTP for file reads and writes.
"""

import asyncio
import os
import posixpath
import stat as stat_module
from typing import Optional

import asyncssh

from stagehand.connections.base import Connection, RunResult
from stagehand.engine.errors import UnreachableHost
from stagehand.engine.inventory import Host
from stagehand.engine.templating import shell_quote


class SSHConnection(Connection):
    """
    SSH connection using asyncssh.

    Supports:
    - Key-based authentication
    - Password authentication
    - SSH agent
    - Custom ports
    """

    def __init__(self, host: Host):
        super().__init__(host)
        self._conn: Optional[asyncssh.SSHClientConnection] = None
        self._sftp: Optional[asyncssh.SFTPClient] = None

    async def connect(self) -> None:
        """Establish SSH connection."""
        user = self.host.user or os.getenv('USER', 'root')

        password = self.host.get_variable('ansible_password') or \
            self.host.get_variable('ansible_ssh_pass')
        private_key = self.host.get_variable('ansible_ssh_private_key_file')
        host_key_checking = self.host.get_variable('ansible_ssh_host_key_checking', True)

        connect_kwargs = {
            'host': self.host.address,
            'port': self.host.port,
            'username': user,
        }

        if private_key:
            connect_kwargs['client_keys'] = [private_key]
        if password:
            connect_kwargs['password'] = password
        if not host_key_checking or str(host_key_checking).lower() in ('false', 'no'):
            connect_kwargs['known_hosts'] = None

        timeout = self.host.get_variable('ansible_ssh_timeout', 30)
        connect_kwargs['connect_timeout'] = int(timeout)

        try:
            self._conn = await asyncssh.connect(**connect_kwargs)
        except (OSError, asyncssh.Error, asyncio.TimeoutError) as e:
            raise UnreachableHost(
                host=self.host.name,
                message=str(e) or e.__class__.__name__,
                connection_type='ssh',
            )

    async def close(self) -> None:
        """Close SSH connection."""
        if self._sftp:
            self._sftp.exit()
            self._sftp = None

        if self._conn:
            self._conn.close()
            await self._conn.wait_closed()
            self._conn = None

    async def run(
        self,
        command: str,
        shell: bool = True,
        timeout: Optional[int] = None,
        cwd: Optional[str] = None,
        environment: Optional[dict] = None,
    ) -> RunResult:
        if not self._conn:
            return RunResult(rc=1, stdout="", stderr="Not connected")

        full_command = command
        if cwd:
            full_command = f"cd {shell_quote(cwd)} && {command}"
        if shell:
            full_command = f"/bin/sh -c {shell_quote(full_command)}"
        if environment:
            env_prefix = " ".join(f"{k}={shell_quote(str(v))}" for k, v in environment.items())
            full_command = f"env {env_prefix} {full_command}"

        try:
            result = await asyncio.wait_for(
                self._conn.run(full_command, check=False),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            return RunResult(rc=124, stdout="", stderr="Command timed out")
        except asyncssh.Error as e:
            return RunResult(rc=255, stdout="", stderr=str(e))

        return RunResult(
            rc=result.exit_status or 0,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )

    async def _get_sftp(self) -> 'asyncssh.SFTPClient':
        """Get or create SFTP client."""
        if self._sftp is None:
            self._sftp = await self._conn.start_sftp_client()
        return self._sftp

    async def read_file(self, path: str) -> Optional[bytes]:
        sftp = await self._get_sftp()
        try:
            async with sftp.open(path, 'rb') as handle:
                return await handle.read()
        except asyncssh.SFTPNoSuchFile:
            return None

    async def write_file(self, path: str, data: bytes, mode: Optional[str] = None) -> None:
        sftp = await self._get_sftp()
        parent = posixpath.dirname(path)
        if parent:
            await sftp.makedirs(parent, exist_ok=True)

        async with sftp.open(path, 'wb') as handle:
            await handle.write(data)

        if mode:
            await sftp.chmod(path, int(str(mode), 8))

    async def stat(self, path: str) -> Optional[dict]:
        sftp = await self._get_sftp()
        try:
            attrs = await sftp.stat(path)
        except asyncssh.SFTPNoSuchFile:
            return None

        permissions = attrs.permissions or 0
        return {
            'exists': True,
            'isdir': stat_module.S_ISDIR(permissions),
            'isfile': stat_module.S_ISREG(permissions),
            'islink': stat_module.S_ISLNK(permissions),
            'size': attrs.size or 0,
            'mtime': attrs.mtime or 0,
            'mode': oct(permissions)[-4:],
            'uid': attrs.uid or 0,
            'gid': attrs.gid or 0,
        }
