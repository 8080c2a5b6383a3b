"""
Stagehand Local Connection

Execute commands and manage files on the control node itself.
"""

import asyncio
import os
import shlex
from pathlib import Path
from typing import Optional

from stagehand.connections.base import Connection, RunResult
from stagehand.engine.inventory import Host


class LocalConnection(Connection):
    """
    Local connection - execute commands on the control node.

    Used for localhost convergence without any network operations.
    """

    def __init__(self, host: Host):
        super().__init__(host)
        self._connected = False

    async def connect(self) -> None:
        """Local connection is always available."""
        self._connected = True

    async def close(self) -> None:
        self._connected = False

    async def run(
        self,
        command: str,
        shell: bool = True,
        timeout: Optional[int] = None,
        cwd: Optional[str] = None,
        environment: Optional[dict] = None,
    ) -> RunResult:
        env = os.environ.copy()
        if environment:
            env.update({k: str(v) for k, v in environment.items()})

        try:
            if shell:
                process = await asyncio.create_subprocess_shell(
                    command,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=cwd,
                    env=env,
                )
            else:
                process = await asyncio.create_subprocess_exec(
                    *shlex.split(command),
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=cwd,
                    env=env,
                )
        except OSError as e:
            return RunResult(rc=127, stdout="", stderr=str(e))

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return RunResult(
                rc=124,  # Standard timeout exit code
                stdout="",
                stderr="Command timed out",
            )

        return RunResult(
            rc=process.returncode or 0,
            stdout=stdout_bytes.decode('utf-8', errors='replace'),
            stderr=stderr_bytes.decode('utf-8', errors='replace'),
        )

    async def read_file(self, path: str) -> Optional[bytes]:
        target = Path(path)
        if not target.is_file():
            return None
        return target.read_bytes()

    async def write_file(self, path: str, data: bytes, mode: Optional[str] = None) -> None:
        dest = Path(path)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(data)
        if mode:
            os.chmod(dest, int(str(mode), 8))

    async def stat(self, path: str) -> Optional[dict]:
        target = Path(path)
        if not target.exists():
            return None

        st = target.stat()
        return {
            'exists': True,
            'isdir': target.is_dir(),
            'isfile': target.is_file(),
            'islink': target.is_symlink(),
            'size': st.st_size,
            'mtime': st.st_mtime,
            'mode': oct(st.st_mode)[-4:],
            'uid': st.st_uid,
            'gid': st.st_gid,
        }
