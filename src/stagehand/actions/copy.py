"""
Stagehand copy action

Deploy a file from inline content or the role's files/ directory.
"""

from typing import Any, Dict, Optional

from stagehand.actions.base import Action, ActionOutput, normalize_mode, register_action
from stagehand.engine.probe import Change, CurrentState, Diff, NoChange
from stagehand.engine.templating import deploy_artifact


class FileAction(Action):
    """
    Shared logic for actions that place bytes at a path on the host.

    Content and mode are compared separately: the bytes byte-for-byte, the
    mode only when one was requested.
    """

    optional_args = {
        "mode": None,
    }

    _content: Optional[bytes] = None

    def validate_args(self):
        error = super().validate_args()
        if error:
            return error
        try:
            normalize_mode(self.get_arg("mode"))
        except ValueError as e:
            return str(e)
        return None

    @property
    def dest(self) -> str:
        return str(self.args["dest"])

    def build_content(self) -> bytes:
        raise NotImplementedError

    @property
    def content(self) -> bytes:
        if self._content is None:
            self._content = self.build_content()
        return self._content

    async def probe(self) -> CurrentState:
        values: Dict[str, Any] = {"content": await self.connection.read_file(self.dest)}
        if self.get_arg("mode") is not None:
            info = await self.connection.stat(self.dest)
            values["mode"] = info.get("mode") if info else None
        return CurrentState(values=values)

    def diff(self, current: CurrentState) -> Diff:
        result = deploy_artifact(self.content, self.dest, current.get("content"))
        delta = dict(result.delta) if isinstance(result, Change) else {}

        mode = normalize_mode(self.get_arg("mode"))
        if mode is not None and current.get("mode") != mode:
            delta.setdefault("path", self.dest)
            delta["mode"] = {"before": current.get("mode"), "after": mode}

        if not delta:
            return NoChange(reason=f"{self.dest} already up to date")
        return Change(delta=delta, diff=result.diff if isinstance(result, Change) else None)

    async def apply(self, change: Change) -> ActionOutput:
        await self.connection.write_file(self.dest, self.content, normalize_mode(self.get_arg("mode")))
        return ActionOutput(msg=f"{self.dest} written ({len(self.content)} bytes)")


@register_action
class CopyAction(FileAction):
    """Copy inline 'content' or a role file ('src') to 'dest'."""

    kind = "copy"
    required_args = ["dest"]
    optional_args = {
        "src": None,
        "content": None,
        "mode": None,
    }

    def validate_args(self):
        error = super().validate_args()
        if error:
            return error
        if self.get_arg("src") is None and self.get_arg("content") is None:
            return "Either 'src' or 'content' is required"
        return None

    def build_content(self) -> bytes:
        content = self.get_arg("content")
        if content is not None:
            if isinstance(content, bytes):
                return content
            return str(content).encode("utf-8")

        src = str(self.args["src"])
        path = self.context.role.file_path(src)
        if path is None:
            raise self.fail(f"Source file not found: {src}")
        return path.read_bytes()
