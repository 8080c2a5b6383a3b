"""
Stagehand template action

Render a role template with Jinja2 and deploy it when the bytes differ.
"""

from stagehand.actions.base import register_action
from stagehand.actions.copy import FileAction
from stagehand.engine.templating import get_template_engine


@register_action
class TemplateAction(FileAction):
    """Render templates/<src> against the host's variables and deploy to 'dest'."""

    kind = "template"
    required_args = ["src", "dest"]
    optional_args = {
        "mode": None,
    }

    def build_content(self) -> bytes:
        src = str(self.args["src"])
        artifact = self.context.role.get_artifact(src)
        if artifact is None:
            raise self.fail(f"Template not found in role {self.context.role.name}: {src}")
        return get_template_engine().render_artifact(artifact, self.variables)
