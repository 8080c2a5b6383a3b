"""
Stagehand Actions

Built-in action kinds: package, service, copy, template, command, grant.
"""

from stagehand.actions.base import Action, ActionOutput, get_action, list_actions, register_action

__all__ = [
    'Action',
    'ActionOutput',
    'get_action',
    'list_actions',
    'register_action',
]
