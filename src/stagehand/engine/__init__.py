"""
Stagehand Engine Module

Core engine for loading sites and roles and converging hosts tier by tier.
"""

from stagehand.engine.inventory import InventoryManager
from stagehand.engine.roles import RoleLoader, Role, Task, Handler
from stagehand.engine.plan import SiteLoader, ExecutionPlan, Stage, TierBinding, bind
from stagehand.engine.templating import TemplateEngine
from stagehand.engine.executor import Scheduler, HostExecutor, HandlerDispatcher
from stagehand.engine.results import TaskResult, RunReport, TierResult, RunResult, aggregate
from stagehand.engine.errors import (
    StagehandError,
    ParseError,
    InventoryError,
    UnsupportedFeatureError,
    RenderError,
    ActionError,
    UnreachableHost,
    HandlerError,
)

__all__ = [
    'InventoryManager',
    'RoleLoader',
    'Role',
    'Task',
    'Handler',
    'SiteLoader',
    'ExecutionPlan',
    'Stage',
    'TierBinding',
    'bind',
    'TemplateEngine',
    'Scheduler',
    'HostExecutor',
    'HandlerDispatcher',
    'TaskResult',
    'RunReport',
    'TierResult',
    'RunResult',
    'aggregate',
    'StagehandError',
    'ParseError',
    'InventoryError',
    'UnsupportedFeatureError',
    'RenderError',
    'ActionError',
    'UnreachableHost',
    'HandlerError',
]
