# Copyright (c) 2024 Stagehand Contributors
# MIT License

"""
Stagehand: tiered, idempotent convergence engine.

Drives a fleet of hosts, grouped into tiers (database, application, web, ...),
onto a declared configuration state.

Features:
    - Ansible-style inventories (YAML/INI, group_vars/host_vars)
    - Role directories with ordered tasks, handlers and Jinja2 templates
    - Probe/diff before every step: converged hosts report no changes
    - Tier barriers with per-host failure isolation
    - SSH (asyncssh) and local connections

This package exposes release metadata; the CLI lives in ``stagehand.cli``.
"""

from __future__ import annotations

from stagehand.release import __version__, __author__, __codename__

__all__ = [
    "__version__",
    "__author__",
    "__codename__",
]
