"""Stagehand connection plugins."""

from stagehand.connections.base import Connection, RunResult, create_connection_factory

__all__ = ['Connection', 'RunResult', 'create_connection_factory']
