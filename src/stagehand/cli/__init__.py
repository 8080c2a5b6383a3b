"""Stagehand command-line interface."""
