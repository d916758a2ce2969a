# src/storytree/__init__.py
"""Branching chapter trees, pull-request review and collaborator roles."""

__version__ = "0.1.0"
