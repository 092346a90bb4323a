"""Dependency graph primitive for task and phase ordering."""

from .dag import DependencyGraph, GraphNode

__all__ = [
    "DependencyGraph",
    "GraphNode",
]
