"""
voidstate package initialization.

Public exports are minimal; consumers should import specific modules.
"""

__all__ = [
    "nodes",
    "parser",
    "values",
    "builtins",
    "interpreter",
    "packages",
    "registry",
    "system",
    "actions",
    "reconciler",
    "render",
    "command",
    "query",
    "executor",
    "state_store",
    "cli",
]
