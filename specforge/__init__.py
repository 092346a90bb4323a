"""specforge - dependency-aware incremental generation orchestrator.

Plans, schedules and incrementally regenerates the files described by a
structured specification, delegating file content to an external
generator.
"""

__version__ = "0.1.0"
