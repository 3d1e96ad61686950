"""Filesystem helpers shared by the persistence and consistency planes."""

from lumenflow_core.utils.fs import append_line, append_lines, atomic_write

__all__ = ["append_line", "append_lines", "atomic_write"]
