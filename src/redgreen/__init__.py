"""Test-first task execution engine for code-generation agents."""

__version__ = "0.1.0"
