"""taskloop: test-first task workflow orchestrator."""

__version__ = "1.0.0"
