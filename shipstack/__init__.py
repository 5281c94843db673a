"""Template synthesis and release orchestration for containerized workloads."""

__version__ = "0.4.0"
