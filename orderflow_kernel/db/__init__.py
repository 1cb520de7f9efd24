"""Database infrastructure: declarative base, engine and session lifecycle."""

from orderflow_kernel.db.base import Base, TrackedBase, UUIDString

__all__ = ["Base", "TrackedBase", "UUIDString"]
