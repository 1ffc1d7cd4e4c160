"""Shared date-scoped diary: entry lifecycle, versioning and admin history access."""
