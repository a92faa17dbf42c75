"""Errors raised by storage back ends."""


class StorageError(Exception):
    """A write could not be completed (disk, engine or driver failure)."""


class ConstraintViolation(StorageError):
    """A uniqueness or foreign-key rule rejected the write."""
