"""Exceptions raised by licence storage."""


class StorageError(Exception):
    """A licence document or the audit log could not be read or written."""

    def __init__(self, message: str, path=None):
        super().__init__(message)
        self.path = path
