"""Exceptions raised by the document store and query engine."""

from typing import List, Optional


class StoreError(Exception):
    """A document store operation failed and was rolled back."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class MigrationError(StoreError):
    """A schema migration failed. Fatal at startup."""

    def __init__(self, migration_id: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"Migration {migration_id} failed: {message}", cause=cause)
        self.migration_id = migration_id


class SearchError(StoreError):
    """A search could not be executed."""


class LibraryNotFoundError(SearchError):
    """The requested library has no indexed documents."""

    def __init__(self, library: str, available: Optional[List[str]] = None):
        super().__init__(f"Library '{library}' not found")
        self.library = library
        self.available = available or []


class VersionNotFoundError(SearchError):
    """No indexed version of a library satisfies the requested version."""

    def __init__(self, library: str, requested: Optional[str], available: List[str]):
        shown = ", ".join(v or "(unversioned)" for v in available) or "none"
        super().__init__(f"Version '{requested or 'latest'}' not found for library '{library}'. "
                         f"Available versions: {shown}")
        self.library = library
        self.requested = requested
        self.available = available
