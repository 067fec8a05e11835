"""The driver interface and the registry of database drivers."""

from __future__ import annotations

import abc
import threading
from typing import BinaryIO, TextIO

NIL_VERSION = -1


class LockedError(Exception):
    """The database lock could not be acquired."""

    def __init__(self, message: str = "can't acquire lock") -> None:
        super().__init__(message)


class NotLockedError(Exception):
    """An unlock was requested while no lock was held."""

    def __init__(self, message: str = "can't unlock, as not currently locked") -> None:
        super().__init__(message)


class UnknownDriverError(LookupError):
    """No driver is registered for a URL's scheme."""

    def __init__(self, scheme: str) -> None:
        self.scheme = scheme
        super().__init__(f"database driver: unknown driver {scheme} (forgotten import?)")


class Driver(abc.ABC):
    """What every database driver provides."""

    @abc.abstractmethod
    def open(self, url: str) -> "Driver":
        """Return a new driver instance configured from the URL."""

    @abc.abstractmethod
    def close(self) -> None:
        """Close the underlying database instance."""

    @abc.abstractmethod
    def lock(self) -> None:
        """Acquire the migration lock; raise LockedError if already held."""

    @abc.abstractmethod
    def unlock(self) -> None:
        """Release the migration lock; raise NotLockedError if not held."""

    @abc.abstractmethod
    def run(self, migration: BinaryIO | TextIO) -> None:
        """Apply a migration read from the given stream."""

    @abc.abstractmethod
    def set_version(self, version: int, dirty: bool) -> None:
        """Save the version and dirty state; version is at least NIL_VERSION."""

    @abc.abstractmethod
    def version(self) -> tuple[int, bool]:
        """Return the active version and whether the database is dirty."""

    @abc.abstractmethod
    def drop(self) -> None:
        """Delete everything in the database."""


_drivers_lock = threading.RLock()
_drivers: dict[str, Driver] = {}


def scheme_from_url(url: str) -> str:
    """Return the part of the URL before the first colon."""
    if not url:
        raise ValueError("URL cannot be empty")
    index = url.find(":")
    if index < 1:
        raise ValueError("no scheme")
    return url[:index]


def register(name: str, driver: Driver) -> None:
    """Register a driver under a name; each name may be registered once."""
    if driver is None:
        raise ValueError("Register driver is nil")
    with _drivers_lock:
        if name in _drivers:
            raise ValueError(f"Register called twice for driver {name}")
        _drivers[name] = driver


def open_driver(url: str) -> Driver:
    """Open a new driver instance chosen by the URL's scheme."""
    scheme = scheme_from_url(url)
    with _drivers_lock:
        driver = _drivers.get(scheme)
    if driver is None:
        raise UnknownDriverError(scheme)
    return driver.open(url)


def list_drivers() -> list[str]:
    """Return the names of the registered drivers, sorted."""
    with _drivers_lock:
        return sorted(_drivers)