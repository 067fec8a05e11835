"""Schema migration drivers for MySQL and Firebird, with MongoDB configuration parsing."""

__version__ = "0.1.0"

__all__ = ["errors", "driver", "firebird", "mysql", "mongodb"]