"""VaultSync — keeps application state in step with an on-disk notes vault."""

__version__ = "0.1.0"
