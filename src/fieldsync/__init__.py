"""fieldsync - offline-first sync engine for captured recording sessions."""

__version__ = "0.1.0"
