"""File copy, disposable-VM file exchange and small helper services over byte streams."""

__version__ = "0.1.0"