"""Движок сессии очистки и реорганизации закладок."""

__version__ = "0.1.0"
