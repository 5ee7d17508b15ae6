"""Migración de tablas SQLite a Azure Table Storage."""

__version__ = "1.0.0"
