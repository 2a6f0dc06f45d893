"""Contao Manager: composer status checks and durable project tasks."""

__version__ = "0.1.0"
