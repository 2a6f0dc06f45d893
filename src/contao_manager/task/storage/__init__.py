"""SQLite storage for tasks, operations and console output."""
