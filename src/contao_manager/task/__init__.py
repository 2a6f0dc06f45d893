"""Durable task orchestration: persisted tasks, ordered operations, console feed."""
