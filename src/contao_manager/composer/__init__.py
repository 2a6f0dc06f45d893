"""Composer project inspection: manifest, lockfile, schema and status."""
