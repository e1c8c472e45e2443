"""Durable SQLite storage shared by the job queue, context engine and cache."""
