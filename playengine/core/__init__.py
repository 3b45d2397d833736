"""Core session primitives: events and their emitter."""
