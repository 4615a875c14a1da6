"""Tests for the document loader.

Unit tests run against the in-memory store. Tests under ``integration`` talk
to a Firestore emulator and skip when ``FIRESTORE_EMULATOR_HOST`` is unset.
"""
