"""Integration tests against a Firestore emulator."""
