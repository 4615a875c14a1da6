"""Utility scripts for operating document stores.

Scripts include:
- ``seed_store.py``: write the sample users and posts into the configured store.
"""
