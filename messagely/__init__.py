"""Messagely: users, authentication and direct messages."""
