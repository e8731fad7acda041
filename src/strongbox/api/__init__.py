"""Strongbox - Loopback API for the desktop shell."""
