"""Messaging core for the pet adoption marketplace."""
