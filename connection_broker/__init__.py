"""Delegation-token broker for short-lived provider access."""
