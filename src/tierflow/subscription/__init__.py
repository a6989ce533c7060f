"""Tiers, subscriber records, membership tokens and the per-instance lifecycle."""
