"""Shared persistence, models and event plumbing for the matchmaking service."""
