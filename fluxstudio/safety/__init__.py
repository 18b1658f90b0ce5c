"""Moderation guidance package.

Scope:
    Maps provider moderation reasons to user-facing explanations. It never
    blocks or filters requests itself; moderation decisions are made upstream
    by the provider.
"""
