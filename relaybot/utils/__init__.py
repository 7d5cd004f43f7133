"""Utility helpers for RelayBot."""

from relaybot.utils.helpers import ensure_dir, generate_id, similarity, levenshtein_distance

__all__ = ["ensure_dir", "generate_id", "similarity", "levenshtein_distance"]
