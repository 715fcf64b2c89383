"""Streaming generation sessions and their coordination with app liveness."""
