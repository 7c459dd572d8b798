"""Batch analysis pipeline: transcription, card synthesis and recovery."""
