"""
Services module - audio capture, recording workflow, playlist, and storage.
"""
