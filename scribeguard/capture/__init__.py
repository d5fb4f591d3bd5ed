"""Audio capture and local transcription."""
