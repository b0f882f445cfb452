"""Sointu data model, 4klang import, WAV/raw export and loudness/peak metering."""

__version__ = "0.1.0"
__all__ = ["patch", "song", "audio", "fourklang", "broker", "detector"]