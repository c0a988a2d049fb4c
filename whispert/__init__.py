"""whisper-t: transcribe long audio and video files with a remote speech-to-text API."""

__version__ = "0.2.0"
