"""voicetag: real-time speech-to-text with on-device speaker recognition."""
