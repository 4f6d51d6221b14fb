"""
Voice Agent - A turn-based voice assistant with tool calling.

Listens to the microphone, segments speech by amplitude, transcribes it
with WhisperKit, lets an Ollama or Gemini model answer (calling local
tools when it needs to), and speaks the answer with ElevenLabs.
"""

__version__ = "1.0.0"
