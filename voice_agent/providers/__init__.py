"""Provider interfaces and implementations for STT, LLM, and TTS."""

from .registry import registry

# Defer provider registration to avoid circular imports
def _register_all_providers():
    """Register all provider types."""
    from . import stt, llm, tts
    stt.register_providers()
    llm.register_providers()
    tts.register_providers()

    # Scripted providers register themselves on import
    from ..mocks import providers as mock_providers  # noqa: F401

# Register providers after module initialization
_register_all_providers()

__all__ = ['registry']
