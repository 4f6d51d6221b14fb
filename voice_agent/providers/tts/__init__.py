"""Text-to-Speech providers."""


def register_providers():
    """Register TTS providers, configured from the elevenlabs_* settings."""
    from ..registry import registry
    from ...config.settings import settings
    from .elevenlabs import ElevenLabsProvider

    registry.register_tts_provider(
        "elevenlabs",
        ElevenLabsProvider,
        lambda: settings.get_provider_config("elevenlabs"),
    )
