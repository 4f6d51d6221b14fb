"""Speech-to-Text providers."""


def register_providers():
    """Register STT providers, configured from the whisperkit_* settings."""
    from ..registry import registry
    from ...config.settings import settings
    from .whisperkit import WhisperKitProvider

    registry.register_stt_provider(
        "whisperkit",
        WhisperKitProvider,
        lambda: settings.get_provider_config("whisperkit"),
    )
