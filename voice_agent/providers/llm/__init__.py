"""LLM providers."""


def register_providers():
    """Register LLM providers, configured from the ollama_* and gemini_* settings."""
    from ..registry import registry
    from ...config.settings import settings
    from .ollama import OllamaProvider
    from .gemini import GeminiProvider

    registry.register_llm_provider(
        "ollama", OllamaProvider, lambda: settings.get_provider_config("ollama")
    )

    def get_gemini_config():
        config = settings.get_provider_config("gemini")
        # GeminiProvider names its model argument model_name
        config["model_name"] = config.pop("model")
        return config

    registry.register_llm_provider("gemini", GeminiProvider, get_gemini_config)
