"""Tests for TTS providers and the shared speak() behaviour."""

from unittest.mock import Mock, patch

import pygame
import pytest

from voice_agent.config.settings import settings
from voice_agent.errors import SynthesisError
from voice_agent.mocks.providers import MockTTSProvider
from voice_agent.providers import registry
from voice_agent.providers.tts.base import AudioChunk
from voice_agent.providers.tts.elevenlabs import ElevenLabsProvider


class TestSpeak:
    """Test TTSProvider.speak using the mock provider."""

    def test_speaks_cleaned_text(self):
        tts = MockTTSProvider()
        tts.speak("<think>plan the answer</think>Hello there! 👋")

        assert tts.spoken == ["Hello there!"]

    def test_nothing_to_speak(self):
        tts = MockTTSProvider()
        tts.speak("<think>only reasoning</think>   ")

        assert tts.spoken == []

    def test_synthesis_error_propagates(self):
        with pytest.raises(SynthesisError, match="Mock synthesis failure"):
            MockTTSProvider(fail=True).speak("Hello")

    def test_unexpected_error_wrapped_and_playback_stopped(self):
        class BrokenSpeaker(MockTTSProvider):
            def play_chunk(self, chunk):
                raise RuntimeError("audio device busy")

        tts = BrokenSpeaker()
        with pytest.raises(SynthesisError, match="audio device busy"):
            tts.speak("Hello")
        assert tts.should_stop


class TestElevenLabsProvider:
    """Test ElevenLabs provider."""

    def setup_method(self):
        self.provider = ElevenLabsProvider(voice_id="voice123")

    def test_initialize_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("ELEVENLABS_API_KEY", raising=False)
        with pytest.raises(ValueError, match="ELEVENLABS_API_KEY"):
            self.provider.initialize()

    @patch("voice_agent.providers.tts.elevenlabs.pygame.mixer")
    @patch("voice_agent.providers.tts.elevenlabs.ElevenLabs")
    def test_initialize(self, mock_client_class, mock_mixer, monkeypatch):
        monkeypatch.setenv("ELEVENLABS_API_KEY", "test-key")

        self.provider.initialize()

        mock_client_class.assert_called_once_with(api_key="test-key")
        mock_mixer.init.assert_called_once()
        assert self.provider.client is mock_client_class.return_value

    def test_stream_requires_initialize(self):
        with pytest.raises(SynthesisError, match="not initialized"):
            list(self.provider.stream_audio("Hello"))

    def test_stream_audio(self):
        self.provider.client = Mock()
        self.provider.client.text_to_speech.stream.return_value = iter([b"abc", b"", b"def"])

        chunks = list(self.provider.stream_audio("Hello"))

        assert [c.data for c in chunks] == [b"abc", b"def", b""]
        assert [c.is_first for c in chunks] == [True, False, False]
        assert chunks[-1].is_final
        assert chunks[0].format == "mp3"
        kwargs = self.provider.client.text_to_speech.stream.call_args.kwargs
        assert kwargs["voice_id"] == "voice123"
        assert kwargs["text"] == "Hello"
        assert kwargs["model_id"] == "eleven_flash_v2_5"

    def test_stream_no_audio(self):
        self.provider.client = Mock()
        self.provider.client.text_to_speech.stream.return_value = iter([])

        with pytest.raises(SynthesisError, match="no audio"):
            list(self.provider.stream_audio("Hello"))

    def test_stream_api_error(self):
        self.provider.client = Mock()
        self.provider.client.text_to_speech.stream.side_effect = RuntimeError("401 Unauthorized")

        with pytest.raises(SynthesisError, match="401 Unauthorized"):
            list(self.provider.stream_audio("Hello"))

    @patch("voice_agent.providers.tts.elevenlabs.pygame.mixer")
    def test_play_buffers_until_final(self, mock_mixer):
        mock_mixer.music.get_busy.side_effect = [True, False]

        self.provider.play_chunk(AudioChunk(data=b"abc", is_first=True))
        mock_mixer.music.load.assert_not_called()
        self.provider.play_chunk(AudioChunk(data=b"def"))
        self.provider.play_chunk(AudioChunk(data=b"", is_final=True))

        buffer = mock_mixer.music.load.call_args.args[0]
        assert buffer.getvalue() == b"abcdef"
        mock_mixer.music.play.assert_called_once()
        assert self.provider.utterances_spoken == 1
        assert not self.provider.is_playing

    @patch("voice_agent.providers.tts.elevenlabs.pygame.mixer")
    def test_playback_failure(self, mock_mixer):
        mock_mixer.music.load.side_effect = pygame.error("Unrecognized audio format")

        with pytest.raises(SynthesisError, match="Unrecognized audio format"):
            self.provider.play_chunk(AudioChunk(data=b"abc", is_first=True, is_final=True))
        assert self.provider.utterances_spoken == 0

    @patch("voice_agent.providers.tts.elevenlabs.pygame.mixer")
    def test_speak(self, mock_mixer):
        mock_mixer.music.get_busy.return_value = False
        self.provider.client = Mock()
        self.provider.client.text_to_speech.stream.return_value = iter([b"mp3-bytes"])

        self.provider.speak("<think>greet</think>Hello! 😀")

        assert self.provider.client.text_to_speech.stream.call_args.kwargs["text"] == "Hello!"
        assert mock_mixer.music.load.call_args.args[0].getvalue() == b"mp3-bytes"

    @patch("voice_agent.providers.tts.elevenlabs.pygame.mixer")
    def test_stop_playback(self, mock_mixer):
        self.provider.is_playing = True

        self.provider.stop_playback()

        mock_mixer.music.stop.assert_called_once()
        assert self.provider.should_stop
        assert not self.provider.is_playing

    @patch("voice_agent.providers.tts.elevenlabs.pygame.mixer")
    def test_stop(self, mock_mixer):
        self.provider.client = Mock()

        self.provider.stop()

        mock_mixer.quit.assert_called_once()
        assert self.provider.client is None
        assert not self.provider.get_status()["initialized"]


class TestElevenLabsRegistration:
    """Test the registered ElevenLabs provider picks up current settings."""

    def test_settings_flow_into_provider(self):
        with patch.object(settings.providers, "elevenlabs_voice_id", "voice_xyz"), \
                patch.object(settings.providers, "elevenlabs_speed", 1.2):
            provider = registry.get_tts_provider("elevenlabs")

        assert isinstance(provider, ElevenLabsProvider)
        assert provider.voice_id == "voice_xyz"
        assert provider.voice_settings.speed == 1.2
        assert provider.model_id == settings.providers.elevenlabs_model_id

    def test_keyword_overrides_win(self):
        provider = registry.get_tts_provider("elevenlabs", voice_id="voice123")

        assert provider.voice_id == "voice123"
