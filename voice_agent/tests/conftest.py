"""Shared fixtures for the voice agent tests."""

import numpy as np
import pytest

from voice_agent.audio.segmenter import AudioSegment, SegmenterConfig
from voice_agent.mocks.providers import silence, split_frames, tone


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep metrics, sessions and logs out of the real home directory."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def segmenter_config():
    return SegmenterConfig(
        sample_rate=16000,
        frame_ms=30,
        silence_threshold=0.02,
        silence_duration_ms=300,
        min_segment_ms=150,
        max_segment_ms=None,
    )


@pytest.fixture
def make_frames(segmenter_config):
    """Build frames from (kind, duration_ms) pairs, kind being 'speech' or 'silence'."""

    def build(*parts):
        rate = segmenter_config.sample_rate
        chunks = [
            tone(duration, rate) if kind == "speech" else silence(duration, rate)
            for kind, duration in parts
        ]
        return split_frames(np.concatenate(chunks), segmenter_config.frame_size)

    return build


@pytest.fixture
def speech_segment():
    """One second of speech-like audio."""
    return AudioSegment(samples=tone(1000), sample_rate=16000)
