"""Error taxonomy for the voice agent.

Only DeviceError is fatal to a session. Everything else is contained by the
conversation manager (or, for tool errors, reported back to the model).
"""


class VoiceAgentError(Exception):
    """Base class for all voice agent errors."""


class DeviceError(VoiceAgentError):
    """The audio device is unavailable. Fatal: no segment can be produced."""


class TranscriptionError(VoiceAgentError):
    """The STT engine could not process a segment."""


class ToolError(VoiceAgentError):
    """Base class for failures inside the tool boundary."""


class ToolValidationError(ToolError):
    """A tool call named an unknown tool or carried invalid arguments."""


class ToolExecutionError(ToolError):
    """A tool handler failed while running."""


class InferenceError(VoiceAgentError):
    """The language model was unreachable or returned malformed output."""


class SynthesisError(VoiceAgentError):
    """Text could not be synthesized or played back."""


class RegistryFrozenError(VoiceAgentError, RuntimeError):
    """A tool was registered after the session started."""


class InvalidTransitionError(VoiceAgentError, RuntimeError):
    """The conversation state machine was asked for an illegal transition."""

    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Illegal turn state transition: {current.value} -> {requested.value}"
        )
