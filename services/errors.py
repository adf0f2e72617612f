class InterviewNotFound(LookupError):
    """Raised when an interview id has no stored record."""


class GeneratorUnavailable(RuntimeError):
    """Question generation failed at the transport level (unreachable, rate limited)."""


class EvaluatorUnavailable(RuntimeError):
    """Evaluation could not be obtained; the interview stays in progress."""


class InvalidTransition(RuntimeError):
    """An operation was requested in a session state that does not allow it."""


class MediaUnavailable(RuntimeError):
    """A camera, microphone or speech capability could not be acquired."""
