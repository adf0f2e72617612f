import logging
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple


logger = logging.getLogger(__name__)

# (transcript, is_final) pairs as delivered by a continuous recognition session.
RecognitionResults = Sequence[Tuple[str, bool]]


class VoiceState(Enum):
    IDLE = "idle"
    LISTENING = "listening"
    STOPPING = "stopping"


class SpeechRecognizer:
    """Platform speech-to-text capability driven by the adapter.

    The default recognizer reports no support; deployments plug in one that
    relays results from the client or a local engine.
    """

    supported = False

    def start(self) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError


class RelayRecognizer(SpeechRecognizer):
    """Recognition runs on the client; results arrive through the API."""

    supported = True

    def __init__(self):
        self.active = False
        self.starts = 0

    def start(self) -> None:
        self.active = True
        self.starts += 1

    def stop(self) -> None:
        self.active = False


class VoiceCaptureAdapter:
    """Bridges recognition results into finalized text increments.

    ``listening`` + end signal re-enters ``listening`` (platform timeouts are
    invisible to the caller); ``stopping`` + end signal goes ``idle``, so a late
    end signal can never reactivate a session that was explicitly stopped.
    """

    def __init__(self, recognizer: Optional[SpeechRecognizer] = None,
                 on_transcript: Optional[Callable[[str], None]] = None):
        self.recognizer = recognizer or SpeechRecognizer()
        self.on_transcript = on_transcript
        self.state = VoiceState.IDLE
        self._finalized: List[str] = []
        self._emitted = 0
        self.interim = ""
        self.restarts = 0
        # End signals still owed by runs stopped before a restart.
        self._pending_ends = 0

    @property
    def is_supported(self) -> bool:
        return bool(getattr(self.recognizer, "supported", False))

    @property
    def is_listening(self) -> bool:
        return self.state is VoiceState.LISTENING

    @property
    def transcript(self) -> str:
        finalized = " ".join(self._finalized)
        if self.interim:
            return f"{finalized} {self.interim}".strip()
        return finalized

    def start(self) -> bool:
        if not self.is_supported:
            return False
        if self.state is VoiceState.LISTENING:
            return True
        was_stopping = self.state is VoiceState.STOPPING
        self._emitted = 0
        self.interim = ""
        try:
            self.recognizer.start()
        except Exception:
            logger.exception("Speech recognition failed to start")
            self.state = VoiceState.STOPPING if was_stopping else VoiceState.IDLE
            return False
        if was_stopping:
            self._pending_ends += 1
        self.state = VoiceState.LISTENING
        return True

    def stop(self) -> None:
        if self.state is not VoiceState.LISTENING:
            return
        self.state = VoiceState.STOPPING
        self.interim = ""
        try:
            self.recognizer.stop()
        except Exception:
            logger.warning("Speech recognizer raised while stopping", exc_info=True)

    def reset_transcript(self) -> None:
        self._finalized = []
        self.interim = ""

    def handle_results(self, results: RecognitionResults, result_index: int = 0) -> List[str]:
        """Process one result event; returns the increments emitted."""
        if self.state is not VoiceState.LISTENING:
            return []
        increments = []
        interim = []
        for position in range(result_index, len(results)):
            text, is_final = results[position]
            if is_final:
                # Results before ``_emitted`` were already delivered in this run.
                if position < self._emitted:
                    continue
                self._emitted = position + 1
                text = (text or "").strip()
                if text:
                    increments.append(text)
            else:
                interim.append((text or "").strip())
        self.interim = " ".join(part for part in interim if part)
        for increment in increments:
            self._finalized.append(increment)
            if self.on_transcript is not None:
                self.on_transcript(increment)
        return increments

    def handle_end(self) -> None:
        if self._pending_ends:
            # Belongs to an earlier, explicitly stopped run.
            self._pending_ends -= 1
            return
        if self.state is VoiceState.STOPPING:
            self.state = VoiceState.IDLE
            return
        if self.state is not VoiceState.LISTENING:
            return
        # Platform auto-stop: a new run numbers its results from zero.
        self._emitted = 0
        self.interim = ""
        try:
            self.recognizer.start()
            self.restarts += 1
        except Exception:
            logger.warning("Speech recognition could not restart", exc_info=True)
            self.state = VoiceState.IDLE

    def handle_error(self, error: str) -> None:
        logger.warning("Speech recognition error: %s", error)
        if error != "no-speech" and self.state is VoiceState.LISTENING:
            self.state = VoiceState.STOPPING
            self.interim = ""
