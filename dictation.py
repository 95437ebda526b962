"""
Speech dictation state machine.

Recognition itself runs in the browser; the client forwards recognition
events here. Each dictation target has exactly one session, which moves
Idle -> Listening -> (Idle | Processing) -> Idle. A start is refused unless
the session is Idle.
"""

import logging
import threading
from enum import Enum
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

ACCOUNT_TARGET = "account"
NOTES_TARGET = "notes"
TARGETS = (ACCOUNT_TARGET, NOTES_TARGET)


class DictationStatus(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"


class DictationBusyError(Exception):
    """A dictation session was started while another was still running."""


class DictationSession:
    def __init__(self, target: str, locale: str = "en-US"):
        self.target = target
        self.locale = locale
        self.state = DictationStatus.IDLE
        self._final = ""
        self.live_transcript = ""
        self._lock = threading.Lock()

    def recognition_settings(self):
        return {"continuous": True, "interimResults": True, "lang": self.locale}

    def start(self):
        with self._lock:
            if self.state is not DictationStatus.IDLE:
                raise DictationBusyError(f"Dictation for {self.target} is already {self.state.value}")
            self.state = DictationStatus.LISTENING
            self._final = ""
            self.live_transcript = ""
        return self.recognition_settings()

    def on_result(self, results: Iterable, result_index: int = 0):
        """Apply one recognition result event.

        ``results`` is the event's full result list; entries before
        ``result_index`` were already delivered. Only final segments are kept.
        """
        with self._lock:
            if self.state is not DictationStatus.LISTENING:
                return self.live_transcript
            interim = ""
            for result in list(results)[result_index:]:
                if result.is_final:
                    self._final += result.transcript
                else:
                    interim += result.transcript
            self.live_transcript = self._final + interim
            return self.live_transcript

    def finish(self) -> Optional[str]:
        """Recognition ended. Returns the transcript to process, or None if empty."""
        with self._lock:
            if self.state is not DictationStatus.LISTENING:
                return None
            transcript = self._final.strip()
            if not transcript:
                logger.warning("Speech recognition ended with no final transcript.")
                self._reset()
                return None
            self.state = DictationStatus.PROCESSING
            return transcript

    def complete(self):
        with self._lock:
            self._reset()

    def fail(self, error: str):
        if error == "no-speech":
            logger.warning("Speech recognition for %s stopped due to no speech detected.", self.target)
        else:
            logger.error("Speech recognition error (%s): %s", self.target, error)
        with self._lock:
            self._reset()

    def _reset(self):
        self.state = DictationStatus.IDLE
        self._final = ""
        self.live_transcript = ""
