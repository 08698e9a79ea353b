"""
Continuous dictation: reconciles interim and final speech results into one text value.

The recognition engine itself lives outside the process (the browser's speech
API, relayed over a WebSocket); this module only sees it through the
RecognitionEngine / RecognitionSession interfaces below.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Set

from config import settings, logger
from models.schemas import TranscriptState
from services.errors import RecognitionError, UnsupportedPlatform

UNSUPPORTED_MESSAGE = (
    "Speech recognition is not supported in this browser. Please try Chrome, Edge, or Safari."
)


@dataclass
class RecognitionResult:
    transcript: str
    is_final: bool = False


@dataclass
class RecognitionEvent:
    """A batch of results; results before result_index are unchanged since the last event."""
    result_index: int
    results: List[RecognitionResult] = field(default_factory=list)


class RecognitionSession(ABC):
    """
    Handle to one engine session.

    The engine reports back through the three handler slots; start() and stop()
    are requests whose completion is only observed through later callbacks.
    """

    def __init__(self):
        self.on_result: Optional[Callable[[RecognitionEvent], None]] = None
        self.on_error: Optional[Callable[[str], None]] = None
        self.on_end: Optional[Callable[[], None]] = None

    @abstractmethod
    def start(self) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        ...

    @abstractmethod
    def abort(self) -> None:
        """Stop immediately and discard pending results."""
        ...


class RecognitionEngine(ABC):
    @abstractmethod
    def is_available(self) -> bool:
        ...

    @abstractmethod
    def create_session(
        self,
        language: str,
        continuous: bool = True,
        interim_results: bool = True,
    ) -> RecognitionSession:
        ...


class TranscriptAccumulator:
    """
    Bridges a continuous, interim-capable recognition session to a single text value.

    Idle -> Listening -> Idle (stop) | Listening (restart on unexpected end) | Idle + error
    """

    def __init__(
        self,
        engine: Optional[RecognitionEngine],
        on_result: Callable[[str], None],
        on_end: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[RecognitionError], None]] = None,
        language: Optional[str] = None,
    ):
        self.engine = engine
        self.on_result = on_result
        self.on_end = on_end
        self.on_error = on_error
        self.language = language or settings.speech_language
        self.state = TranscriptState()
        self._session: Optional[RecognitionSession] = None
        # Result indices already committed in the current engine session
        self._committed_indices: Set[int] = set()

    @property
    def is_listening(self) -> bool:
        return self.state.is_listening

    def start(self) -> None:
        if self.state.is_listening:
            return

        if self.engine is None or not self.engine.is_available():
            self.state.error = UNSUPPORTED_MESSAGE
            logger.warning("Speech recognition requested but no engine is available")
            raise UnsupportedPlatform(UNSUPPORTED_MESSAGE)

        if self._session is not None:
            # A stopped session that has not reported its end yet
            self._release(abort=True)

        session = self.engine.create_session(self.language, continuous=True, interim_results=True)
        session.on_result = lambda event: self._handle_result(session, event)
        session.on_error = lambda error: self._handle_error(session, error)
        session.on_end = lambda: self._handle_end(session)

        self._session = session
        self._committed_indices = set()
        self.state = TranscriptState(is_listening=True)
        session.start()
        logger.info(f"Dictation started ({self.language})")

    def stop(self) -> None:
        """Request the end of dictation. Safe to call repeatedly and from any state."""
        if not self.state.is_listening:
            return
        self.state.is_listening = False
        if self._session is not None:
            self._session.stop()
        logger.info("Dictation stop requested")

    def close(self) -> None:
        """Release the session when the dictation view goes away."""
        self.state.is_listening = False
        if self._session is not None:
            self._release(abort=True)

    def _release(self, abort: bool = False) -> None:
        session, self._session = self._session, None
        if session is None:
            return
        session.on_result = None
        session.on_error = None
        session.on_end = None
        if abort:
            session.abort()

    def _handle_result(self, session: RecognitionSession, event: RecognitionEvent) -> None:
        if session is not self._session:
            return

        interim = ""
        for index in range(max(0, event.result_index), len(event.results)):
            result = event.results[index]
            if result.is_final:
                if index not in self._committed_indices:
                    self._committed_indices.add(index)
                    self.state.text += result.transcript
            else:
                interim += result.transcript

        self.state.interim = interim
        self.on_result(self.state.text + interim)

    def _handle_error(self, session: RecognitionSession, error: str) -> None:
        if session is not self._session:
            return

        message = f"Error: {error}"
        logger.error(f"Speech recognition error: {error}")
        self.state.error = message
        self.state.is_listening = False
        self.state.interim = ""
        # Fail-stop: detach first so the trailing end event cannot restart it
        self._release()
        session.stop()
        if self.on_error is not None:
            self.on_error(RecognitionError(message))

    def _handle_end(self, session: RecognitionSession) -> None:
        if session is not self._session:
            return

        if self.state.is_listening:
            logger.info("Recognition session ended unexpectedly, restarting")
            # The engine numbers results from zero again in the new run
            self._committed_indices = set()
            self.state.interim = ""
            session.start()
            return

        self._release()
        self.state = TranscriptState(error=self.state.error)
        if self.on_end is not None:
            self.on_end()
