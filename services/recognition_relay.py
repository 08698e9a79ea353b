"""
Recognition engine backed by the browser's speech API on the other end of a WebSocket.

Commands for the browser are queued in ``outbox`` and flushed by the endpoint;
engine events received from the browser are fed in through ``dispatch``.
"""
from typing import Any, Dict, List, Optional

from config import logger
from services.transcript_accumulator import (
    RecognitionEngine,
    RecognitionEvent,
    RecognitionResult,
    RecognitionSession,
)


class RelaySession(RecognitionSession):
    def __init__(self, engine: "RelayRecognitionEngine", language: str, continuous: bool, interim_results: bool):
        super().__init__()
        self.engine = engine
        self.language = language
        self.continuous = continuous
        self.interim_results = interim_results

    def start(self) -> None:
        self.engine.send({
            "type": "start",
            "lang": self.language,
            "continuous": self.continuous,
            "interimResults": self.interim_results,
        })

    def stop(self) -> None:
        self.engine.send({"type": "stop"})

    def abort(self) -> None:
        self.engine.send({"type": "abort"})
        if self.engine.session is self:
            self.engine.session = None


class RelayRecognitionEngine(RecognitionEngine):
    def __init__(self, supported: bool = False):
        self.supported = supported
        self.session: Optional[RelaySession] = None
        self.outbox: List[Dict[str, Any]] = []

    def is_available(self) -> bool:
        return self.supported

    def create_session(self, language: str, continuous: bool = True, interim_results: bool = True) -> RelaySession:
        self.session = RelaySession(self, language, continuous, interim_results)
        return self.session

    def send(self, message: Dict[str, Any]) -> None:
        self.outbox.append(message)

    def drain(self) -> List[Dict[str, Any]]:
        messages, self.outbox = self.outbox, []
        return messages

    def dispatch(self, message: Dict[str, Any]) -> bool:
        """Route an engine event from the browser. Returns False for non-engine messages."""
        kind = message.get("type")
        if kind not in ("result", "error", "end"):
            return False

        session = self.session
        if session is None:
            logger.debug(f"Dropping '{kind}' event with no active recognition session")
            return True

        if kind == "result":
            if session.on_result is not None:
                session.on_result(parse_result_event(message))
        elif kind == "error":
            if session.on_error is not None:
                session.on_error(str(message.get("error") or "unknown"))
        else:
            if session.on_end is not None:
                session.on_end()
        return True


def parse_result_event(message: Dict[str, Any]) -> RecognitionEvent:
    """Convert the browser's SpeechRecognitionEvent shape into a RecognitionEvent."""
    results = [
        RecognitionResult(
            transcript=str(item.get("transcript", "")),
            is_final=bool(item.get("isFinal", False)),
        )
        for item in message.get("results", [])
    ]
    return RecognitionEvent(result_index=max(0, int(message.get("resultIndex", 0))), results=results)
