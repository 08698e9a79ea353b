from dataclasses import dataclass
from typing import Callable, Optional

from config import logger
from models.schemas import TranscriptState
from services.errors import PrescriptionError, RecognitionError
from services.transcript_accumulator import RecognitionEngine, TranscriptAccumulator


@dataclass
class Notification:
    title: str
    description: str
    variant: str = "default"  # "default" or "destructive"


class DictationController:
    """
    Toggle and text-field synchronization for the notes dictation card.

    Dictated results and manual edits both overwrite the shared notes field;
    whichever arrives last wins.
    """

    def __init__(
        self,
        engine: Optional[RecognitionEngine],
        text_sink: Callable[[str], None],
        notifier: Callable[[Notification], None],
        initial_text: str = "",
        language: Optional[str] = None,
    ):
        self.text = initial_text
        self.text_sink = text_sink
        self.notifier = notifier
        self.accumulator = TranscriptAccumulator(
            engine,
            on_result=self._handle_result,
            on_error=self._handle_error,
            language=language,
        )

    @property
    def is_listening(self) -> bool:
        return self.accumulator.is_listening

    @property
    def state(self) -> TranscriptState:
        return self.accumulator.state

    def toggle(self) -> None:
        try:
            if self.accumulator.is_listening:
                self.accumulator.stop()
            else:
                self.accumulator.start()
        except PrescriptionError as e:
            self._notify_error(e)

    def edit_text(self, value: str) -> None:
        """Manual typing replaces the field verbatim."""
        self.text = value
        self.text_sink(value)

    def close(self) -> None:
        self.accumulator.close()

    def _handle_result(self, text: str) -> None:
        self.text = text
        self.text_sink(text)

    def _handle_error(self, error: RecognitionError) -> None:
        self._notify_error(error)

    def _notify_error(self, error: PrescriptionError) -> None:
        logger.warning(f"Dictation error surfaced to user: {error.message}")
        self.notifier(Notification(title=error.title, description=error.message, variant="destructive"))
