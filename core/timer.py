import threading
import time
from typing import Callable, Dict


def format_time(seconds: int) -> str:
    # MM:SS, minutes keep growing past 59.
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes:02d}:{secs:02d}"


class QuestionTimer:
    """Session-wide and per-question elapsed seconds.

    Whole seconds are taken from ``clock`` while the timer runs; ``tick`` adds
    seconds directly. Both counters always grow together, so the saved
    per-question times plus the current segment equal the total.
    """

    def __init__(self, initial_index: int = 0, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._running = False
        self._mark = 0.0
        self.current_index = initial_index
        self.question_seconds = 0
        self.total_seconds = 0
        self._saved: Dict[int, int] = {}

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if not self._running:
                self._running = True
                self._mark = self._clock()

    def stop(self) -> None:
        with self._lock:
            self._advance()
            self._running = False

    def tick(self, seconds: int = 1) -> None:
        with self._lock:
            self._add(seconds)

    def advance(self) -> None:
        with self._lock:
            self._advance()

    def switch_to_question(self, new_index: int) -> None:
        with self._lock:
            self._advance()
            previous = self.current_index
            self._saved[previous] = self._saved.get(previous, 0) + self.question_seconds
            self.current_index = new_index
            self.question_seconds = 0

    @property
    def question_times(self) -> Dict[int, int]:
        with self._lock:
            return dict(self._saved)

    def seconds_for(self, index: int) -> int:
        with self._lock:
            extra = self.question_seconds if index == self.current_index else 0
            return self._saved.get(index, 0) + extra

    def cumulative_times(self, count: int) -> Dict[int, int]:
        return {index: self.seconds_for(index) for index in range(count)}

    @property
    def formatted_question_time(self) -> str:
        return format_time(self.question_seconds)

    @property
    def formatted_total_time(self) -> str:
        return format_time(self.total_seconds)

    def formatted_time_for(self, index: int) -> str:
        return format_time(self.seconds_for(index))

    def _advance(self) -> None:
        if not self._running:
            return
        now = self._clock()
        whole = int(now - self._mark)
        if whole > 0:
            # Keep the fractional remainder for the next observation.
            self._mark += whole
            self._add(whole)

    def _add(self, seconds: int) -> None:
        if seconds <= 0:
            return
        self.question_seconds += seconds
        self.total_seconds += seconds
