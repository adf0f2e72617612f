import logging
from contextlib import contextmanager
from typing import Callable, Dict, Optional

from services.errors import MediaUnavailable


logger = logging.getLogger(__name__)


class MediaHandle:
    """An acquired device track; ``stop`` releases it."""

    def __init__(self, kind: str, release: Optional[Callable[[], None]] = None):
        self.kind = kind
        self._release = release
        self.stopped = False

    def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True
        if self._release is not None:
            self._release()


def no_devices(kind: str) -> MediaHandle:
    raise MediaUnavailable(f"No {kind} device available")


class MediaSession:
    """Camera and microphone handles held by one interview session."""

    def __init__(self, acquire: Callable[[str], MediaHandle] = no_devices):
        self._acquire = acquire
        self.handles: Dict[str, MediaHandle] = {}

    def is_on(self, kind: str) -> bool:
        return kind in self.handles

    def enable(self, kind: str) -> MediaHandle:
        if kind in self.handles:
            return self.handles[kind]
        handle = self._acquire(kind)
        self.handles[kind] = handle
        return handle

    def disable(self, kind: str) -> None:
        handle = self.handles.pop(kind, None)
        if handle is not None:
            handle.stop()

    def toggle(self, kind: str) -> bool:
        if self.is_on(kind):
            self.disable(kind)
            return False
        self.enable(kind)
        return True

    def release_all(self) -> None:
        for kind in list(self.handles):
            try:
                self.disable(kind)
            except Exception:
                logger.exception("Failed to release %s handle", kind)


@contextmanager
def held_media(media: MediaSession):
    try:
        yield media
    finally:
        media.release_all()
