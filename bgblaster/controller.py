"""
UI state machine for the single-page app.

`reduce(state, event)` is a pure transition function with no rendering
concerns; `UIController` owns the current state, serializes transitions and
drives the injected `ModelSession`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
import logging
from threading import Lock
from typing import Callable, Optional, Union
import uuid

from .compositor import ImageFile
from .errors import BackgroundRemovalError
from .model_session import ModelSession

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    LOADING = "loading"
    READY = "ready"
    PROCESSING = "processing"


@dataclass(frozen=True)
class ImageRecord:
    id: str
    source: ImageFile
    mask: Optional[ImageFile] = None
    composite: Optional[ImageFile] = None

    @property
    def processed(self) -> bool:
        return self.mask is not None and self.composite is not None


@dataclass(frozen=True)
class UIState:
    phase: Phase = Phase.LOADING
    image: Optional[ImageRecord] = None
    model_ready: bool = False
    model_error: Optional[str] = None

    @property
    def view(self) -> str:
        if self.phase is Phase.LOADING:
            return "loading"
        if self.phase is Phase.PROCESSING:
            return "processing"
        if self.image is None:
            return "no_image"
        return "processed" if self.image.processed else "image_selected"

    @property
    def can_process(self) -> bool:
        return self.phase is Phase.READY and self.image is not None and self.model_ready


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelLoadFinished:
    ok: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class ImageSelected:
    record: ImageRecord


@dataclass(frozen=True)
class ProcessStarted:
    pass


@dataclass(frozen=True)
class ProcessSucceeded:
    image_id: str
    mask: ImageFile
    composite: ImageFile


@dataclass(frozen=True)
class ProcessFailed:
    image_id: str
    error: str


Event = Union[ModelLoadFinished, ImageSelected, ProcessStarted, ProcessSucceeded, ProcessFailed]


def reduce(state: UIState, event: Event) -> UIState:
    """Return the next state; `state` itself when the event does not apply."""
    if isinstance(event, ModelLoadFinished):
        if state.phase is not Phase.LOADING:
            return state
        return replace(state, phase=Phase.READY, model_ready=event.ok, model_error=event.error)

    if isinstance(event, ImageSelected):
        if state.phase is not Phase.READY:
            return state
        return replace(state, image=event.record)

    if isinstance(event, ProcessStarted):
        if not state.can_process:
            return state
        return replace(state, phase=Phase.PROCESSING)

    if isinstance(event, ProcessSucceeded):
        if state.phase is not Phase.PROCESSING or state.image is None or state.image.id != event.image_id:
            return state
        image = replace(state.image, mask=event.mask, composite=event.composite)
        return replace(state, phase=Phase.READY, image=image)

    if isinstance(event, ProcessFailed):
        if state.phase is not Phase.PROCESSING:
            return state
        return replace(state, phase=Phase.READY)

    raise TypeError(f"unknown event {event!r}")


def _new_image_id() -> str:
    return uuid.uuid4().hex


class UIController:
    def __init__(self, session: ModelSession, id_factory: Callable[[], str] = _new_image_id):
        self._session = session
        self._id_factory = id_factory
        self._state = UIState()
        self._lock = Lock()

    @property
    def session(self) -> ModelSession:
        return self._session

    @property
    def state(self) -> UIState:
        return self._state

    def dispatch(self, event: Event) -> UIState:
        with self._lock:
            self._state = reduce(self._state, event)
            return self._state

    def start(self) -> UIState:
        """Initialize the session and leave LOADING whether or not it worked."""
        try:
            ok = self._session.initialize()
            error = None if ok else "Failed to initialize background removal model"
        except BackgroundRemovalError as exc:
            logger.error("Background removal model unavailable: %s", exc)
            ok, error = False, str(exc)
        return self.dispatch(ModelLoadFinished(ok=ok, error=error))

    def select_image(self, name: str, data: bytes, content_type: str) -> Optional[ImageRecord]:
        """Replace the current image. Returns None when uploads are not accepted right now."""
        record = ImageRecord(
            id=self._id_factory(),
            source=ImageFile(name=name, data=data, content_type=content_type),
        )
        state = self.dispatch(ImageSelected(record))
        if state.image is not record:
            return None
        logger.info("Selected image %s (%s, %d bytes)", record.id, name, len(data))
        return record

    def process(self) -> bool:
        """
        Run background removal on the current image.

        Returns True when the record now carries a mask and composite. On
        failure the error is logged and the state returns to the selected image.
        """
        with self._lock:
            started = reduce(self._state, ProcessStarted())
            if started is self._state:
                return False
            self._state = started
        record = started.image

        try:
            result = self._session.run(record.source)
        except BackgroundRemovalError as exc:
            logger.error("Error processing image %s: %s", record.id, exc)
            self.dispatch(ProcessFailed(image_id=record.id, error=str(exc)))
            return False

        self.dispatch(ProcessSucceeded(image_id=record.id, mask=result.mask, composite=result.composite))
        logger.info("Processed image %s", record.id)
        return True
