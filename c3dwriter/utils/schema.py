"""Pydantic models for writer configuration and events."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from c3dwriter.storage.format import DEFAULT_FRAME_RATE, DEFAULT_SCALE_FACTOR


class WriterConfig(BaseModel):
    """Session settings applied to a writer before the file is opened.

    A negative ``scale_factor`` stores frames as float32; otherwise frames
    are int16 values scaled by ``scale_factor``.
    """

    point_labels: list[str] = Field(default_factory=list)
    point_rate: float = DEFAULT_FRAME_RATE
    analog_labels: list[str] = Field(default_factory=list)
    analog_rate: float | None = None  # defaults to point_rate
    scale_factor: float = DEFAULT_SCALE_FACTOR
    events_enabled: bool = False

    @field_validator("point_rate")
    @classmethod
    def positive_rate(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"point_rate must be positive, got {v}")
        return v

    @field_validator("scale_factor")
    @classmethod
    def nonzero_scale(cls, v: float) -> float:
        if v == 0:
            raise ValueError("scale_factor cannot be 0")
        return v

    @property
    def effective_analog_rate(self) -> float:
        return self.analog_rate if self.analog_rate is not None else self.point_rate

    @property
    def analog_samples_per_frame(self) -> int:
        """Analog samples per channel in each frame record."""
        if not self.analog_labels:
            return 0
        return max(1, round(self.effective_analog_rate / self.point_rate))


class Event(BaseModel):
    """A labelled moment in the recording.

    ``frame`` is filled with the writer's current frame when left as None.
    """

    label: str = ""
    context: str = ""
    description: str = ""
    subject: str = ""
    frame: int | None = None
    icon_id: int = Field(default=0, ge=-32768, le=32767)
    generic_flag: int = Field(default=0, ge=0, le=255)

    def time(self, frame_rate: float) -> tuple[int, float]:
        """Event time as (whole minutes, remaining seconds)."""
        t = (self.frame or 0) / frame_rate
        minutes = int(t) // 60
        return minutes, t - minutes * 60


class EventContext(BaseModel):
    """One row of the EVENT_CONTEXT table (e.g. "Left", "Right")."""

    label: str
    description: str = ""
    icon_id: int = Field(default=0, ge=-32768, le=32767)
    colour: int = Field(default=0, ge=-32768, le=32767)


class EventLog(BaseModel):
    """Events collected during a writing session, in insertion order."""

    events: list[Event] = Field(default_factory=list)
    contexts: dict[str, EventContext] = Field(default_factory=dict)

    def add(self, event: Event) -> None:
        self.events.append(event)

    def define_context(self, context: EventContext) -> None:
        self.contexts[context.label] = context

    def distinct_contexts(self) -> list[EventContext]:
        """Contexts used by events, in order of first appearance."""
        seen: list[str] = []
        for e in self.events:
            if e.context not in seen:
                seen.append(e.context)
        return [self.contexts.get(label, EventContext(label=label)) for label in seen]

    def clear(self) -> None:
        self.events.clear()

    def __len__(self) -> int:
        return len(self.events)

    def __getitem__(self, idx: int) -> Event:
        return self.events[idx]
