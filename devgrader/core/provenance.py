"""Append-only JSONL provenance log for grading runs."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List

from pydantic import BaseModel, Field


class ProvenanceEvent(BaseModel):
    """Structured record for grader activity."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    stage: str = Field(..., description="Grader stage, e.g. 'grade', 'bootstrap' or 'bank_verify'.")
    message: str = Field(..., description="Human-readable description of the event.")
    agent: str = Field(default="devgrader")
    challenge_id: str | None = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class ProvenanceLogger:
    """Append-only JSONL logger; one line per event."""

    def __init__(self, output_path: Path):
        self.output_path = output_path
        self.output_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, event: ProvenanceEvent | Dict[str, Any]) -> ProvenanceEvent:
        """Write a single event to disk and return the normalized object."""
        if not isinstance(event, ProvenanceEvent):
            event = ProvenanceEvent(**event)
        line = event.model_dump_json()
        with self.output_path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
        return event

    def extend(self, events: Iterable[ProvenanceEvent | Dict[str, Any]]) -> None:
        """Batch-write multiple events."""
        for event in events:
            self.log(event)

    def read(self, *, stage: str | None = None) -> List[ProvenanceEvent]:
        """Return logged events in write order, optionally filtered by stage."""
        if not self.output_path.exists():
            return []
        events: List[ProvenanceEvent] = []
        with self.output_path.open("r", encoding="utf-8") as handle:
            for line in handle:
                if not line.strip():
                    continue
                event = ProvenanceEvent.model_validate_json(line)
                if stage is None or event.stage == stage:
                    events.append(event)
        return events


__all__ = ["ProvenanceEvent", "ProvenanceLogger"]
