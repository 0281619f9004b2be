"""In-process counters for the health endpoint and logs."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

from altwatch.core.models import ItemOutcome


@dataclass(slots=True)
class ProcessingStats:
    """Counts of stream events and item outcomes since startup.

    Mutated only from the event loop thread.
    """

    events_seen: int = 0
    events_dispatched: int = 0
    duplicates: int = 0
    foreign: int = 0
    malformed: int = 0
    events_completed: int = 0
    outcomes: Counter[ItemOutcome] = field(default_factory=Counter)

    def record(self, outcome: ItemOutcome) -> None:
        """Count one item outcome."""
        self.outcomes[outcome] += 1

    def as_dict(self) -> dict[str, object]:
        """Render the counters as JSON-friendly data."""
        return {
            "events_seen": self.events_seen,
            "events_dispatched": self.events_dispatched,
            "duplicates": self.duplicates,
            "foreign": self.foreign,
            "malformed": self.malformed,
            "events_completed": self.events_completed,
            "items": {outcome.value: self.outcomes[outcome] for outcome in ItemOutcome},
        }
