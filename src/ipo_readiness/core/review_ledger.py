"""Append-only review history attached to an assessment.

The ledger is an immutable value: ``append`` returns a new ledger and never
touches existing entries. There is deliberately no removal operation.
"""

from collections.abc import Iterator
from datetime import datetime
from typing import Any

from ipo_readiness.core.domain import ReviewAction, ReviewEntry


class ReviewLedger:
    """Chronological, read-only sequence of ReviewEntry records."""

    __slots__ = ("_entries",)

    def __init__(self, entries: tuple[ReviewEntry, ...] | list[ReviewEntry] = ()) -> None:
        self._entries: tuple[ReviewEntry, ...] = tuple(entries)

    @property
    def entries(self) -> tuple[ReviewEntry, ...]:
        """All entries in insertion order."""
        return self._entries

    @property
    def latest(self) -> ReviewEntry | None:
        """The most recent entry, or None for an unreviewed assessment."""
        return self._entries[-1] if self._entries else None

    def append(self, entry: ReviewEntry) -> "ReviewLedger":
        """Return a new ledger with ``entry`` added at the end.

        Args:
            entry: The reviewer decision to record.

        Returns:
            A new ReviewLedger; this ledger is left unchanged.
        """
        return ReviewLedger(self._entries + (entry,))

    def __iter__(self) -> Iterator[ReviewEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def to_records(self) -> list[dict[str, Any]]:
        """Serialise to JSON-compatible dicts for persistence."""
        return [
            {
                "reviewed_at": entry.reviewed_at.isoformat(),
                "action": entry.action.value,
                "comments": entry.comments,
                "reviewer_id": entry.reviewer_id,
                "reviewer_name": entry.reviewer_name,
            }
            for entry in self._entries
        ]

    @classmethod
    def from_records(cls, records: list[dict[str, Any]] | None) -> "ReviewLedger":
        """Rebuild a ledger from ``to_records`` output."""
        return cls(
            tuple(
                ReviewEntry(
                    reviewed_at=datetime.fromisoformat(record["reviewed_at"]),
                    action=ReviewAction(record["action"]),
                    comments=record.get("comments") or "",
                    reviewer_id=record["reviewer_id"],
                    reviewer_name=record.get("reviewer_name") or "",
                )
                for record in records or []
            )
        )
