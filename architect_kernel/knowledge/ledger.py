"""
Knowledge Ledger — append-only, title-deduplicated learned facts.

Behavioral Contract:
- The title of an incoming note is the text before its first ':'.
- An incoming note whose title already exists is dropped. Existing
  entries are never merged or overwritten.
- Appending is a pure function of the ledger and the note. The caller
  injects the timestamp (and optionally the id).
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence
from uuid import uuid4

from architect_kernel.models.knowledge import (
    GroundingLink,
    KnowledgeCategory,
    KnowledgeEntry,
)


DEFAULT_TITLE = "Synthesis Logic"


def derive_title(note: Optional[str]) -> str:
    """Title candidate for a learning note."""
    if not note:
        return DEFAULT_TITLE
    title = note.split(":", 1)[0].strip()
    return title or DEFAULT_TITLE


def find_entry(ledger: Sequence[KnowledgeEntry], title: str) -> Optional[KnowledgeEntry]:
    """Entry with exactly this title, if any."""
    return next((e for e in ledger if e.title == title), None)


def append_entry(
    ledger: Sequence[KnowledgeEntry],
    note: str,
    category: KnowledgeCategory,
    iteration: int,
    links: Optional[Sequence[GroundingLink]] = None,
    *,
    timestamp: datetime,
    entry_id: Optional[str] = None,
) -> List[KnowledgeEntry]:
    """
    Return the ledger with ``note`` appended.

    If an entry with the derived title exists, the returned ledger holds
    the same entries as the input.
    """
    title = derive_title(note)
    if find_entry(ledger, title) is not None:
        return list(ledger)

    entry = KnowledgeEntry(
        id=entry_id or f"kn_{uuid4().hex[:12]}",
        title=title,
        description=note,
        category=category,
        iteration=iteration,
        timestamp=timestamp,
        links=list(links or []),
    )
    return [*ledger, entry]


def entries_by_category(
    ledger: Sequence[KnowledgeEntry],
) -> Dict[KnowledgeCategory, List[KnowledgeEntry]]:
    """Group ledger entries by category, preserving ledger order."""
    grouped: Dict[KnowledgeCategory, List[KnowledgeEntry]] = {
        c: [] for c in KnowledgeCategory
    }
    for entry in ledger:
        grouped[entry.category].append(entry)
    return grouped
