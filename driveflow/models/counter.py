# driveflow/models/counter.py
from beanie import Document


class SequenceCounter(Document):
    """Last issued value of a named sequence. ``_id`` holds the sequence name."""
    id: str
    value: int = 0

    class Settings:
        name = "sequence_counters"
