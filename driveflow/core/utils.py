# driveflow/core/utils.py
import logging
from datetime import datetime, timezone
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from driveflow.core.exceptions import UpstreamError
from driveflow.models.counter import SequenceCounter

logger = logging.getLogger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Mongo returns naive datetimes; treat them as UTC so they compare with aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def get_next_sequence_value(sequence_name: str, start: int = 1) -> int:
    """
    Atomically increments the named counter and returns the new value.
    The first call for a sequence returns ``start``.
    """
    collection = SequenceCounter.get_motor_collection()
    try:
        updated_doc = await collection.find_one_and_update(
            {"_id": sequence_name},
            {"$inc": {"value": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError as e:
        logger.error(f"Error incrementing sequence '{sequence_name}': {e}", exc_info=True)
        raise UpstreamError(f"Could not allocate next value for '{sequence_name}'") from e

    if not updated_doc or "value" not in updated_doc:
        logger.error(f"CRITICAL: sequence '{sequence_name}' returned no document after upsert.")
        raise UpstreamError(f"Could not allocate next value for '{sequence_name}'")

    next_value = start - 1 + updated_doc["value"]
    logger.debug(f"Next sequence value for '{sequence_name}': {next_value}")
    return next_value
