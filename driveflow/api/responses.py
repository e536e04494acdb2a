# driveflow/api/responses.py
from typing import Type, TypeVar

from fastapi import HTTPException
from loguru import logger
from pydantic import BaseModel, ValidationError

ResponseT = TypeVar("ResponseT", bound=BaseModel)


def validate_document_response(doc: BaseModel, schema: Type[ResponseT]) -> ResponseT:
    """Dump a stored document to JSON-safe data (ObjectId -> str) and validate it into ``schema``."""
    doc_id = getattr(doc, "id", None)
    if doc_id is None:
        raise HTTPException(status_code=500, detail="Stored record has no ID.")
    try:
        data = doc.model_dump(mode="json")
        data.pop("_id", None)
        data["id"] = str(doc_id)
        return schema.model_validate(data)
    except ValidationError as ve:
        logger.error(f"[{doc_id}] {schema.__qualname__} validation failed: {ve}")
        raise HTTPException(status_code=500, detail="Error preparing response.") from ve
