from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .security import (
    MAX_CONTEXT_BYTES,
    MAX_PAYLOAD_BYTES,
    ValidationError,
    validate_epoch_timestamp,
    validate_hex,
    validate_sender,
)


def _check(fn, *args, **kwargs):
    # pydantic only turns ValueError into a 422 detail
    try:
        return fn(*args, **kwargs)
    except ValidationError as e:
        raise ValueError(e.message) from e


class UpdateSubmission(BaseModel):
    """Body of POST /records/{name}."""
    model_config = ConfigDict(populate_by_name=True)

    data: str
    sender: str
    inception_date: int = Field(alias="inceptionDate")
    signature: str
    context: Optional[str] = None

    @field_validator("data")
    @classmethod
    def _data(cls, v):
        return _check(validate_hex, v, "data", max_bytes=MAX_PAYLOAD_BYTES)

    @field_validator("sender")
    @classmethod
    def _sender(cls, v):
        return _check(validate_sender, v)

    @field_validator("inception_date", mode="before")
    @classmethod
    def _inception(cls, v):
        return _check(validate_epoch_timestamp, v, "inceptionDate")

    @field_validator("signature")
    @classmethod
    def _signature(cls, v):
        return _check(validate_hex, v, "signature", max_bytes=128)

    @field_validator("context")
    @classmethod
    def _context(cls, v):
        if v is None:
            return v
        return _check(validate_hex, v, "context", max_bytes=MAX_CONTEXT_BYTES)


class ConfirmRequest(BaseModel):
    """Body of POST /records/{name}/confirm."""
    context: Optional[str] = None

    @field_validator("context")
    @classmethod
    def _context(cls, v):
        if v is None:
            return v
        return _check(validate_hex, v, "context", max_bytes=MAX_CONTEXT_BYTES)


class HealthStatus(BaseModel):
    status: str
    env: str
    checks: Dict[str, bool]
    db: Dict[str, int]
    failing: List[str] = Field(default_factory=list)
