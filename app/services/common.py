import uuid

from app.errors import ValidationError


def coerce_uuid(value):
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def parse_uuid(value, field: str):
    """Coerce a client-supplied id, rejecting malformed values with a 400."""
    try:
        return coerce_uuid(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field}", details={"field": field})


def apply_pagination(query, limit, offset):
    return query.limit(limit).offset(offset)
