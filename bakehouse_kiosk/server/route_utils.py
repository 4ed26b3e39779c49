import uuid
from typing import Any

from pydantic import BaseModel


def extract_client_id(prefix: str, client_id: str | None = None) -> str:
    """
    If the caller provided a client_id, use it.
    If not, generate a short readable one like 'orders-a3f2c1d0'.
    This prevents anonymous connections from cluttering logs.
    """
    if client_id:
        return client_id
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def bearer_subject(authorization: str | None) -> str | None:
    """The raw bearer token, used only to scope stream fan-out per user."""
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


def envelope(message: str, data: Any = None) -> dict:
    """The `{success, message, data}` body every JSON route returns."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    return {"success": True, "message": message, "data": data}
