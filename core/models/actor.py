"""Explicit caller identity passed into invoice operations."""

from uuid import UUID

from pydantic import BaseModel


class ActorContext(BaseModel):
    """
    Who is performing an operation.

    Resolved by the HTTP layer from the authenticated session and passed
    down explicitly; services never look it up themselves.
    """

    actor_id: UUID
    display_name: str | None = None

    model_config = {"frozen": True}
