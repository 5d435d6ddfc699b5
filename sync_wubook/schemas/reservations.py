from typing import Any, Optional, Union

from pydantic import BaseModel, Field


class ActorPayload(BaseModel):
    uid: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None


class ReservationActionPayload(BaseModel):
    """
    Schema for a host action on one reservation.

    The payload is action specific: `when` for checkin/checkout/contact,
    `text` for addNote, `amount`/`currency`/`method` for addPayment and the
    breakdown fields for setToPay (legacy names accepted).
    """

    action: str = Field(..., description="checkin, checkout, contact, addNote, addPayment, setToPay")
    payload: dict[str, Any] = Field(default_factory=dict, description="Action input")
    actor: Union[ActorPayload, str, None] = Field(None, description="Who performed the action")
