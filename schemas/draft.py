from typing import Literal, Optional

from pydantic import BaseModel, Field

from models.enums import EventType, WizardStep


class DraftCreate(BaseModel):
    event_type: EventType = Field(EventType.SCHOOL_BASED, alias="eventType")
    original_descriptive_id: Optional[str] = Field(None, alias="originalDescriptiveId", max_length=128)

    model_config = {"populate_by_name": True}


class EventTypeUpdate(BaseModel):
    event_type: EventType = Field(..., alias="eventType")

    model_config = {"populate_by_name": True}


class WizardTransitionRequest(BaseModel):
    action: Literal["start", "next", "previous", "continue_editing", "select_event_type", "reset"]
    # Client-side step; must agree with the persisted section (eventTypeSelection is stored as overview)
    step: Optional[WizardStep] = None
    # Raw string: unknown selections are routed by the state machine, not rejected here
    event_type: Optional[str] = Field(None, alias="eventType")

    model_config = {"populate_by_name": True}
