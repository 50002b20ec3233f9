"""
Section state machine for the proposal wizard.

Pure and synchronous: given where the user is, what they asked for and the data
already persisted, it returns the next step or raises. Persisting the result is the
persistence coordinator's job.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional

from errors import StateTransitionError, ValidationError
from models.enums import EventType, FileRole, Section, WizardStep
from services.requirements import event_step_for, missing_for

logger = logging.getLogger(__name__)


class WizardAction(str, Enum):
    START = "start"
    NEXT = "next"
    PREVIOUS = "previous"
    CONTINUE_EDITING = "continue_editing"
    SELECT_EVENT_TYPE = "select_event_type"
    RESET = "reset"


FORWARD_ACTIONS = frozenset({WizardAction.NEXT})

_EVENT_TYPE_ALIASES = {
    "school": EventType.SCHOOL_BASED,
    "community": EventType.COMMUNITY_BASED,
}


@dataclass(frozen=True)
class Transition:
    source: WizardStep
    target: WizardStep
    action: WizardAction
    event_type: Optional[EventType]

    @property
    def stored_section(self) -> Section:
        return self.target.stored_section


def parse_event_type(value: Any) -> Optional[EventType]:
    """Known event type for ``value``, or None when it is not a supported selection."""
    if isinstance(value, EventType):
        return value
    if not isinstance(value, str):
        return None
    value = value.strip().lower()
    try:
        return EventType(value)
    except ValueError:
        return _EVENT_TYPE_ALIASES.get(value)


def step_for_section(section: Section | str) -> WizardStep:
    return WizardStep(Section(section).value)


def _edge(step: WizardStep, action: WizardAction, event_type: Optional[EventType]) -> Optional[WizardStep]:
    if action is WizardAction.RESET:
        return WizardStep.OVERVIEW
    if step is WizardStep.OVERVIEW:
        if action in (WizardAction.START, WizardAction.NEXT):
            return WizardStep.EVENT_TYPE_SELECTION
        if action is WizardAction.CONTINUE_EDITING:
            return WizardStep.ORG_INFO
    elif step is WizardStep.EVENT_TYPE_SELECTION:
        if action in (WizardAction.SELECT_EVENT_TYPE, WizardAction.NEXT):
            return WizardStep.ORG_INFO
        if action is WizardAction.PREVIOUS:
            return WizardStep.OVERVIEW
    elif step is WizardStep.ORG_INFO:
        if action is WizardAction.NEXT:
            return event_step_for(event_type)
        if action is WizardAction.PREVIOUS:
            return WizardStep.EVENT_TYPE_SELECTION
    elif step in (WizardStep.SCHOOL_EVENT, WizardStep.COMMUNITY_EVENT):
        if action is WizardAction.NEXT:
            return WizardStep.REPORTING
        if action is WizardAction.PREVIOUS:
            return WizardStep.ORG_INFO
    elif step is WizardStep.REPORTING:
        if action is WizardAction.PREVIOUS:
            return event_step_for(event_type)
    return None


def transition(
    step: WizardStep,
    action: WizardAction | str,
    snapshot: dict[str, Any],
    attachments: Iterable[FileRole | str] = (),
    chosen_event_type: Any = None,
) -> Transition:
    """
    Compute the transition for ``action`` from ``step``.

    Raises StateTransitionError for an edge that does not exist and ValidationError,
    listing every missing field, when a forward move leaves a section incomplete.
    """
    step = WizardStep(step)
    try:
        action = WizardAction(action)
    except ValueError:
        raise StateTransitionError(f"Unknown wizard action '{action}'", source=step.value, action=str(action)) from None

    event_type = parse_event_type(snapshot.get("event_type"))
    if action is WizardAction.SELECT_EVENT_TYPE:
        chosen = parse_event_type(chosen_event_type)
        if chosen is None:
            logger.warning("Unsupported event type selection %r; routing to orgInfo", chosen_event_type)
        else:
            event_type = chosen

    target = _edge(step, action, event_type)
    if target is None:
        raise StateTransitionError(
            f"Cannot '{action.value}' from section '{step.value}'",
            source=step.value,
            action=action.value,
        )

    if action in FORWARD_ACTIONS:
        missing = missing_for(step, {**snapshot, "event_type": event_type}, attachments)
        if missing:
            raise ValidationError(
                f"Section '{step.value}' is incomplete: missing {', '.join(missing)}",
                missing,
            )

    return Transition(source=step, target=target, action=action, event_type=event_type)
