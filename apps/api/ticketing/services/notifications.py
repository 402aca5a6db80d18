"""
Dispatch of post-registration side effects.

Each side effect is submitted as its own Celery task. A failed submission
(broker down, serialisation error) is logged and skipped so it can neither
fail the registration nor stop the remaining submissions.
"""
from __future__ import annotations

from typing import Any

import structlog

from ticketing.models import Event, EventParticipant, Ticket, User
from ticketing.worker import tasks

logger = structlog.get_logger(__name__)


def _submit(task: Any, *args: Any) -> bool:
    try:
        task.delay(*args)
    except Exception:
        logger.warning("side_effect_dispatch_failed", task=task.name, exc_info=True)
        return False
    return True


def dispatch_registration_side_effects(
    *,
    user: User,
    event: Event,
    participant: EventParticipant,
    ticket: Ticket | None,
) -> int:
    """Queue confirmation emails, the host notice, the in-app notification and analytics.

    Returns how many submissions were accepted.
    """
    event_id = str(event.id)
    user_id = str(user.id)
    ticket_id = str(ticket.id) if ticket else None
    submitted = 0

    if user.email:
        submitted += _submit(tasks.send_registration_email, user.email, user.name, event_id, ticket_id)
    for person in participant.additional_persons or []:
        person_email = (person or {}).get("email")
        if person_email:
            submitted += _submit(
                tasks.send_registration_email, person_email, person.get("name"), event_id, ticket_id
            )

    submitted += _submit(tasks.send_host_notification, event_id, user_id, participant.quantity)
    submitted += _submit(
        tasks.create_registration_notification,
        user_id,
        event_id,
        ticket_id,
        ticket.ticket_number if ticket else None,
        participant.quantity,
        str(participant.amount_paid) if participant.amount_paid is not None else None,
    )
    submitted += _submit(tasks.update_registration_analytics, user_id, event_id)

    logger.info("registration_side_effects_dispatched", event_id=event_id, user_id=user_id, submitted=submitted)
    return submitted
