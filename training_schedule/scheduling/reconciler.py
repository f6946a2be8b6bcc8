"""Reconcile invitation records against the generated schedule."""
import logging
from collections.abc import Iterable
from datetime import UTC, date, datetime

from training_schedule.scheduling.types import Invitation

logger = logging.getLogger(__name__)


def reconcile(
    definition_id: str,
    occurrence_dates: Iterable[date],
    target_user_ids: Iterable[str],
    existing_invitations: Iterable[Invitation],
    now: datetime | None = None,
) -> list[Invitation]:
    """
    Propose the invitations missing for occurrences × audience.

    Every (occurrence date, user) pair whose (event, user, date) key is not
    already among ``existing_invitations`` yields one ``pending`` invitation.
    Nothing is written here: the caller persists the result, and if only part
    of it makes it to the database the next call simply proposes the rest.
    Calling again after the result has been persisted returns an empty list.
    """
    created_at = now or datetime.now(UTC)
    known = {inv.key for inv in existing_invitations}
    users = list(dict.fromkeys(target_user_ids))

    to_create = []
    for occurrence_date in occurrence_dates:
        for user_id in users:
            key = (definition_id, user_id, occurrence_date)
            if key in known:
                continue
            known.add(key)
            to_create.append(
                Invitation(
                    event_id=definition_id,
                    user_id=user_id,
                    occurrence_date=occurrence_date,
                    status="pending",
                    created_at=created_at,
                )
            )

    if to_create:
        logger.debug(f"Reconciliation for {definition_id} proposes {len(to_create)} invitations")
    return to_create
