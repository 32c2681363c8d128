from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple

from core.models import ActionResult, ActionType, Candidate, MediaType


MOVIE_MANAGER = 'movie-manager'
SERIES_MANAGER = 'series-manager'

# What a candidate records in actionTaken for each executed action type
ACTION_TAKEN = {
    ActionType.FLAG_FOR_REVIEW: 'DELETED',
    ActionType.AUTO_DELETE: 'DELETED',
    ActionType.UNMONITOR_AND_DELETE: 'UNMONITORED_AND_DELETED',
    ActionType.UNMONITOR_AND_KEEP: 'UNMONITORED',
    ActionType.DO_NOTHING: 'NONE',
}

DELETING_ACTIONS = (ActionType.FLAG_FOR_REVIEW, ActionType.AUTO_DELETE, ActionType.UNMONITOR_AND_DELETE)


@dataclass
class ActionsDeps:
    # (service, manager id, delete_files) -> ActionResult
    delete_media: Callable[[str, int, bool], Awaitable[ActionResult]]
    # (service, manager id) -> ActionResult
    unmonitor_media: Callable[[str, int], Awaitable[ActionResult]]
    event_bus: Any  # expects .log(event, **fields)
    debug_logging: bool
    dry_run: bool


def target_for(candidate: Candidate) -> Tuple[str, Optional[int]]:
    """Raises ValueError for media types the managers cannot act on individually.

    Episodes only carry their parent series id, so acting on one would hit the whole series.
    """
    if candidate.media_type == MediaType.MOVIE:
        return MOVIE_MANAGER, candidate.movie_manager_id
    if candidate.media_type == MediaType.TV_SERIES:
        return SERIES_MANAGER, candidate.series_manager_id
    raise ValueError(f'unsupported media type: {candidate.media_type.value}')


def _unsupported(candidate: Candidate, deps: ActionsDeps) -> Optional[ActionResult]:
    try:
        target_for(candidate)
    except ValueError as e:
        deps.event_bus.log('action_refused', id=candidate.id, title=candidate.title, reason=str(e))
        return ActionResult(success=False, error=str(e))
    return None


async def delete_media(candidate: Candidate, delete_files: bool, deps: ActionsDeps) -> ActionResult:
    refused = _unsupported(candidate, deps)
    if refused is not None:
        return refused
    service, media_id = target_for(candidate)
    if media_id is None:
        return ActionResult(success=False, error=f'no {service} match')
    if deps.dry_run:
        deps.event_bus.log('dry_delete', service=service, id=media_id, title=candidate.title, delete_files=delete_files)
        return ActionResult(success=True)
    result = await deps.delete_media(service, media_id, delete_files)
    if deps.debug_logging:
        logging.info(
            f"Actions: delete {service} id={media_id} title={candidate.title} files={delete_files} "
            f"success={result.success} not_found={result.not_found}"
        )
    return result


async def unmonitor_media(candidate: Candidate, deps: ActionsDeps) -> ActionResult:
    refused = _unsupported(candidate, deps)
    if refused is not None:
        return refused
    service, media_id = target_for(candidate)
    if media_id is None:
        return ActionResult(success=False, error=f'no {service} match')
    if deps.dry_run:
        deps.event_bus.log('dry_unmonitor', service=service, id=media_id, title=candidate.title)
        return ActionResult(success=True)
    result = await deps.unmonitor_media(service, media_id)
    if deps.debug_logging:
        logging.info(f"Actions: unmonitor {service} id={media_id} title={candidate.title} success={result.success}")
    return result


async def execute_action(
    candidate: Candidate,
    action_type: ActionType,
    delete_files: bool,
    deps: ActionsDeps,
) -> ActionResult:
    if action_type == ActionType.DO_NOTHING:
        return ActionResult(success=True)
    if action_type in (ActionType.UNMONITOR_AND_DELETE, ActionType.UNMONITOR_AND_KEEP):
        result = await unmonitor_media(candidate, deps)
        # Gone upstream: nothing left to delete either
        if not result.success or result.not_found or action_type == ActionType.UNMONITOR_AND_KEEP:
            return result
    return await delete_media(candidate, delete_files, deps)
