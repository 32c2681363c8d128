from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from core.actions import ACTION_TAKEN, DELETING_ACTIONS, ActionsDeps, execute_action, target_for
from core.models import ActionResult, ActionType, Candidate, DeletionResult, ReviewStatus
from core.utils import isoformat, new_id, utcnow


@dataclass
class DeleterDeps:
    store: Any  # storage.store.MaintenanceStore
    actions: ActionsDeps
    event_bus: Any  # expects .log(event, **fields)
    debug_logging: bool


def _action_type_for(candidate: Candidate, deps: DeleterDeps) -> ActionType:
    rule = deps.store.get_rule(candidate.rule_id)
    if rule is not None:
        return rule.action_type
    try:
        return ActionType(candidate.matched_rule.get('actionType') or ActionType.FLAG_FOR_REVIEW.value)
    except ValueError:
        return ActionType.FLAG_FOR_REVIEW


def _log_entry(candidate: Candidate, action_type: ActionType, delete_files: bool, actor_id: str, result: ActionResult) -> dict:
    service, _ = target_for(candidate)
    return {
        'id': new_id(),
        'candidateId': candidate.id,
        'mediaType': candidate.media_type.value,
        'title': candidate.title,
        'year': candidate.year,
        'fileSize': candidate.file_size,
        'actorId': actor_id,
        'deletedFrom': service,
        'filesDeleted': bool(delete_files) and action_type in DELETING_ACTIONS,
        'action': ACTION_TAKEN[action_type],
        'alreadyGone': result.not_found,
        'ruleName': candidate.matched_rule.get('name'),
        'createdAt': isoformat(utcnow()),
    }


async def execute(
    candidate_ids: List[str],
    delete_files: bool,
    actor_id: str,
    deps: DeleterDeps,
    on_progress: Optional[Callable[[int], None]] = None,
) -> DeletionResult:
    """Runs each candidate's rule action in turn; one failure never stops the batch."""
    outcome = DeletionResult()
    total = len(candidate_ids)
    for idx, cid in enumerate(candidate_ids, 1):
        candidate = deps.store.get_candidate(cid)
        if candidate is None:
            outcome.failed += 1
            outcome.errors.append(f'{cid}: candidate not found')
        elif candidate.review_status == ReviewStatus.DELETED:
            outcome.success += 1
        elif candidate.review_status != ReviewStatus.APPROVED:
            outcome.failed += 1
            outcome.errors.append(f'{candidate.title}: not approved (status {candidate.review_status.value})')
        else:
            await _process(candidate, delete_files, actor_id, deps, outcome)
        if on_progress is not None:
            on_progress((idx * 100) // total)
    if on_progress is not None and total == 0:
        on_progress(100)
    deps.event_bus.log('deletion_batch_completed', actor=actor_id, success=outcome.success, failed=outcome.failed)
    return outcome


async def _process(
    candidate: Candidate,
    delete_files: bool,
    actor_id: str,
    deps: DeleterDeps,
    outcome: DeletionResult,
) -> None:
    action_type = _action_type_for(candidate, deps)
    try:
        result = await execute_action(candidate, action_type, delete_files, deps.actions)
    except Exception as e:
        result = ActionResult(success=False, error=str(e) or e.__class__.__name__)

    if not result.success:
        reason = result.error or 'unknown error'
        outcome.failed += 1
        outcome.errors.append(f'{candidate.title}: {reason}')
        candidate.deletion_error = reason
        deps.store.update_candidate(candidate)
        deps.event_bus.log('action_failed', candidate_id=candidate.id, title=candidate.title, error=reason)
        logging.warning(f"Deleter: {ACTION_TAKEN[action_type].lower()} failed for '{candidate.title}': {reason}")
        return

    outcome.success += 1
    if deps.actions.dry_run:
        return
    candidate.action_taken = ACTION_TAKEN[action_type]
    candidate.actioned_at = utcnow()
    candidate.deletion_error = None
    if action_type in DELETING_ACTIONS:
        candidate.review_status = ReviewStatus.DELETED
    deps.store.update_candidate(candidate)
    if action_type != ActionType.DO_NOTHING:
        deps.store.append_deletion_log(_log_entry(candidate, action_type, delete_files, actor_id, result))
    deps.event_bus.log(
        'action_executed',
        candidate_id=candidate.id,
        title=candidate.title,
        action=candidate.action_taken,
        not_found=result.not_found,
        actor=actor_id,
    )
