from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.criteria import validate_criteria
from core.errors import CandidateStateError, CriteriaValidationError, RuleDisabledError, RuleNotFoundError
from core.models import AUTO_ACTION_TYPES, Candidate, ReviewStatus, Rule, ScanResult, ScanStatus
from core.queue import Job, JobQueue, UNFINISHED_STATES
from core.scheduler import build_trigger
from core.utils import utcnow


MANUAL_SCAN_PRIORITY = 1
SCHEDULED_SCAN_PRIORITY = 10
MAX_PAGE_SIZE = 100
SYSTEM_ACTOR = 'system'
INTERRUPTED_SCAN_ERROR = 'interrupted: service stopped before the scan finished'


def scan_job_id(rule_id: str) -> str:
    return f'scan-{rule_id}'


class MaintenanceService:
    """Entry points used by the UI/API layer, the scheduler and the CLI."""

    def __init__(
        self,
        store: Any,
        scan_queue: JobQueue,
        deletion_queue: JobQueue,
        *,
        event_bus: Any,
        scheduler: Any = None,
        auto_delete_files: bool = True,
        timezone: Any = 'UTC',
        debug_logging: bool = False,
    ) -> None:
        self.store = store
        self.scan_queue = scan_queue
        self.deletion_queue = deletion_queue
        self.event_bus = event_bus
        self.scheduler = scheduler
        self.auto_delete_files = auto_delete_files
        self.timezone = timezone
        self.debug_logging = debug_logging

    # Candidates
    def list_candidates(
        self,
        filters: Optional[Dict[str, Any]] = None,
        page: int = 1,
        page_size: int = 25,
    ) -> Tuple[List[Candidate], int]:
        f = filters or {}
        page = max(1, int(page))
        page_size = max(1, min(MAX_PAGE_SIZE, int(page_size)))
        status = f.get('review_status')
        media_type = f.get('media_type')
        min_size = f.get('min_file_size')
        max_size = f.get('max_file_size')

        def _keep(c: Candidate) -> bool:
            if f.get('scan_id') and c.scan_id != f['scan_id']:
                return False
            if f.get('rule_id') and c.rule_id != f['rule_id']:
                return False
            if status and c.review_status.value != str(getattr(status, 'value', status)):
                return False
            if media_type and c.media_type.value != str(getattr(media_type, 'value', media_type)):
                return False
            if min_size is not None and (c.file_size or 0) < int(min_size):
                return False
            if max_size is not None and (c.file_size or 0) > int(max_size):
                return False
            return True

        rows = [c for c in self.store.list_candidates() if _keep(c)]
        rows.sort(key=lambda c: (c.flagged_at.timestamp() if c.flagged_at else 0.0), reverse=True)
        start = (page - 1) * page_size
        return rows[start:start + page_size], len(rows)

    def update_review_status(
        self,
        candidate_ids: Iterable[str],
        status: ReviewStatus,
        actor_id: str,
        note: Optional[str] = None,
    ) -> int:
        status = ReviewStatus(status)
        if status == ReviewStatus.DELETED:
            raise CandidateStateError('DELETED is set by the deleter, not by review')
        ids = list(candidate_ids)
        candidates = self.store.get_candidates(ids)
        missing = sorted(set(ids) - {c.id for c in candidates})
        if missing:
            raise CandidateStateError(f'Unknown candidate(s): {", ".join(missing)}', missing)
        now = utcnow()
        changed = []
        for c in candidates:
            if c.review_status == ReviewStatus.DELETED:
                continue
            c.review_status = status
            c.reviewed_at = now
            c.reviewed_by = actor_id
            if note is not None:
                c.review_note = note
            changed.append(c)
        self.store.update_candidates(changed)
        self.event_bus.log('candidates_reviewed', status=status.value, actor=actor_id, count=len(changed))
        return len(changed)

    # Scans
    def get_scan_status(self, rule_id: str) -> Dict[str, Any]:
        if self.store.get_rule(rule_id) is None:
            raise RuleNotFoundError(rule_id)
        latest = self.store.latest_scan(rule_id)
        job = self.scan_queue.get_job(scan_job_id(rule_id))
        return {
            'ruleId': rule_id,
            'latestScan': latest.to_dict() if latest else None,
            'job': job.to_dict() if job else None,
        }

    def trigger_scan(self, rule_id: str, manual: bool = True) -> Job:
        rule = self.store.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        if not rule.enabled:
            raise RuleDisabledError(rule_id)
        trigger = 'manual' if manual else 'scheduled'
        job = self.scan_queue.add(
            'scan',
            {'ruleId': rule_id, 'trigger': trigger},
            job_id=scan_job_id(rule_id),
            priority=MANUAL_SCAN_PRIORITY if manual else SCHEDULED_SCAN_PRIORITY,
        )
        self.event_bus.log('scan_enqueued', rule_id=rule_id, job_id=job.id, trigger=trigger, state=job.state)
        return job

    async def enqueue_scheduled_scan(self, rule_id: str, trigger: str = 'scheduled') -> Optional[Job]:
        try:
            return self.trigger_scan(rule_id, manual=(trigger == 'manual'))
        except (RuleNotFoundError, RuleDisabledError) as e:
            # Stale trigger for a rule that changed since the last sync
            logging.warning(f'Scheduler: skipping scan for rule {rule_id}: {e}')
            if self.scheduler is not None:
                self.scheduler.remove_rule_schedule(rule_id)
            return None

    # Deletions
    def trigger_deletion(self, candidate_ids: List[str], delete_files: bool, actor_id: str, delay: float = 0.0) -> Job:
        ids = list(dict.fromkeys(candidate_ids))
        if not ids:
            raise CandidateStateError('No candidates given')
        candidates = {c.id: c for c in self.store.get_candidates(ids)}
        missing = [cid for cid in ids if cid not in candidates]
        if missing:
            raise CandidateStateError(f'Unknown candidate(s): {", ".join(missing)}', missing)
        unapproved = [cid for cid in ids if candidates[cid].review_status != ReviewStatus.APPROVED]
        if unapproved:
            raise CandidateStateError(f'Candidate(s) not approved: {", ".join(unapproved)}', unapproved)
        job = self.deletion_queue.add(
            'delete',
            {'candidateIds': ids, 'deleteFiles': bool(delete_files), 'actorId': actor_id},
            delay=delay,
        )
        self.event_bus.log('deletion_enqueued', job_id=job.id, count=len(ids), actor=actor_id, delay=delay)
        return job

    async def handle_scan_completed(self, rule_id: str, result: ScanResult) -> Optional[Job]:
        rule = self.store.get_rule(rule_id)
        if rule is None or rule.action_type not in AUTO_ACTION_TYPES or not result.candidate_ids:
            return None
        approved = self.update_review_status(result.candidate_ids, ReviewStatus.APPROVED, SYSTEM_ACTOR)
        delay = float(rule.action_delay_days or 0) * 86400
        if self.debug_logging:
            logging.info(f"Rule '{rule.name}': auto-approved {approved} candidate(s); deletion in {delay:.0f}s")
        return self.trigger_deletion(result.candidate_ids, self.auto_delete_files, SYSTEM_ACTOR, delay=delay)

    def recover_interrupted_work(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Startup reconciliation for state that only lived in the previous process.

        Scan runs left RUNNING are marked FAILED. Auto-approved candidates whose
        delayed deletion job was lost get a new job with the remaining delay.
        """
        now = now or utcnow()
        interrupted = 0
        for run in self.store.list_scans():
            if run.status != ScanStatus.RUNNING:
                continue
            run.status = ScanStatus.FAILED
            run.error = INTERRUPTED_SCAN_ERROR
            run.completed_at = now
            self.store.save_scan(run)
            self.event_bus.log('scan_interrupted', rule_id=run.rule_id, scan_id=run.id)
            interrupted += 1

        queued = set()
        for job in self.deletion_queue.jobs(UNFINISHED_STATES):
            queued.update(job.data.get('candidateIds') or [])
        rules: Dict[str, Optional[Rule]] = {}
        # (rule id, scan id) -> (earliest approval, candidate ids)
        batches: Dict[Tuple[str, str], Tuple[datetime, List[str]]] = {}
        for c in self.store.list_candidates():
            if (
                c.review_status != ReviewStatus.APPROVED
                or c.reviewed_by != SYSTEM_ACTOR
                or c.actioned_at is not None
                or c.deletion_error
                or c.id in queued
            ):
                continue
            if c.rule_id not in rules:
                rules[c.rule_id] = self.store.get_rule(c.rule_id)
            rule = rules[c.rule_id]
            if rule is None or rule.action_type not in AUTO_ACTION_TYPES:
                continue
            approved_at = c.reviewed_at or now
            key = (c.rule_id, c.scan_id)
            first, ids = batches.get(key, (approved_at, []))
            ids.append(c.id)
            batches[key] = (min(first, approved_at), ids)

        resumed = 0
        for (rule_id, _), (approved_at, ids) in batches.items():
            due = approved_at + timedelta(days=float(rules[rule_id].action_delay_days or 0))
            delay = max(0.0, (due - now).total_seconds())
            self.trigger_deletion(ids, self.auto_delete_files, SYSTEM_ACTOR, delay=delay)
            resumed += len(ids)
        if interrupted or resumed:
            logging.info(f'Recovery: {interrupted} interrupted scan(s) failed, {resumed} pending auto-deletion(s) re-queued')
        return {'interruptedScans': interrupted, 'resumedDeletions': resumed}

    # Rules
    def save_rule(self, rule: Rule) -> Rule:
        errors = validate_criteria(rule.criteria, rule.media_type)
        if rule.schedule:
            try:
                build_trigger(rule.schedule, self.timezone)
            except ValueError as e:
                errors.append(f'schedule: {e}')
        if errors:
            raise CriteriaValidationError(errors)
        self.store.save_rule(rule)
        if self.scheduler is not None:
            self.scheduler.sync_rule_schedule(rule)
        self.event_bus.log('rule_saved', rule_id=rule.id, name=rule.name, enabled=rule.enabled)
        return rule

    def delete_rule(self, rule_id: str) -> bool:
        removed = self.store.delete_rule(rule_id)
        if self.scheduler is not None:
            self.scheduler.remove_rule_schedule(rule_id)
        self.scan_queue.remove(scan_job_id(rule_id))
        if removed:
            self.event_bus.log('rule_deleted', rule_id=rule_id)
        return removed

    def seed_rules(self, raw_rules: Iterable[Dict[str, Any]]) -> int:
        saved = 0
        for raw in raw_rules or []:
            try:
                self.save_rule(Rule.from_dict(raw))
                saved += 1
            except Exception as e:
                logging.error(f"Config: ignoring rule {raw.get('id') if isinstance(raw, dict) else raw!r}: {e}")
        return saved

    def stats(self) -> Dict[str, Any]:
        rules = self.store.list_rules()
        candidates = self.store.list_candidates()
        by_status = {s.value: 0 for s in ReviewStatus}
        savings = 0
        for c in candidates:
            by_status[c.review_status.value] += 1
            if c.review_status in (ReviewStatus.PENDING, ReviewStatus.APPROVED):
                savings += c.file_size or 0
        return {
            'rules': {
                'total': len(rules),
                'enabled': sum(1 for r in rules if r.enabled),
                'scheduled': sum(1 for r in rules if r.enabled and r.schedule),
            },
            'candidates': by_status,
            'potentialSpaceSavings': savings,
            'totalDeletions': len(self.store.deletion_log()),
            'recentScans': [s.to_dict() for s in self.store.list_scans(limit=5)],
            'queues': {
                self.scan_queue.name: self.scan_queue.counts(),
                self.deletion_queue.name: self.deletion_queue.counts(),
            },
            'activeScanJobs': [j.id for j in self.scan_queue.jobs(UNFINISHED_STATES)],
        }
