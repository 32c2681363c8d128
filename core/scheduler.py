from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from core.models import Rule


JOB_PREFIX = 'maintenance-rule-'


def schedule_job_id(rule_id: str) -> str:
    return f'{JOB_PREFIX}{rule_id}'


def build_trigger(expression: str, timezone: Any = 'UTC') -> CronTrigger:
    """Raises ValueError for expressions that are not five-field crontab lines."""
    return CronTrigger.from_crontab(expression, timezone=timezone)


class RuleScheduler:
    def __init__(
        self,
        store: Any,
        enqueue_scan: Callable[[str, str], Awaitable[Any]],
        *,
        scheduler: Optional[AsyncIOScheduler] = None,
        timezone: Any = 'UTC',
        debug_logging: bool = False,
    ) -> None:
        self.store = store
        self.enqueue_scan = enqueue_scan
        self.timezone = timezone
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone)
        self.debug_logging = debug_logging

    async def _fire(self, rule_id: str) -> None:
        try:
            await self.enqueue_scan(rule_id, 'scheduled')
        except Exception as e:
            logging.error(f'Scheduler: could not enqueue scheduled scan for rule {rule_id}: {e}')

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def sync_rule_schedule(self, rule: Rule) -> Optional[str]:
        """Registers (or replaces) the rule's cron trigger. Returns the trigger id, or None when removed."""
        if not rule.enabled or not rule.schedule:
            self.remove_rule_schedule(rule.id)
            return None
        trigger = build_trigger(rule.schedule, self.timezone)
        job_id = schedule_job_id(rule.id)
        # A stopped scheduler keeps pending jobs in a list, so replace explicitly
        self.remove_rule_schedule(rule.id)
        self.scheduler.add_job(
            self._fire,
            trigger=trigger,
            args=[rule.id],
            id=job_id,
            name=f'Maintenance scan: {rule.name}',
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        if self.debug_logging:
            logging.info(f"Scheduler: rule '{rule.name}' scheduled with '{rule.schedule}'")
        return job_id

    def remove_rule_schedule(self, rule_id: str) -> bool:
        try:
            self.scheduler.remove_job(schedule_job_id(rule_id))
        except JobLookupError:
            return False
        if self.debug_logging:
            logging.info(f'Scheduler: removed schedule for rule {rule_id}')
        return True

    def sync_all_rule_schedules(self) -> Dict[str, int]:
        wanted = set()
        failed = 0
        for rule in self.store.list_rules():
            try:
                job_id = self.sync_rule_schedule(rule)
            except Exception as e:
                failed += 1
                logging.error(f"Scheduler: failed to sync schedule for rule '{rule.name}' ({rule.id}): {e}")
                continue
            if job_id:
                wanted.add(job_id)
        removed = 0
        for job in self.scheduler.get_jobs():
            if job.id.startswith(JOB_PREFIX) and job.id not in wanted:
                self.scheduler.remove_job(job.id)
                removed += 1
        if self.debug_logging:
            logging.info(f'Scheduler: {len(wanted)} rule schedule(s) active, {removed} orphan(s) removed, {failed} failed')
        return {'scheduled': len(wanted), 'removed': removed, 'failed': failed}

    def active_schedules(self) -> List[Dict[str, Any]]:
        out = []
        for job in self.scheduler.get_jobs():
            if not job.id.startswith(JOB_PREFIX):
                continue
            next_run = getattr(job, 'next_run_time', None)
            out.append({
                'ruleId': job.id[len(JOB_PREFIX):],
                'jobId': job.id,
                'nextRunTime': next_run.isoformat() if next_run else None,
            })
        return out
