import os
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

from core.actions import ActionsDeps
from core.config import ConfigAccessor, load_yaml, sanitize_config, validate_config
from core.deleter import DeleterDeps
from core.events import EventBus
from core.operations import MaintenanceService
from core.queue import JobQueue
from core.scanner import ScannerDeps
from core.scheduler import RuleScheduler
from core.worker import (
    DELETION_QUEUE,
    SCAN_QUEUE,
    RateLimiter,
    Worker,
    WorkerDeps,
    process_deletion_job,
    process_scan_job,
)
from integrations.providers import Providers
from storage.store import MaintenanceStore


# Helper function to get environment variables with type casting
def get_env_var(key, default=None, cast_to=str):
    value = os.environ.get(key, default)
    if value is not None:
        return cast_to(value)
    return default


def _flag(value: Any) -> bool:
    return str(value).lower() in ['true', '1', 'yes']


DEBUG_LOGGING = get_env_var('DEBUG_LOGGING', default='false', cast_to=_flag)
STRUCTURED_LOGS = get_env_var('STRUCTURED_LOGS', default='true', cast_to=_flag)
DRY_RUN = get_env_var('DRY_RUN', default='false', cast_to=_flag)
CONFIG_PATH = get_env_var('CONFIG_PATH', '/app/config.yaml')
STORE_PATH = get_env_var('STORE_PATH', '/app/data/maintenance.json')
REQUEST_TIMEOUT = get_env_var('REQUEST_TIMEOUT', 10, cast_to=int)
RETRY_ATTEMPTS = get_env_var('RETRY_ATTEMPTS', 2, cast_to=int)
RETRY_BACKOFF = get_env_var('RETRY_BACKOFF', 1.0, cast_to=float)  # base seconds

EVENT_LOGGER = 'library_maintainer.events'


def setup_logging(debug_logging: bool) -> logging.Logger:
    level = logging.DEBUG if debug_logging else logging.INFO
    logging.basicConfig(
        format='%(asctime)s [%(levelname)s]: %(message)s',
        level=level,
        handlers=[logging.StreamHandler()],
        force=True,
    )
    # Dedicated non-propagating logger for structured event logs to avoid duplicates
    event_log = logging.getLogger(EVENT_LOGGER)
    event_log.setLevel(level)
    event_log.propagate = False
    for h in list(event_log.handlers):
        event_log.removeHandler(h)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter('%(asctime)s [%(levelname)s]: %(message)s'))
    event_log.addHandler(handler)
    return event_log


def load_config(path: str = CONFIG_PATH, debug_logging: bool = DEBUG_LOGGING) -> Dict[str, Any]:
    cfg = sanitize_config(load_yaml(path), debug_logging)
    validate_config(cfg, debug_logging)
    return cfg


@dataclass
class Settings:
    debug_logging: bool
    structured_logs: bool
    dry_run: bool
    store_path: str
    timezone: str
    request_timeout: int
    retry_attempts: int
    retry_backoff: float


def resolve_settings(accessor: ConfigAccessor) -> Settings:
    # Prefer YAML general for app-level settings; fallback to env-loaded defaults
    def _get(key: str, default: Any) -> Any:
        val = accessor.general(key, None)
        return default if val is None else val

    return Settings(
        debug_logging=bool(_get('debug_logging', DEBUG_LOGGING)),
        structured_logs=bool(_get('structured_logs', STRUCTURED_LOGS)),
        dry_run=bool(_get('dry_run', DRY_RUN)),
        store_path=str(_get('store_path', STORE_PATH)),
        timezone=str(_get('timezone', 'UTC')),
        request_timeout=int(_get('request_timeout', REQUEST_TIMEOUT)),
        retry_attempts=int(_get('retry_attempts', RETRY_ATTEMPTS)),
        retry_backoff=float(_get('retry_backoff', RETRY_BACKOFF)),
    )


@dataclass
class App:
    settings: Settings
    store: MaintenanceStore
    event_bus: EventBus
    providers: Providers
    scan_queue: JobQueue
    deletion_queue: JobQueue
    worker_deps: WorkerDeps
    scan_worker: Worker
    deletion_worker: Worker
    rule_scheduler: RuleScheduler
    service: MaintenanceService

    def start(self) -> None:
        # Queues and timers are in-memory; pick up what the previous process left behind
        self.service.recover_interrupted_work()
        self.rule_scheduler.sync_all_rule_schedules()
        self.rule_scheduler.start()
        self.scan_worker.start()
        self.deletion_worker.start()

    async def stop(self) -> None:
        self.rule_scheduler.shutdown()
        await self.scan_worker.stop()
        await self.deletion_worker.stop()
        self.scan_queue.close()
        self.deletion_queue.close()


def build_app(
    session: aiohttp.ClientSession,
    cfg: Dict[str, Any],
    *,
    store: Optional[MaintenanceStore] = None,
    scheduler: Any = None,
) -> App:
    """Wires store, providers, queues, workers and scheduler. Must run inside the event loop."""
    ac = ConfigAccessor(cfg)
    settings = resolve_settings(ac)
    store = store if store is not None else MaintenanceStore(settings.store_path, settings.debug_logging)
    event_bus = EventBus(
        structured_logs=settings.structured_logs,
        dry_run=settings.dry_run,
        debug_logging=settings.debug_logging,
        logger=logging.getLogger(EVENT_LOGGER),
    )
    providers = Providers(
        session,
        ac,
        request_timeout=settings.request_timeout,
        retry_attempts=settings.retry_attempts,
        retry_backoff=settings.retry_backoff,
        debug_logging=settings.debug_logging,
    )

    scan_queue = JobQueue(
        SCAN_QUEUE,
        default_attempts=int(ac.worker('scan_attempts')),
        backoff_seconds=float(ac.worker('scan_backoff_seconds')),
    )
    deletion_queue = JobQueue(
        DELETION_QUEUE,
        default_attempts=int(ac.worker('deletion_attempts')),
        backoff_seconds=float(ac.worker('deletion_backoff_seconds')),
    )

    scanner_deps = ScannerDeps(
        store=store,
        fetch_library=providers.library_fetcher(),
        fetch_movie_manager=providers.fetch_movie_manager,
        fetch_series_manager=providers.fetch_series_manager,
        fetch_request_manager=providers.fetch_request_manager,
        event_bus=event_bus,
        debug_logging=settings.debug_logging,
        year_tolerance=int(ac.matching('year_tolerance', 1)),
        progress_interval=int(ac.scanner('progress_interval', 10)),
        close_match_limit=int(ac.matching('close_match_limit', 5)),
        close_match_prefix=int(ac.matching('close_match_prefix', 5)),
    )
    actions_deps = ActionsDeps(
        delete_media=providers.delete_media,
        unmonitor_media=providers.unmonitor_media,
        event_bus=event_bus,
        debug_logging=settings.debug_logging,
        dry_run=settings.dry_run,
    )
    deleter_deps = DeleterDeps(
        store=store, actions=actions_deps, event_bus=event_bus, debug_logging=settings.debug_logging
    )

    service = MaintenanceService(
        store,
        scan_queue,
        deletion_queue,
        event_bus=event_bus,
        auto_delete_files=bool(ac.worker('auto_delete_files')),
        timezone=settings.timezone,
        debug_logging=settings.debug_logging,
    )
    rule_scheduler = RuleScheduler(
        store,
        service.enqueue_scheduled_scan,
        scheduler=scheduler,
        timezone=settings.timezone,
        debug_logging=settings.debug_logging,
    )
    service.scheduler = rule_scheduler

    worker_deps = WorkerDeps(
        scanner=scanner_deps,
        deleter=deleter_deps,
        event_bus=event_bus,
        debug_logging=settings.debug_logging,
        after_scan=service.handle_scan_completed,
    )

    async def _scan_handler(job):
        return await process_scan_job(job, worker_deps)

    async def _deletion_handler(job):
        return await process_deletion_job(job, worker_deps)

    scan_worker = Worker(
        scan_queue,
        _scan_handler,
        concurrency=int(ac.worker('scan_concurrency')),
        limiter=RateLimiter(
            int(ac.worker('scan_rate_limit_max')),
            float(ac.worker('scan_rate_limit_duration_seconds')),
        ),
        event_bus=event_bus,
        debug_logging=settings.debug_logging,
    )
    deletion_worker = Worker(
        deletion_queue,
        _deletion_handler,
        concurrency=int(ac.worker('deletion_concurrency')),
        event_bus=event_bus,
        debug_logging=settings.debug_logging,
    )

    return App(
        settings=settings,
        store=store,
        event_bus=event_bus,
        providers=providers,
        scan_queue=scan_queue,
        deletion_queue=deletion_queue,
        worker_deps=worker_deps,
        scan_worker=scan_worker,
        deletion_worker=deletion_worker,
        rule_scheduler=rule_scheduler,
        service=service,
    )


async def main():
    cfg = load_config()
    setup_logging(bool(ConfigAccessor(cfg).general('debug_logging', DEBUG_LOGGING)))
    async with aiohttp.ClientSession() as session:
        app = build_app(session, cfg)
        if app.settings.debug_logging:
            logging.info('Running library-maintainer service')
        seeded = app.service.seed_rules(ConfigAccessor(cfg).rules())
        if seeded:
            logging.info(f'Seeded {seeded} rule(s) from configuration')
        app.start()
        try:
            await asyncio.Event().wait()
        finally:
            await app.stop()


if __name__ == '__main__':
    asyncio.run(main())
