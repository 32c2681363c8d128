import argparse
import asyncio
import json
import os
import sys
from typing import Any, Dict

import aiohttp

from core import deleter, scanner
from core.config import ConfigAccessor
from core.config import load_yaml as _load_yaml
from core.criteria import calculate_complexity, parse_criteria
from core.errors import MaintenanceError
from core.events import EventBus
from core.fields import fields_grouped_by_category
from core.models import MediaItem, MediaType, ReviewStatus
from core.operations import MaintenanceService
from core.queue import JobQueue
from core.rules import evaluate_with_trace
from core.worker import DELETION_QUEUE, SCAN_QUEUE
from storage.store import MaintenanceStore


def _env(key: str, default: Any) -> Any:
    return os.environ.get(key, default)


def _config() -> Dict[str, Any]:
    return _load_yaml(_env('CONFIG_PATH', '/app/config.yaml'))


def _store_path() -> str:
    return _env('STORE_PATH', None) or ConfigAccessor(_config()).general('store_path', '/app/data/maintenance.json')


def _service(store: MaintenanceStore) -> MaintenanceService:
    bus = EventBus(structured_logs=True, dry_run=False, debug_logging=False)
    return MaintenanceService(store, JobQueue(SCAN_QUEUE), JobQueue(DELETION_QUEUE), event_bus=bus)


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_fields(args):
    grouped = fields_grouped_by_category(MediaType(args.media_type))
    _print({cat: [f.to_dict() for f in defs] for cat, defs in grouped.items()})


def cmd_rules(args):
    store = MaintenanceStore(_store_path())
    out = []
    for rule in store.list_rules():
        data = rule.to_dict()
        data['complexity'] = calculate_complexity(rule.criteria)['complexity']
        out.append(data)
    _print(out)


def cmd_candidates(args):
    store = MaintenanceStore(_store_path())
    filters = {'rule_id': args.rule, 'scan_id': args.scan, 'review_status': args.status, 'media_type': args.media_type}
    rows, total = _service(store).list_candidates(filters, page=args.page, page_size=args.page_size)
    _print({'total': total, 'page': args.page, 'candidates': [c.to_dict() for c in rows]})


def cmd_status(args):
    service = _service(MaintenanceStore(_store_path()))
    if args.rule_id:
        _print(service.get_scan_status(args.rule_id))
    else:
        _print(service.stats())


def cmd_simulate(args):
    with open(args.item_json, 'r') as f:
        item = MediaItem.from_dict(json.load(f))
    with open(args.criteria_json, 'r') as f:
        criteria = parse_criteria(json.load(f))
    trace = evaluate_with_trace(item, criteria)
    _print({'matches': trace.matches, 'conditions': [r.to_dict() for r in trace.condition_results]})


async def _with_app(fn):
    # Imported here so the CLI's read-only commands do not need the service stack
    from maintainer import build_app, load_config

    cfg = load_config()
    async with aiohttp.ClientSession() as session:
        app = build_app(session, cfg, store=MaintenanceStore(_store_path()))
        return await fn(app)


def cmd_scan(args):
    async def _run(app):
        result = await scanner.scan(args.rule_id, app.worker_deps.scanner, trigger='manual')
        return {
            'scanId': result.scan_id,
            'itemsScanned': result.items_scanned,
            'itemsFlagged': result.items_flagged,
        }
    _print(asyncio.run(_with_app(_run)))


def cmd_delete(args):
    async def _run(app):
        outcome = await deleter.execute(args.ids, not args.keep_files, args.actor, app.worker_deps.deleter)
        return {'success': outcome.success, 'failed': outcome.failed, 'errors': outcome.errors}
    _print(asyncio.run(_with_app(_run)))


def cmd_review(args):
    service = _service(MaintenanceStore(_store_path()))
    changed = service.update_review_status(args.ids, ReviewStatus(args.status), args.actor, note=args.note)
    _print({'updated': changed})


def main():
    ap = argparse.ArgumentParser(description="Library Maintainer CLI")
    sub = ap.add_subparsers(dest='cmd')

    p_fields = sub.add_parser('fields', help='List rule fields by category')
    p_fields.add_argument('--media-type', default=MediaType.MOVIE.value, choices=[m.value for m in MediaType])
    p_fields.set_defaults(func=cmd_fields)

    p_rules = sub.add_parser('rules', help='List stored rules')
    p_rules.set_defaults(func=cmd_rules)

    p_cand = sub.add_parser('candidates', help='List flagged candidates (newest first)')
    p_cand.add_argument('--rule')
    p_cand.add_argument('--scan')
    p_cand.add_argument('--status', choices=[s.value for s in ReviewStatus])
    p_cand.add_argument('--media-type', choices=[m.value for m in MediaType])
    p_cand.add_argument('--page', type=int, default=1)
    p_cand.add_argument('--page-size', type=int, default=25)
    p_cand.set_defaults(func=cmd_candidates)

    p_status = sub.add_parser('status', help='Show the latest scan for a rule, or overall stats')
    p_status.add_argument('rule_id', nargs='?')
    p_status.set_defaults(func=cmd_status)

    p_sim = sub.add_parser('simulate', help='Evaluate criteria against an item JSON and explain each condition')
    p_sim.add_argument('item_json', help='Path to item JSON file')
    p_sim.add_argument('criteria_json', help='Path to criteria JSON file')
    p_sim.set_defaults(func=cmd_simulate)

    p_scan = sub.add_parser('scan', help='Run a scan for one rule now')
    p_scan.add_argument('rule_id')
    p_scan.set_defaults(func=cmd_scan)

    p_del = sub.add_parser('delete', help='Execute actions for approved candidates')
    p_del.add_argument('ids', nargs='+')
    p_del.add_argument('--keep-files', action='store_true')
    p_del.add_argument('--actor', default='cli')
    p_del.set_defaults(func=cmd_delete)

    p_rev = sub.add_parser('review', help='Set the review status of candidates')
    p_rev.add_argument('ids', nargs='+')
    p_rev.add_argument('--status', required=True, choices=[ReviewStatus.APPROVED.value, ReviewStatus.REJECTED.value, ReviewStatus.PENDING.value])
    p_rev.add_argument('--actor', default='cli')
    p_rev.add_argument('--note')
    p_rev.set_defaults(func=cmd_review)

    args = ap.parse_args()
    if not hasattr(args, 'func'):
        ap.print_help()
        sys.exit(1)
    try:
        args.func(args)
    except MaintenanceError as e:
        print(f'Error: {e}', file=sys.stderr)
        sys.exit(2)


if __name__ == '__main__':
    main()
