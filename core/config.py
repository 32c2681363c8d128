from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

import yaml


SERVICES = ('Tautulli', 'Radarr', 'Sonarr', 'Overseerr')

WORKER_DEFAULTS: Dict[str, Any] = {
    'scan_concurrency': 2,
    'scan_rate_limit_max': 10,
    'scan_rate_limit_duration_seconds': 60.0,
    'scan_attempts': 3,
    'scan_backoff_seconds': 2.0,
    'deletion_concurrency': 1,
    'deletion_attempts': 2,
    'deletion_backoff_seconds': 5.0,
    'auto_delete_files': True,
}


def load_yaml(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        return {}
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
            return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError) as e:
        logging.warning(f'Config: could not read {path}: {e}')
        return {}


def _get_env(key: str, default: Any = None) -> Any:
    return os.environ.get(key, default)


def _section(cfg: Dict[str, Any], name: str) -> Dict[str, Any]:
    val = cfg.get(name)
    return val if isinstance(val, dict) else {}


class ConfigAccessor:
    def __init__(self, cfg: Dict[str, Any]) -> None:
        self.cfg = cfg if isinstance(cfg, dict) else {}

    # General settings accessor
    def general(self, key: str, default: Any = None) -> Any:
        return _section(self.cfg, 'general').get(key, default)

    def worker(self, key: str, default: Any = None) -> Any:
        if default is None:
            default = WORKER_DEFAULTS.get(key)
        return _section(self.cfg, 'worker').get(key, default)

    def scanner(self, key: str, default: Any = None) -> Any:
        return _section(self.cfg, 'scanner').get(key, default)

    def matching(self, key: str, default: Any = None) -> Any:
        return _section(self.cfg, 'matching').get(key, default)

    # Per-service throttling: services[svc] > defaults
    def get_service_setting(self, service_name: str, key: str, default: Any = None) -> Any:
        service_cfg = _section(self.cfg, 'services').get(service_name)
        if isinstance(service_cfg, dict) and key in service_cfg:
            return service_cfg[key]
        return default

    # Endpoints from env (documented precedence: env-only)
    def service_endpoint(self, service_name: str) -> Dict[str, Optional[str]]:
        upper = service_name.upper()
        url = _get_env(f'{upper}_URL') or None
        return {
            'api_url': url.rstrip('/') if url else None,
            'api_key': _get_env(f'{upper}_API_KEY') or None,
        }

    def rules(self) -> List[Dict[str, Any]]:
        rules = self.cfg.get('rules')
        return [r for r in rules if isinstance(r, dict)] if isinstance(rules, list) else []


def sanitize_config(cfg: Dict[str, Any], debug_logging: bool = False) -> Dict[str, Any]:
    if not isinstance(cfg, dict):
        return {}
    out = dict(cfg)

    def _nz(v, cast, default):
        try:
            return cast(v)
        except Exception:
            return default

    gen = _section(out, 'general')
    if gen:
        gen['request_timeout'] = max(1, _nz(gen.get('request_timeout', 10), int, 10))
        gen['retry_attempts'] = max(0, _nz(gen.get('retry_attempts', 2), int, 2))
        gen['retry_backoff'] = max(0, _nz(gen.get('retry_backoff', 1.0), float, 1.0))
        out['general'] = gen

    wk = _section(out, 'worker')
    if wk:
        for key in ('scan_concurrency', 'scan_rate_limit_max', 'scan_attempts', 'deletion_concurrency', 'deletion_attempts'):
            if key in wk:
                wk[key] = max(1, _nz(wk.get(key), int, WORKER_DEFAULTS[key]))
        for key in ('scan_rate_limit_duration_seconds', 'scan_backoff_seconds', 'deletion_backoff_seconds'):
            if key in wk:
                wk[key] = max(0.0, _nz(wk.get(key), float, WORKER_DEFAULTS[key]))
        out['worker'] = wk

    sc = _section(out, 'scanner')
    if 'progress_interval' in sc:
        sc['progress_interval'] = max(1, _nz(sc.get('progress_interval'), int, 10))
        out['scanner'] = sc

    mt = _section(out, 'matching')
    if mt:
        for key, default in (('year_tolerance', 1), ('close_match_prefix', 5), ('close_match_limit', 5)):
            if key in mt:
                mt[key] = max(0, _nz(mt.get(key), int, default))
        out['matching'] = mt

    # Services numeric sanitization (throttling)
    sv = _section(out, 'services')
    for sname, scfg in list(sv.items()):
        if isinstance(scfg, dict):
            if 'min_request_interval_ms' in scfg:
                scfg['min_request_interval_ms'] = max(0, _nz(scfg.get('min_request_interval_ms'), float, 0))
            if 'max_concurrent_requests' in scfg:
                scfg['max_concurrent_requests'] = max(0, _nz(scfg.get('max_concurrent_requests'), int, 0))

    # Seed rules must at least carry an id and criteria
    rules = out.get('rules') if isinstance(out.get('rules'), list) else []
    cleaned = []
    for r in rules:
        if not isinstance(r, dict) or not r.get('id') or not isinstance(r.get('criteria'), dict):
            if debug_logging:
                logging.warning(f'Ignoring invalid rule entry: {r}')
            continue
        cleaned.append(r)
    if 'rules' in out:
        out['rules'] = cleaned
    return out


def validate_config(cfg: Dict[str, Any], debug_logging: bool = False) -> List[str]:
    problems = []
    # Service env pairs
    for s in SERVICES:
        url = os.environ.get(f'{s.upper()}_URL') or None
        key = os.environ.get(f'{s.upper()}_API_KEY') or None
        if (url and not key) or (key and not url):
            problems.append(f"Service {s} has partial env config (URL/API_KEY); it will be skipped.")
    if not (os.environ.get('TAUTULLI_URL') and os.environ.get('TAUTULLI_API_KEY')):
        problems.append('Tautulli is not configured; scans will fail until TAUTULLI_URL/TAUTULLI_API_KEY are set.')
    for sname, scfg in _section(cfg, 'services').items():
        if isinstance(scfg, dict):
            if float(scfg.get('min_request_interval_ms') or 0) > 0 and int(scfg.get('max_concurrent_requests') or 0) == 0:
                problems.append(f'{sname}: min_request_interval_ms set without max_concurrent_requests; consider setting both for effect.')
    for r in ConfigAccessor(cfg).rules():
        if r.get('schedule') and len(str(r['schedule']).split()) != 5:
            problems.append(f"Rule {r.get('id')}: schedule '{r['schedule']}' is not a five-field cron expression.")
    for p in problems:
        logging.warning(p)
    return problems
