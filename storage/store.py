from __future__ import annotations

import json
import os
from typing import Any, Dict, Iterable, List, Optional

from core.models import Candidate, Rule, ScanRun


def load_state(path: str, debug_logging: bool = False) -> Dict[str, Any]:
    try:
        with open(path, 'r') as file:
            data = json.load(file)
            return data if isinstance(data, dict) else {}
    except (FileNotFoundError, json.JSONDecodeError):
        if debug_logging:
            import logging
            logging.warning("Store file not found or is invalid. Starting with an empty maintenance store.")
        return {}


def save_state(data: Dict[str, Any], path: str) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp_path = path + '.tmp'
    with open(tmp_path, 'w') as file:
        json.dump(data, file, indent=4)
    os.replace(tmp_path, path)


class MaintenanceStore:
    """Rules, scan runs, candidates and the deletion log in one JSON document.

    Records are handed out as fresh model objects; changes only land through the
    ``save_*``/``update_*`` calls. With no path the store is memory-only.
    """

    def __init__(self, path: Optional[str] = None, debug_logging: bool = False) -> None:
        self.path = path
        self.debug_logging = debug_logging
        data = load_state(path, debug_logging) if path else {}
        self._rules: Dict[str, Dict[str, Any]] = dict(data.get('rules') or {})
        self._scans: Dict[str, Dict[str, Any]] = dict(data.get('scans') or {})
        self._candidates: Dict[str, Dict[str, Any]] = dict(data.get('candidates') or {})
        self._deletion_log: List[Dict[str, Any]] = list(data.get('deletion_log') or [])

    def _flush(self) -> None:
        if not self.path:
            return
        save_state(
            {
                'rules': self._rules,
                'scans': self._scans,
                'candidates': self._candidates,
                'deletion_log': self._deletion_log,
            },
            self.path,
        )

    # Rules
    def get_rule(self, rule_id: str) -> Optional[Rule]:
        data = self._rules.get(rule_id)
        return Rule.from_dict(data) if data else None

    def list_rules(self) -> List[Rule]:
        return [Rule.from_dict(d) for d in self._rules.values()]

    def save_rule(self, rule: Rule) -> Rule:
        self._rules[rule.id] = rule.to_dict()
        self._flush()
        return rule

    def delete_rule(self, rule_id: str) -> bool:
        removed = self._rules.pop(rule_id, None) is not None
        if removed:
            self._flush()
        return removed

    # Scan runs
    def save_scan(self, scan: ScanRun) -> ScanRun:
        self._scans[scan.id] = scan.to_dict()
        self._flush()
        return scan

    def get_scan(self, scan_id: str) -> Optional[ScanRun]:
        data = self._scans.get(scan_id)
        return ScanRun.from_dict(data) if data else None

    def list_scans(self, rule_id: Optional[str] = None, limit: Optional[int] = None) -> List[ScanRun]:
        scans = [ScanRun.from_dict(d) for d in self._scans.values() if rule_id is None or d.get('ruleId') == rule_id]
        scans.sort(key=lambda s: s.started_at, reverse=True)
        return scans[:limit] if limit else scans

    def latest_scan(self, rule_id: str) -> Optional[ScanRun]:
        scans = self.list_scans(rule_id, limit=1)
        return scans[0] if scans else None

    # Candidates
    def add_candidates(self, candidates: Iterable[Candidate]) -> None:
        for c in candidates:
            self._candidates[c.id] = c.to_dict()
        self._flush()

    def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        data = self._candidates.get(candidate_id)
        return Candidate.from_dict(data) if data else None

    def get_candidates(self, candidate_ids: Iterable[str]) -> List[Candidate]:
        return [Candidate.from_dict(self._candidates[cid]) for cid in candidate_ids if cid in self._candidates]

    def list_candidates(self) -> List[Candidate]:
        return [Candidate.from_dict(d) for d in self._candidates.values()]

    def update_candidate(self, candidate: Candidate) -> Candidate:
        self._candidates[candidate.id] = candidate.to_dict()
        self._flush()
        return candidate

    def update_candidates(self, candidates: Iterable[Candidate]) -> None:
        for c in candidates:
            self._candidates[c.id] = c.to_dict()
        self._flush()

    # Deletion log
    def append_deletion_log(self, entry: Dict[str, Any]) -> None:
        self._deletion_log.append(dict(entry))
        self._flush()

    def deletion_log(self) -> List[Dict[str, Any]]:
        return [dict(e) for e in self._deletion_log]
