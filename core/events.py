from __future__ import annotations

import json
import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional


class EventBus:
    def __init__(
        self,
        *,
        structured_logs: bool,
        dry_run: bool,
        debug_logging: bool,
        logger: Optional[Any] = None,
        history_size: int = 200,
    ) -> None:
        self.structured_logs = structured_logs
        self.dry_run = dry_run
        self.debug_logging = debug_logging
        self.logger = logger or logging.getLogger('library_maintainer.events')
        self.history: Deque[Dict[str, Any]] = deque(maxlen=history_size)

    def log(self, event: str, **fields) -> None:
        payload = {"event": event, **fields}
        if self.dry_run:
            payload.setdefault('dry_run', True)
        self.history.append(payload)
        try:
            if self.structured_logs:
                self.logger.info(json.dumps(payload, ensure_ascii=False, default=str))
            else:
                self.logger.info(f"{event}: {fields}")
        except Exception:
            self.logger.info(str(payload))

    def recent(self, event: Optional[str] = None) -> List[Dict[str, Any]]:
        return [e for e in self.history if event is None or e.get('event') == event]
