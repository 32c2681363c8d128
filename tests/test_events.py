import importlib
import json


class FakeLogger:
    def __init__(self):
        self.lines = []

    def info(self, msg):
        self.lines.append(str(msg))


def test_event_bus_logs_structured_json_with_dry_run_flag():
    events = importlib.import_module('core.events')
    fake_logger = FakeLogger()
    bus = events.EventBus(structured_logs=True, dry_run=True, debug_logging=False, logger=fake_logger)

    bus.log('candidate_flagged', rule_id='r1', candidate_id='c1', title='T')
    payload = json.loads(fake_logger.lines[0])
    assert payload == {'event': 'candidate_flagged', 'rule_id': 'r1', 'candidate_id': 'c1', 'title': 'T', 'dry_run': True}


def test_event_bus_plain_logs_and_history_filter():
    events = importlib.import_module('core.events')
    fake_logger = FakeLogger()
    bus = events.EventBus(structured_logs=False, dry_run=False, debug_logging=False, logger=fake_logger, history_size=2)

    bus.log('scan_started', rule_id='r1')
    bus.log('scan_completed', rule_id='r1')
    bus.log('scan_started', rule_id='r2')
    assert fake_logger.lines[0].startswith('scan_started:')
    # history is bounded
    assert [e['rule_id'] for e in bus.recent()] == ['r1', 'r2']
    assert [e['rule_id'] for e in bus.recent('scan_started')] == ['r2']


def test_event_bus_serializes_non_json_values():
    events = importlib.import_module('core.events')
    models = importlib.import_module('core.models')
    fake_logger = FakeLogger()
    bus = events.EventBus(structured_logs=True, dry_run=False, debug_logging=False, logger=fake_logger)

    bus.log('rule_saved', media_type=models.MediaType.MOVIE)
    assert '"rule_saved"' in fake_logger.lines[0]
