import importlib
import json
from datetime import datetime, timedelta, timezone


def _rule(rule_id='r1'):
    models = importlib.import_module('core.models')
    return models.Rule.from_dict({
        'id': rule_id, 'name': 'Unwatched', 'mediaType': 'MOVIE', 'schedule': '0 3 * * *',
        'criteria': {'type': 'group', 'operator': 'OR', 'conditions': [
            {'type': 'condition', 'id': 'k1', 'field': 'fileSize', 'operator': 'greaterThan', 'value': 5, 'valueUnit': 'GB'},
        ]},
    })


def test_store_persists_across_reloads(tmp_path):
    store_mod = importlib.import_module('storage.store')
    models = importlib.import_module('core.models')
    path = tmp_path / 'data' / 'maintenance.json'

    store = store_mod.MaintenanceStore(str(path))
    store.save_rule(_rule())
    started = datetime(2024, 1, 1, tzinfo=timezone.utc)
    store.save_scan(models.ScanRun(id='s1', rule_id='r1', status=models.ScanStatus.COMPLETED, started_at=started))
    store.add_candidates([models.Candidate(
        id='c1', scan_id='s1', rule_id='r1', media_type=models.MediaType.MOVIE,
        external_rating_key='9', title='Heat', year=1995, flagged_at=started,
    )])
    store.append_deletion_log({'candidateId': 'c1', 'action': 'DELETED'})
    assert path.exists()
    assert not (tmp_path / 'data' / 'maintenance.json.tmp').exists()

    reloaded = store_mod.MaintenanceStore(str(path))
    rule = reloaded.get_rule('r1')
    assert rule.criteria.operator == 'OR'
    assert rule.criteria.conditions[0].id == 'k1'
    assert rule.criteria.conditions[0].value_unit == 'GB'
    assert reloaded.get_scan('s1').started_at == started
    cand = reloaded.get_candidate('c1')
    assert cand.year == 1995 and cand.review_status == models.ReviewStatus.PENDING
    assert reloaded.deletion_log() == [{'candidateId': 'c1', 'action': 'DELETED'}]


def test_store_ignores_corrupt_file(tmp_path):
    store_mod = importlib.import_module('storage.store')
    path = tmp_path / 'maintenance.json'
    path.write_text('{not json')
    store = store_mod.MaintenanceStore(str(path))
    assert store.list_rules() == []
    store.save_rule(_rule())
    assert json.loads(path.read_text())['rules']['r1']['name'] == 'Unwatched'


def test_scans_are_listed_newest_first():
    store_mod = importlib.import_module('storage.store')
    models = importlib.import_module('core.models')
    store = store_mod.MaintenanceStore()
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for i in range(3):
        store.save_scan(models.ScanRun(
            id=f's{i}', rule_id='r1' if i < 2 else 'r2', status=models.ScanStatus.COMPLETED,
            started_at=base + timedelta(days=i),
        ))
    assert [s.id for s in store.list_scans()] == ['s2', 's1', 's0']
    assert store.latest_scan('r1').id == 's1'
    assert store.latest_scan('r3') is None
    assert [s.id for s in store.list_scans(limit=1)] == ['s2']


def test_handed_out_records_are_copies():
    store_mod = importlib.import_module('storage.store')
    models = importlib.import_module('core.models')
    store = store_mod.MaintenanceStore()
    store.add_candidates([models.Candidate(
        id='c1', scan_id='s1', rule_id='r1', media_type=models.MediaType.MOVIE, external_rating_key='1', title='A',
    )])
    cand = store.get_candidate('c1')
    cand.review_status = models.ReviewStatus.APPROVED
    assert store.get_candidate('c1').review_status == models.ReviewStatus.PENDING
    store.update_candidate(cand)
    assert store.get_candidate('c1').review_status == models.ReviewStatus.APPROVED
    assert store.get_candidates(['c1', 'missing'])[0].id == 'c1'
