import importlib
import json


def _write(path, data):
    with open(path, 'w') as f:
        f.write(data)


def _seed(store_path):
    store_mod = importlib.import_module('storage.store')
    models = importlib.import_module('core.models')
    store = store_mod.MaintenanceStore(str(store_path))
    store.save_rule(models.Rule.from_dict({
        'id': 'r1', 'name': 'Unwatched', 'mediaType': 'MOVIE', 'criteria': {'neverWatched': True},
    }))
    store.add_candidates([
        models.Candidate(id='c1', scan_id='s1', rule_id='r1', media_type=models.MediaType.MOVIE,
                         external_rating_key='1', title='Heat', file_size=10),
        models.Candidate(id='c2', scan_id='s1', rule_id='r1', media_type=models.MediaType.MOVIE,
                         external_rating_key='2', title='Alien', file_size=20),
    ])
    return store


def test_cli_rules_and_candidates(monkeypatch, capsys, tmp_path):
    cli = importlib.import_module('cli')
    store_path = tmp_path / 'maintenance.json'
    monkeypatch.setenv('STORE_PATH', str(store_path))
    _seed(store_path)

    cli.cmd_rules(type('N', (), {})())
    out = json.loads(capsys.readouterr().out)
    assert out[0]['id'] == 'r1' and out[0]['complexity'] == 'simple'

    ns = type('N', (), {'rule': 'r1', 'scan': None, 'status': 'PENDING', 'media_type': None, 'page': 1, 'page_size': 25})()
    cli.cmd_candidates(ns)
    out = json.loads(capsys.readouterr().out)
    assert out['total'] == 2
    assert {c['title'] for c in out['candidates']} == {'Heat', 'Alien'}


def test_cli_review_then_status(monkeypatch, capsys, tmp_path):
    cli = importlib.import_module('cli')
    store_path = tmp_path / 'maintenance.json'
    monkeypatch.setenv('STORE_PATH', str(store_path))
    _seed(store_path)

    cli.cmd_review(type('N', (), {'ids': ['c1'], 'status': 'APPROVED', 'actor': 'cli', 'note': None})())
    assert json.loads(capsys.readouterr().out) == {'updated': 1}

    cli.cmd_status(type('N', (), {'rule_id': None})())
    stats = json.loads(capsys.readouterr().out)
    assert stats['candidates']['APPROVED'] == 1
    assert stats['potentialSpaceSavings'] == 30

    cli.cmd_status(type('N', (), {'rule_id': 'r1'})())
    status = json.loads(capsys.readouterr().out)
    assert status['latestScan'] is None and status['job'] is None


def test_cli_simulate_explains_conditions(capsys, tmp_path):
    cli = importlib.import_module('cli')
    item_path = tmp_path / 'item.json'
    criteria_path = tmp_path / 'criteria.json'
    _write(item_path, json.dumps({'ratingKey': '1', 'title': 'Heat', 'year': 1995, 'playCount': 0, 'fileSize': 5 * 1024 ** 3}))
    _write(criteria_path, json.dumps({
        'type': 'group', 'operator': 'AND', 'conditions': [
            {'type': 'condition', 'field': 'neverWatched', 'operator': 'equals', 'value': True},
            {'type': 'condition', 'field': 'fileSize', 'operator': 'greaterThan', 'value': 10, 'valueUnit': 'GB'},
        ],
    }))
    cli.cmd_simulate(type('N', (), {'item_json': str(item_path), 'criteria_json': str(criteria_path)})())
    out = json.loads(capsys.readouterr().out)
    assert out['matches'] is False
    assert [c['matched'] for c in out['conditions']] == [True, False]
    assert out['conditions'][1]['actual'] == 5 * 1024 ** 3


def test_cli_fields(capsys):
    cli = importlib.import_module('cli')
    cli.cmd_fields(type('N', (), {'media_type': 'TV_SERIES'})())
    out = json.loads(capsys.readouterr().out)
    keys = {f['key'] for f in out['external']}
    assert 'seriesManager.status' in keys and 'movieManager.hasFile' not in keys
