import importlib
import pytest


pytestmark = pytest.mark.asyncio


class DummyBus:
    def __init__(self):
        self.events = []

    def log(self, event, **fields):
        self.events.append({'event': event, **fields})


def _setup(action_type='FLAG_FOR_REVIEW', results=None, dry_run=False):
    store_mod = importlib.import_module('storage.store')
    models = importlib.import_module('core.models')
    actions = importlib.import_module('core.actions')
    deleter = importlib.import_module('core.deleter')

    store = store_mod.MaintenanceStore()
    store.save_rule(models.Rule.from_dict({
        'id': 'r1', 'name': 'Cleanup', 'mediaType': 'MOVIE', 'actionType': action_type,
        'criteria': {'neverWatched': True},
    }))
    cands = []
    for i, title in enumerate(['One', 'Two', 'Three'], 1):
        cands.append(models.Candidate(
            id=f'c{i}', scan_id='s1', rule_id='r1', media_type=models.MediaType.MOVIE,
            external_rating_key=str(i), title=title, movie_manager_id=100 + i, file_size=10 * i,
            review_status=models.ReviewStatus.APPROVED, matched_rule={'id': 'r1', 'name': 'Cleanup'},
        ))
    store.add_candidates(cands)

    calls = []
    results = results or {}

    async def fake_delete(service, media_id, delete_files):
        calls.append(('delete', service, media_id, delete_files))
        return results.get(media_id) or models.ActionResult(success=True)

    async def fake_unmonitor(service, media_id):
        calls.append(('unmonitor', service, media_id))
        return models.ActionResult(success=True)

    bus = DummyBus()
    deps = deleter.DeleterDeps(
        store=store,
        actions=actions.ActionsDeps(
            delete_media=fake_delete, unmonitor_media=fake_unmonitor, event_bus=bus, debug_logging=False, dry_run=dry_run,
        ),
        event_bus=bus,
        debug_logging=False,
    )
    return store, deps, calls


async def test_one_failure_does_not_stop_the_batch():
    deleter = importlib.import_module('core.deleter')
    models = importlib.import_module('core.models')
    store, deps, calls = _setup(results={102: models.ActionResult(success=False, error='HTTP 500')})

    progress = []
    outcome = await deleter.execute(['c1', 'c2', 'c3'], True, 'alice', deps, on_progress=progress.append)
    assert (outcome.success, outcome.failed) == (2, 1)
    assert outcome.errors == ['Two: HTTP 500']
    assert progress == [33, 66, 100]
    assert len(calls) == 3

    assert store.get_candidate('c1').review_status == models.ReviewStatus.DELETED
    assert store.get_candidate('c1').action_taken == 'DELETED'
    failed = store.get_candidate('c2')
    assert failed.review_status == models.ReviewStatus.APPROVED
    assert failed.deletion_error == 'HTTP 500'

    log = store.deletion_log()
    assert [e['candidateId'] for e in log] == ['c1', 'c3']
    assert log[0]['actorId'] == 'alice'
    assert log[0]['deletedFrom'] == 'movie-manager'
    assert log[0]['filesDeleted'] is True
    assert log[0]['ruleName'] == 'Cleanup'


async def test_item_already_gone_counts_as_success():
    deleter = importlib.import_module('core.deleter')
    models = importlib.import_module('core.models')
    store, deps, _ = _setup(results={101: models.ActionResult(success=True, not_found=True)})
    outcome = await deleter.execute(['c1'], True, 'alice', deps)
    assert (outcome.success, outcome.failed) == (1, 0)
    assert store.deletion_log()[0]['alreadyGone'] is True
    assert store.get_candidate('c1').review_status == models.ReviewStatus.DELETED


async def test_rerun_is_idempotent_for_deleted_candidates():
    deleter = importlib.import_module('core.deleter')
    store, deps, calls = _setup()
    await deleter.execute(['c1'], True, 'alice', deps)
    again = await deleter.execute(['c1'], True, 'alice', deps)
    assert (again.success, again.failed) == (1, 0)
    assert len(calls) == 1
    assert len(store.deletion_log()) == 1


async def test_unknown_and_unapproved_candidates_fail():
    deleter = importlib.import_module('core.deleter')
    models = importlib.import_module('core.models')
    store, deps, calls = _setup()
    c2 = store.get_candidate('c2')
    c2.review_status = models.ReviewStatus.REJECTED
    store.update_candidate(c2)
    outcome = await deleter.execute(['nope', 'c2'], True, 'alice', deps)
    assert outcome.failed == 2
    assert outcome.errors == ['nope: candidate not found', 'Two: not approved (status REJECTED)']
    assert calls == []


async def test_unmonitor_and_keep_leaves_candidate_approved():
    deleter = importlib.import_module('core.deleter')
    models = importlib.import_module('core.models')
    store, deps, calls = _setup(action_type='UNMONITOR_AND_KEEP')
    outcome = await deleter.execute(['c1'], True, 'alice', deps)
    assert outcome.success == 1
    assert calls == [('unmonitor', 'movie-manager', 101)]
    cand = store.get_candidate('c1')
    assert cand.review_status == models.ReviewStatus.APPROVED
    assert cand.action_taken == 'UNMONITORED'
    assert store.deletion_log()[0]['filesDeleted'] is False


async def test_dry_run_changes_nothing():
    deleter = importlib.import_module('core.deleter')
    models = importlib.import_module('core.models')
    store, deps, calls = _setup(dry_run=True)
    outcome = await deleter.execute(['c1', 'c2'], True, 'alice', deps)
    assert outcome.success == 2
    assert calls == []
    assert store.get_candidate('c1').review_status == models.ReviewStatus.APPROVED
    assert store.deletion_log() == []


async def test_raising_action_is_recorded_as_failure():
    deleter = importlib.import_module('core.deleter')
    store, deps, _ = _setup()

    async def boom(service, media_id, delete_files):
        raise RuntimeError('connection reset')

    deps.actions.delete_media = boom
    outcome = await deleter.execute(['c1', 'c3'], False, 'bob', deps)
    assert outcome.failed == 2
    assert outcome.errors[0] == 'One: connection reset'


@pytest.mark.parametrize('action_type', ['AUTO_DELETE', 'UNMONITOR_AND_DELETE', 'UNMONITOR_AND_KEEP'])
async def test_episode_candidates_never_reach_the_series_manager(action_type):
    deleter = importlib.import_module('core.deleter')
    models = importlib.import_module('core.models')
    store, deps, calls = _setup(action_type=action_type)
    store.add_candidates([models.Candidate(
        id='e1', scan_id='s1', rule_id='r1', media_type=models.MediaType.EPISODE,
        external_rating_key='900', title='Pilot', series_manager_id=77,
        review_status=models.ReviewStatus.APPROVED, matched_rule={'id': 'r1', 'name': 'Cleanup'},
    )])

    outcome = await deleter.execute(['e1'], True, 'system', deps)
    assert (outcome.success, outcome.failed) == (0, 1)
    assert outcome.errors == ['Pilot: unsupported media type: EPISODE']
    assert calls == []
    cand = store.get_candidate('e1')
    assert cand.review_status == models.ReviewStatus.APPROVED
    assert cand.deletion_error == 'unsupported media type: EPISODE'
    assert store.deletion_log() == []
    assert any(e['event'] == 'action_refused' for e in deps.event_bus.events)
