import importlib
import pytest


pytestmark = pytest.mark.asyncio


class DummyBus:
    def __init__(self):
        self.events = []

    def log(self, event, **fields):
        self.events.append({'event': event, **fields})


def _store_with_rule(media_type='MOVIE', enabled=True, criteria=None, action_type='FLAG_FOR_REVIEW'):
    store_mod = importlib.import_module('storage.store')
    models = importlib.import_module('core.models')
    store = store_mod.MaintenanceStore()
    store.save_rule(models.Rule.from_dict({
        'id': 'r1',
        'name': 'Unwatched',
        'mediaType': media_type,
        'enabled': enabled,
        'actionType': action_type,
        'criteria': criteria or {
            'type': 'group', 'operator': 'AND',
            'conditions': [{'type': 'condition', 'field': 'neverWatched', 'operator': 'equals', 'value': True}],
        },
    }))
    return store


def _deps(store, library=None, movies=None, series=None, requests=None, **kw):
    scanner = importlib.import_module('core.scanner')

    async def fetch_library(media_type):
        if isinstance(library, Exception):
            raise library
        return library or []

    def _fetcher(value):
        if value is None:
            return None

        async def _f():
            if isinstance(value, Exception):
                raise value
            return value
        return _f

    return scanner.ScannerDeps(
        store=store,
        fetch_library=fetch_library,
        fetch_movie_manager=_fetcher(movies),
        fetch_series_manager=_fetcher(series),
        fetch_request_manager=_fetcher(requests),
        event_bus=DummyBus(),
        debug_logging=False,
        **kw,
    )


LIBRARY = [
    {'ratingKey': '1', 'title': 'The Matrix', 'year': 1999, 'playCount': 0, 'fileSize': 100},
    {'ratingKey': '2', 'title': 'Heat', 'year': 1995, 'playCount': 4, 'fileSize': 200},
    {'ratingKey': '3', 'title': 'Alien', 'year': 1979, 'playCount': 0, 'fileSize': 300},
]


async def test_scan_flags_matching_items_and_records_run():
    scanner = importlib.import_module('core.scanner')
    models = importlib.import_module('core.models')
    store = _store_with_rule()
    movies = [{'id': 10, 'title': 'The Matrix', 'year': 2000, 'tmdbId': 603, 'monitored': True, 'extra': 'x'}]
    deps = _deps(store, library=LIBRARY, movies=movies)

    result = await scanner.scan('r1', deps)
    assert result.items_scanned == 3
    assert result.items_flagged == 2
    candidates = store.get_candidates(result.candidate_ids)
    assert [c.title for c in candidates] == ['The Matrix', 'Alien']
    assert candidates[0].movie_manager_id == 10
    assert candidates[0].tmdb_id == 603
    assert candidates[0].review_status == models.ReviewStatus.PENDING
    assert candidates[0].matched_rule['name'] == 'Unwatched'
    assert candidates[1].movie_manager_id is None

    run = store.get_scan(result.scan_id)
    assert run.status == models.ScanStatus.COMPLETED
    assert (run.items_scanned, run.items_flagged) == (3, 2)
    assert store.get_rule('r1').last_run_at is not None
    events = [e['event'] for e in deps.event_bus.events]
    assert events[0] == 'scan_started' and events[-1] == 'scan_completed'
    assert events.count('candidate_flagged') == 2


async def test_manager_namespace_keeps_registry_fields_only():
    scanner = importlib.import_module('core.scanner')
    store = _store_with_rule(criteria={
        'type': 'group', 'operator': 'AND',
        'conditions': [{'type': 'condition', 'field': 'movieManager.monitored', 'operator': 'equals', 'value': True}],
    })
    movies = [{'id': 10, 'title': 'Heat', 'year': 1995, 'monitored': True, 'path': '/movies/heat'}]
    result = await scanner.scan('r1', _deps(store, library=LIBRARY, movies=movies))
    assert result.items_flagged == 1
    assert scanner.build_namespace('movie_manager', movies[0]) == {'monitored': True}


async def test_failed_library_fetch_marks_run_failed_and_raises():
    scanner = importlib.import_module('core.scanner')
    models = importlib.import_module('core.models')
    store = _store_with_rule()
    deps = _deps(store, library=RuntimeError('tautulli down'))
    with pytest.raises(RuntimeError):
        await scanner.scan('r1', deps)
    runs = store.list_scans('r1')
    assert len(runs) == 1
    assert runs[0].status == models.ScanStatus.FAILED
    assert runs[0].error == 'tautulli down'
    assert store.list_candidates() == []
    assert deps.event_bus.events[-1]['event'] == 'scan_failed'


async def test_optional_provider_failure_degrades():
    scanner = importlib.import_module('core.scanner')
    store = _store_with_rule()
    deps = _deps(store, library=LIBRARY, movies=RuntimeError('radarr 500'))
    result = await scanner.scan('r1', deps)
    assert result.items_flagged == 2
    assert any(e['event'] == 'provider_fetch_failed' for e in deps.event_bus.events)


async def test_unconfigured_movie_manager_leaves_fields_missing():
    scanner = importlib.import_module('core.scanner')
    models = importlib.import_module('core.models')
    store = _store_with_rule(criteria={
        'type': 'group', 'operator': 'AND',
        'conditions': [{'type': 'condition', 'field': 'movieManager.hasFile', 'operator': 'null'}],
    })
    deps = _deps(store, library=LIBRARY, movies=models.NOT_CONFIGURED)
    result = await scanner.scan('r1', deps)
    assert result.items_flagged == 3
    assert all(c.movie_manager_id is None for c in store.list_candidates())


async def test_configuration_errors_raise_before_any_run():
    scanner = importlib.import_module('core.scanner')
    errors = importlib.import_module('core.errors')
    store = _store_with_rule(enabled=False)
    with pytest.raises(errors.RuleDisabledError):
        await scanner.scan('r1', _deps(store, library=LIBRARY))
    with pytest.raises(errors.RuleNotFoundError):
        await scanner.scan('missing', _deps(store, library=LIBRARY))
    enabled = _store_with_rule()
    deps = _deps(enabled, library=LIBRARY)
    deps.fetch_library = None
    with pytest.raises(errors.IntegrationNotConfiguredError):
        await scanner.scan('r1', deps)
    assert store.list_scans() == [] and enabled.list_scans() == []


async def test_progress_reports_on_interval_and_completion():
    scanner = importlib.import_module('core.scanner')
    store = _store_with_rule()
    library = [{'ratingKey': str(i), 'title': f'Movie {i}', 'playCount': 1} for i in range(25)]
    seen = []
    await scanner.scan('r1', _deps(store, library=library, progress_interval=10), on_progress=seen.append)
    assert seen == [40, 80, 100]

    empty = []
    await scanner.scan('r1', _deps(store, library=[]), on_progress=empty.append)
    assert empty == [100]


async def test_episodes_match_their_parent_series_and_requests_by_tmdb():
    scanner = importlib.import_module('core.scanner')
    store = _store_with_rule(media_type='EPISODE', criteria={
        'type': 'group', 'operator': 'AND',
        'conditions': [{'type': 'condition', 'field': 'seriesManager.status', 'operator': 'equals', 'value': 'ended'}],
    })
    library = [{'ratingKey': 'e1', 'title': 'Pilot', 'seriesTitle': 'Lost', 'playCount': 0}]
    series = [{'id': 77, 'title': 'Lost', 'year': 2004, 'status': 'ended', 'tvdbId': 73739, 'tmdbId': 4607}]
    requests = [{'title': 'Something Else', 'tmdbId': 4607, 'mediaType': 'tv', 'requestedBy': 'sam', 'status': 'available'}]
    result = await scanner.scan('r1', _deps(store, library=library, series=series, requests=requests))
    assert result.items_flagged == 1
    cand = store.get_candidate(result.candidate_ids[0])
    assert cand.series_manager_id == 77
    assert cand.tvdb_id == 73739

    rec = scanner.merge_items(
        store.get_rule('r1'), library, None, series, requests, _deps(store)
    )[0]
    assert rec.request_manager == {'requestedBy': 'sam', 'status': 'available'}


async def test_requests_only_match_their_own_media_kind():
    scanner = importlib.import_module('core.scanner')
    store = _store_with_rule()
    library = [{'ratingKey': '2', 'title': 'Heat', 'year': 1995, 'playCount': 0}]
    movies = [{'id': 5, 'title': 'Heat', 'year': 1995, 'tmdbId': 949}]
    requests = [
        {'title': 'Heat', 'year': 1995, 'tmdbId': 949, 'mediaType': 'tv', 'requestedBy': 'bob', 'status': 'available'},
    ]
    rule = store.get_rule('r1')

    rec = scanner.merge_items(rule, library, movies, None, requests, _deps(store))[0]
    assert rec.tmdb_id == 949
    assert rec.request_manager is None

    requests.append({'title': 'Heat', 'year': 1995, 'tmdbId': 949, 'mediaType': 'movie', 'requestedBy': 'amy', 'status': 'pending'})
    rec = scanner.merge_items(rule, library, movies, None, requests, _deps(store))[0]
    assert rec.request_manager == {'requestedBy': 'amy', 'status': 'pending'}
