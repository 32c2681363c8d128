import importlib

import pytest


def test_registry_is_consistent():
    fields = importlib.import_module('core.fields')
    assert fields.check_registry() == []
    keys = [f.key for f in fields.FIELD_DEFINITIONS]
    assert len(keys) == len(set(keys))


def test_operators_are_legal_for_each_type():
    fields = importlib.import_module('core.fields')
    for f in fields.FIELD_DEFINITIONS:
        assert set(f.allowed_operators) <= set(fields.operators_for_type(f.type)), f.key


def test_duplicate_key_is_reported():
    fields = importlib.import_module('core.fields')
    title = fields.definition_for('title')
    problems = fields.check_registry((title, title))
    assert problems == ['duplicate field key title']


def test_fields_for_media_type_filters_manager_namespaces():
    fields = importlib.import_module('core.fields')
    models = importlib.import_module('core.models')
    movie_keys = {f.key for f in fields.fields_for_media_type(models.MediaType.MOVIE)}
    series_keys = {f.key for f in fields.fields_for_media_type(models.MediaType.TV_SERIES)}
    episode_keys = {f.key for f in fields.fields_for_media_type(models.MediaType.EPISODE)}
    assert 'movieManager.hasFile' in movie_keys
    assert 'seriesManager.status' not in movie_keys
    assert 'seriesManager.status' in series_keys
    assert 'movieManager.hasFile' not in series_keys
    assert 'requestManager.requestedBy' not in episode_keys
    assert 'playCount' in episode_keys


def test_grouping_keeps_every_category_and_source():
    fields = importlib.import_module('core.fields')
    models = importlib.import_module('core.models')
    by_cat = fields.fields_grouped_by_category(models.MediaType.MOVIE)
    by_src = fields.fields_grouped_by_source(models.MediaType.MOVIE)
    assert list(by_cat) == list(fields.CATEGORIES)
    assert list(by_src) == list(fields.DATA_SOURCES)
    assert by_src['series-manager'] == []
    assert sum(len(v) for v in by_cat.values()) == len(fields.fields_for_media_type(models.MediaType.MOVIE))


def test_quality_profile_has_restricted_operators():
    fields = importlib.import_module('core.fields')
    qp = fields.definition_for('movieManager.qualityProfileId')
    assert qp.type == 'number'
    assert 'greaterThan' not in qp.allowed_operators
    assert qp.namespace == 'movie_manager' and qp.attr == 'qualityProfileId'


@pytest.mark.parametrize('op,label', [('olderThan', 'older than'), ('containsAny', 'contains any of'), ('weird', 'weird')])
def test_format_operator_label(op, label):
    fields = importlib.import_module('core.fields')
    assert fields.format_operator_label(op) == label


def test_field_to_dict_shape():
    fields = importlib.import_module('core.fields')
    data = fields.definition_for('resolution').to_dict()
    assert data['dataSource'] == 'catalog'
    assert {'value': '4k', 'label': '4K'} in data['enumValues']
    assert 'unit' not in data
    assert fields.definition_for('lastWatchedAt').attr == 'last_watched_at'
