import importlib
from datetime import datetime, timezone


def test_parse_datetime_accepts_epoch_iso_and_datetimes():
    utils = importlib.import_module('core.utils')
    assert utils.parse_datetime('1700000000') == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
    assert utils.parse_datetime(1700000000) == utils.parse_datetime('1700000000')
    assert utils.parse_datetime('2024-01-02T03:04:05Z') == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert utils.parse_datetime(datetime(2024, 1, 2)).tzinfo == timezone.utc


def test_parse_datetime_out_of_range_values_are_none():
    utils = importlib.import_module('core.utils')
    models = importlib.import_module('core.models')
    assert utils.parse_datetime('1e400') is None
    assert utils.parse_datetime(1e400) is None
    assert utils.parse_datetime('-1e20') is None
    assert utils.parse_datetime('not a date') is None
    item = models.MediaItem.from_dict({'ratingKey': '1', 'title': 'Heat', 'addedAt': '1e400', 'lastWatchedAt': '1e400'})
    assert item.added_at is None and item.last_watched_at is None
