import importlib


def test_normalize_title():
    matching = importlib.import_module('core.matching')
    assert matching.normalize_title("  Schindler's   List!! ") == 'schindlers list'
    assert matching.normalize_title('Spider-Man: No_Way  Home') == 'spiderman noway home'
    assert matching.normalize_title(None) == ''


def test_year_tolerance_window():
    matching = importlib.import_module('core.matching')
    pool = [{'id': 1, 'title': 'The Matrix', 'year': 2000}]
    assert matching.find_match({'title': 'the matrix', 'year': 1999}, pool).record['id'] == 1
    assert matching.find_match({'title': 'The Matrix', 'year': 2005}, pool) is None
    assert matching.find_match({'title': 'The Matrix', 'year': 2002}, pool, year_tolerance=2) is not None


def test_closest_year_wins_among_remakes():
    matching = importlib.import_module('core.matching')
    pool = [
        {'id': 1, 'title': 'Dune', 'year': 1984},
        {'id': 2, 'title': 'Dune', 'year': 2021},
        {'id': 3, 'title': 'Dune', 'year': 2020},
    ]
    m = matching.MediaMatcher(pool).find_match({'title': 'Dune', 'year': 2021})
    assert m.record['id'] == 2 and m.year_delta == 0


def test_missing_year_falls_back_to_title():
    matching = importlib.import_module('core.matching')
    models = importlib.import_module('core.models')
    pool = [{'id': 9, 'title': 'Alien', 'year': 1979}]
    item = models.MediaItem(rating_key='1', title='Alien', media_type=models.MediaType.MOVIE)
    m = matching.find_match(item, pool)
    assert m.record['id'] == 9 and m.year_delta is None
    # Pool record without a year also matches on title
    assert matching.find_match({'title': 'Alien', 'year': 1979}, [{'id': 4, 'title': 'Alien'}]).record['id'] == 4


def test_close_matches_for_diagnostics():
    matching = importlib.import_module('core.matching')
    pool = [
        {'title': 'Star Wars', 'year': 1977},
        {'title': 'Star Trek', 'year': 2009},
        {'title': 'Heat', 'year': 1995},
    ]
    close = matching.find_close_matches('Star Wars: A New Hope', pool, limit=5, prefix_len=5)
    assert {c['title'] for c in close} == {'Star Wars', 'Star Trek'}
    assert matching.find_close_matches('Star', pool, limit=1) == [pool[0]]
    assert matching.find_close_matches('', pool) == []
