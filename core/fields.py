from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from core.models import MediaType


STRING_OPERATORS = (
    'equals', 'notEquals', 'contains', 'notContains', 'startsWith', 'endsWith',
    'regex', 'in', 'notIn', 'null', 'notNull',
)
NUMBER_OPERATORS = (
    'equals', 'notEquals', 'greaterThan', 'greaterThanOrEqual', 'lessThan', 'lessThanOrEqual',
    'between', 'in', 'notIn', 'null', 'notNull',
)
DATE_OPERATORS = ('before', 'after', 'between', 'olderThan', 'newerThan', 'null', 'notNull')
BOOLEAN_OPERATORS = ('equals', 'notEquals', 'null', 'notNull')
ARRAY_OPERATORS = (
    'contains', 'notContains', 'containsAny', 'containsAll', 'isEmpty', 'isNotEmpty', 'null', 'notNull',
)
ENUM_OPERATORS = ('equals', 'notEquals', 'in', 'notIn', 'null', 'notNull')

OPERATORS_BY_TYPE: Dict[str, Tuple[str, ...]] = {
    'string': STRING_OPERATORS,
    'number': NUMBER_OPERATORS,
    'date': DATE_OPERATORS,
    'boolean': BOOLEAN_OPERATORS,
    'array': ARRAY_OPERATORS,
    'enum': ENUM_OPERATORS,
}

DATA_SOURCES = ('catalog', 'playback-stats', 'movie-manager', 'series-manager', 'request-manager')
CATEGORIES = ('metadata', 'playback', 'file', 'quality', 'external')

# Snapshot namespace attribute for each dotted field prefix
NAMESPACES = {
    'movieManager': 'movie_manager',
    'seriesManager': 'series_manager',
    'requestManager': 'request_manager',
}

OPERATOR_LABELS = {
    'equals': 'equals',
    'notEquals': 'not equals',
    'contains': 'contains',
    'notContains': 'does not contain',
    'startsWith': 'starts with',
    'endsWith': 'ends with',
    'regex': 'matches regex',
    'in': 'is one of',
    'notIn': 'is not one of',
    'greaterThan': 'greater than',
    'greaterThanOrEqual': 'greater than or equal to',
    'lessThan': 'less than',
    'lessThanOrEqual': 'less than or equal to',
    'between': 'between',
    'before': 'before',
    'after': 'after',
    'olderThan': 'older than',
    'newerThan': 'newer than',
    'null': 'is empty',
    'notNull': 'is not empty',
    'containsAny': 'contains any of',
    'containsAll': 'contains all of',
    'isEmpty': 'is empty',
    'isNotEmpty': 'is not empty',
}

_ALL = (MediaType.MOVIE, MediaType.TV_SERIES, MediaType.EPISODE)
_LIBRARY = (MediaType.MOVIE, MediaType.TV_SERIES)
_MOVIES = (MediaType.MOVIE,)
_SERIES = (MediaType.TV_SERIES, MediaType.EPISODE)


@dataclass(frozen=True)
class FieldDefinition:
    key: str
    label: str
    type: str
    data_source: str
    media_types: Tuple[MediaType, ...]
    allowed_operators: Tuple[str, ...]
    category: str
    enum_values: Tuple[Tuple[str, str], ...] = ()
    unit: Optional[str] = None
    description: Optional[str] = None
    # Precomputed accessor: namespace attribute on the snapshot (None for direct fields)
    namespace: Optional[str] = None
    attr: str = ''
    computed: bool = False

    def to_dict(self) -> Dict[str, object]:
        out: Dict[str, object] = {
            'key': self.key,
            'label': self.label,
            'type': self.type,
            'dataSource': self.data_source,
            'mediaTypes': [m.value for m in self.media_types],
            'allowedOperators': list(self.allowed_operators),
            'category': self.category,
        }
        if self.enum_values:
            out['enumValues'] = [{'value': v, 'label': lbl} for v, lbl in self.enum_values]
        if self.unit:
            out['unit'] = self.unit
        if self.description:
            out['description'] = self.description
        return out


def _snake(name: str) -> str:
    out = []
    for ch in name:
        if ch.isupper():
            out.append('_')
            out.append(ch.lower())
        else:
            out.append(ch)
    return ''.join(out)


def _define(
    key: str,
    label: str,
    type: str,
    data_source: str,
    media_types: Tuple[MediaType, ...],
    category: str,
    *,
    operators: Optional[Tuple[str, ...]] = None,
    enum_values: Tuple[Tuple[str, str], ...] = (),
    unit: Optional[str] = None,
    description: Optional[str] = None,
    computed: bool = False,
) -> FieldDefinition:
    namespace = None
    attr = _snake(key)
    if '.' in key:
        prefix, attr = key.split('.', 1)
        namespace = NAMESPACES[prefix]
    return FieldDefinition(
        key=key,
        label=label,
        type=type,
        data_source=data_source,
        media_types=media_types,
        allowed_operators=operators if operators is not None else OPERATORS_BY_TYPE[type],
        category=category,
        enum_values=enum_values,
        unit=unit,
        description=description,
        namespace=namespace,
        attr=attr,
        computed=computed,
    )


FIELD_DEFINITIONS: Tuple[FieldDefinition, ...] = (
    # Catalog metadata
    _define('title', 'Title', 'string', 'catalog', _ALL, 'metadata'),
    _define('year', 'Year', 'number', 'catalog', _ALL, 'metadata'),
    _define('libraryId', 'Library', 'string', 'catalog', _ALL, 'metadata'),
    _define('rating', 'Rating (User)', 'number', 'catalog', _ALL, 'metadata',
            description='User rating from 0 to 10'),
    _define('audienceRating', 'Audience Rating', 'number', 'catalog', _ALL, 'metadata',
            description='Audience rating from 0 to 10'),
    _define('contentRating', 'Content Rating', 'string', 'catalog', _ALL, 'metadata',
            description='Certification such as PG-13 or TV-MA'),
    _define('genres', 'Genres', 'array', 'catalog', _ALL, 'metadata'),
    _define('labels', 'Labels/Tags', 'array', 'catalog', _ALL, 'metadata'),
    # Playback statistics
    _define('playCount', 'Play Count', 'number', 'playback-stats', _ALL, 'playback'),
    _define('neverWatched', 'Never Watched', 'boolean', 'playback-stats', _ALL, 'playback',
            description='True when the play count is zero', computed=True),
    _define('lastWatchedAt', 'Last Watched Date', 'date', 'playback-stats', _ALL, 'playback', unit='days'),
    _define('addedAt', 'Date Added', 'date', 'catalog', _ALL, 'playback', unit='days'),
    _define('daysSinceAdded', 'Days Since Added', 'number', 'catalog', _ALL, 'playback',
            unit='days', computed=True),
    _define('daysSinceWatched', 'Days Since Last Watched', 'number', 'playback-stats', _ALL, 'playback',
            unit='days', computed=True),
    # File
    _define('fileSize', 'File Size', 'number', 'catalog', _ALL, 'file', unit='bytes'),
    _define('filePath', 'File Path', 'string', 'catalog', _ALL, 'file'),
    _define('duration', 'Duration', 'number', 'catalog', _ALL, 'file', unit='minutes'),
    # Quality
    _define('resolution', 'Resolution', 'enum', 'catalog', _ALL, 'quality',
            enum_values=(('4k', '4K'), ('1080', '1080p'), ('720', '720p'), ('sd', 'SD'))),
    _define('videoCodec', 'Video Codec', 'enum', 'catalog', _ALL, 'quality',
            enum_values=(('h264', 'H.264'), ('hevc', 'HEVC/H.265'), ('av1', 'AV1'),
                         ('mpeg4', 'MPEG-4'), ('mpeg2video', 'MPEG-2'))),
    _define('audioCodec', 'Audio Codec', 'enum', 'catalog', _ALL, 'quality',
            enum_values=(('aac', 'AAC'), ('ac3', 'AC3'), ('eac3', 'E-AC3'), ('dts', 'DTS'),
                         ('truehd', 'TrueHD'), ('flac', 'FLAC'), ('mp3', 'MP3'))),
    _define('container', 'Container Format', 'enum', 'catalog', _ALL, 'quality',
            enum_values=(('mkv', 'MKV'), ('mp4', 'MP4'), ('avi', 'AVI'), ('mov', 'MOV'), ('wmv', 'WMV'))),
    _define('bitrate', 'Bitrate', 'number', 'catalog', _ALL, 'quality', unit='kbps'),
    # Movie manager
    _define('movieManager.hasFile', 'Has File (Movie Manager)', 'boolean', 'movie-manager', _MOVIES, 'external'),
    _define('movieManager.monitored', 'Monitored (Movie Manager)', 'boolean', 'movie-manager', _MOVIES, 'external'),
    _define('movieManager.qualityProfileId', 'Quality Profile (Movie Manager)', 'number', 'movie-manager',
            _MOVIES, 'external', operators=('equals', 'notEquals', 'in', 'notIn', 'null', 'notNull')),
    _define('movieManager.minimumAvailability', 'Minimum Availability (Movie Manager)', 'enum', 'movie-manager',
            _MOVIES, 'external',
            enum_values=(('announced', 'Announced'), ('inCinemas', 'In Cinemas'),
                         ('released', 'Released'), ('preDB', 'PreDB'))),
    _define('movieManager.tmdbRating', 'TMDB Rating (Movie Manager)', 'number', 'movie-manager', _MOVIES, 'external'),
    _define('movieManager.tags', 'Tags (Movie Manager)', 'array', 'movie-manager', _MOVIES, 'external'),
    _define('movieManager.sizeOnDisk', 'Size On Disk (Movie Manager)', 'number', 'movie-manager', _MOVIES,
            'external', unit='bytes'),
    # Series manager
    _define('seriesManager.monitored', 'Monitored (Series Manager)', 'boolean', 'series-manager', _SERIES,
            'external'),
    _define('seriesManager.status', 'Series Status (Series Manager)', 'enum', 'series-manager', _SERIES,
            'external', enum_values=(('continuing', 'Continuing'), ('ended', 'Ended'),
                                     ('upcoming', 'Upcoming'), ('deleted', 'Deleted'))),
    _define('seriesManager.episodeFileCount', 'Episode File Count (Series Manager)', 'number', 'series-manager',
            _SERIES, 'external'),
    _define('seriesManager.percentOfEpisodes', 'Percent Complete (Series Manager)', 'number', 'series-manager',
            _SERIES, 'external', unit='percent'),
    _define('seriesManager.seasonCount', 'Season Count (Series Manager)', 'number', 'series-manager', _SERIES,
            'external'),
    _define('seriesManager.tags', 'Tags (Series Manager)', 'array', 'series-manager', _SERIES, 'external'),
    _define('seriesManager.sizeOnDisk', 'Size On Disk (Series Manager)', 'number', 'series-manager', _SERIES,
            'external', unit='bytes'),
    # Request manager
    _define('requestManager.requestedBy', 'Requested By', 'string', 'request-manager', _LIBRARY, 'external'),
    _define('requestManager.requestedAt', 'Requested Date', 'date', 'request-manager', _LIBRARY, 'external',
            unit='days'),
    _define('requestManager.status', 'Request Status', 'enum', 'request-manager', _LIBRARY, 'external',
            enum_values=(('pending', 'Pending'), ('approved', 'Approved'), ('declined', 'Declined'),
                         ('available', 'Available'))),
)

_BY_KEY: Dict[str, FieldDefinition] = {f.key: f for f in FIELD_DEFINITIONS}


def check_registry(definitions: Tuple[FieldDefinition, ...] = FIELD_DEFINITIONS) -> List[str]:
    problems: List[str] = []
    seen = set()
    for d in definitions:
        if d.key in seen:
            problems.append(f'duplicate field key {d.key}')
        seen.add(d.key)
        legal = OPERATORS_BY_TYPE.get(d.type)
        if legal is None:
            problems.append(f'{d.key}: unknown type {d.type}')
            continue
        illegal = [op for op in d.allowed_operators if op not in legal]
        if illegal:
            problems.append(f'{d.key}: operators {illegal} not legal for type {d.type}')
        if d.data_source not in DATA_SOURCES:
            problems.append(f'{d.key}: unknown data source {d.data_source}')
        if d.category not in CATEGORIES:
            problems.append(f'{d.key}: unknown category {d.category}')
    return problems


_problems = check_registry()
if _problems:
    raise RuntimeError('Invalid field registry: ' + '; '.join(_problems))


def definition_for(key: str) -> Optional[FieldDefinition]:
    return _BY_KEY.get(key)


def operators_for_type(type: str) -> Tuple[str, ...]:
    return OPERATORS_BY_TYPE.get(type, ())


def fields_for_media_type(media_type: MediaType) -> List[FieldDefinition]:
    return [f for f in FIELD_DEFINITIONS if media_type in f.media_types]


def fields_grouped_by_category(media_type: MediaType) -> Dict[str, List[FieldDefinition]]:
    grouped: Dict[str, List[FieldDefinition]] = {c: [] for c in CATEGORIES}
    for f in fields_for_media_type(media_type):
        grouped[f.category].append(f)
    return grouped


def fields_grouped_by_source(media_type: MediaType) -> Dict[str, List[FieldDefinition]]:
    grouped: Dict[str, List[FieldDefinition]] = {s: [] for s in DATA_SOURCES}
    for f in fields_for_media_type(media_type):
        grouped[f.data_source].append(f)
    return grouped


def format_operator_label(operator: str) -> str:
    return OPERATOR_LABELS.get(operator, operator)
