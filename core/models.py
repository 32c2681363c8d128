from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from core.utils import isoformat, parse_datetime


class MediaType(str, Enum):
    MOVIE = 'MOVIE'
    TV_SERIES = 'TV_SERIES'
    EPISODE = 'EPISODE'


class ActionType(str, Enum):
    FLAG_FOR_REVIEW = 'FLAG_FOR_REVIEW'
    AUTO_DELETE = 'AUTO_DELETE'
    UNMONITOR_AND_DELETE = 'UNMONITOR_AND_DELETE'
    UNMONITOR_AND_KEEP = 'UNMONITOR_AND_KEEP'
    DO_NOTHING = 'DO_NOTHING'


# Action types that are executed without a human approving the candidates
AUTO_ACTION_TYPES = (
    ActionType.AUTO_DELETE,
    ActionType.UNMONITOR_AND_DELETE,
    ActionType.UNMONITOR_AND_KEEP,
)


class ReviewStatus(str, Enum):
    PENDING = 'PENDING'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'
    DELETED = 'DELETED'


class ScanStatus(str, Enum):
    RUNNING = 'RUNNING'
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'


class _NotConfigured:
    def __repr__(self) -> str:
        return 'NOT_CONFIGURED'

    def __bool__(self) -> bool:
        return False


# Returned by optional provider fetchers whose integration has no endpoint configured
NOT_CONFIGURED = _NotConfigured()


@dataclass
class MediaItem:
    rating_key: str
    title: str
    media_type: MediaType
    year: Optional[int] = None
    library_id: Optional[str] = None
    play_count: int = 0
    last_watched_at: Optional[datetime] = None
    added_at: Optional[datetime] = None
    file_size: Optional[int] = None
    file_path: Optional[str] = None
    duration: Optional[int] = None
    resolution: Optional[str] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    container: Optional[str] = None
    bitrate: Optional[int] = None
    rating: Optional[float] = None
    audience_rating: Optional[float] = None
    content_rating: Optional[str] = None
    genres: List[str] = field(default_factory=list)
    labels: List[str] = field(default_factory=list)
    # Provider namespaces; None when the integration is unconfigured or nothing matched
    movie_manager: Optional[Dict[str, Any]] = None
    series_manager: Optional[Dict[str, Any]] = None
    request_manager: Optional[Dict[str, Any]] = None
    movie_manager_id: Optional[int] = None
    series_manager_id: Optional[int] = None
    tmdb_id: Optional[int] = None
    tvdb_id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MediaItem':
        def _ns(key: str) -> Optional[Dict[str, Any]]:
            val = data.get(key)
            return dict(val) if isinstance(val, dict) else None

        return cls(
            rating_key=str(data.get('ratingKey') or data.get('id') or ''),
            title=str(data.get('title') or ''),
            media_type=MediaType(data.get('mediaType') or MediaType.MOVIE.value),
            year=data.get('year'),
            library_id=str(data['libraryId']) if data.get('libraryId') is not None else None,
            play_count=int(data.get('playCount') or 0),
            last_watched_at=parse_datetime(data.get('lastWatchedAt')),
            added_at=parse_datetime(data.get('addedAt')),
            file_size=data.get('fileSize'),
            file_path=data.get('filePath'),
            duration=data.get('duration'),
            resolution=data.get('resolution'),
            video_codec=data.get('videoCodec'),
            audio_codec=data.get('audioCodec'),
            container=data.get('container'),
            bitrate=data.get('bitrate'),
            rating=data.get('rating'),
            audience_rating=data.get('audienceRating'),
            content_rating=data.get('contentRating'),
            genres=list(data.get('genres') or []),
            labels=list(data.get('labels') or []),
            movie_manager=_ns('movieManager'),
            series_manager=_ns('seriesManager'),
            request_manager=_ns('requestManager'),
        )


@dataclass
class Rule:
    id: str
    name: str
    media_type: MediaType
    criteria: Any  # core.criteria.Group
    action_type: ActionType = ActionType.FLAG_FOR_REVIEW
    enabled: bool = True
    description: Optional[str] = None
    action_delay_days: Optional[int] = None
    schedule: Optional[str] = None
    last_run_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        from core.criteria import criteria_to_dict

        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'enabled': self.enabled,
            'mediaType': self.media_type.value,
            'criteria': criteria_to_dict(self.criteria),
            'actionType': self.action_type.value,
            'actionDelayDays': self.action_delay_days,
            'schedule': self.schedule,
            'lastRunAt': isoformat(self.last_run_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Rule':
        from core.criteria import parse_criteria

        delay = data.get('actionDelayDays')
        return cls(
            id=str(data['id']),
            name=str(data.get('name') or data['id']),
            description=data.get('description'),
            enabled=bool(data.get('enabled', True)),
            media_type=MediaType(data.get('mediaType') or MediaType.MOVIE.value),
            criteria=parse_criteria(data.get('criteria') or {}),
            action_type=ActionType(data.get('actionType') or ActionType.FLAG_FOR_REVIEW.value),
            action_delay_days=int(delay) if delay is not None else None,
            schedule=data.get('schedule') or None,
            last_run_at=parse_datetime(data.get('lastRunAt')),
        )


@dataclass
class ScanRun:
    id: str
    rule_id: str
    status: ScanStatus
    started_at: datetime
    trigger: str = 'manual'
    completed_at: Optional[datetime] = None
    items_scanned: int = 0
    items_flagged: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'ruleId': self.rule_id,
            'status': self.status.value,
            'startedAt': isoformat(self.started_at),
            'completedAt': isoformat(self.completed_at),
            'itemsScanned': self.items_scanned,
            'itemsFlagged': self.items_flagged,
            'error': self.error,
            'trigger': self.trigger,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScanRun':
        return cls(
            id=data['id'],
            rule_id=data['ruleId'],
            status=ScanStatus(data['status']),
            started_at=parse_datetime(data.get('startedAt')),
            completed_at=parse_datetime(data.get('completedAt')),
            items_scanned=int(data.get('itemsScanned') or 0),
            items_flagged=int(data.get('itemsFlagged') or 0),
            error=data.get('error'),
            trigger=data.get('trigger') or 'manual',
        )


@dataclass
class Candidate:
    id: str
    scan_id: str
    rule_id: str
    media_type: MediaType
    external_rating_key: str
    title: str
    year: Optional[int] = None
    movie_manager_id: Optional[int] = None
    series_manager_id: Optional[int] = None
    tmdb_id: Optional[int] = None
    tvdb_id: Optional[int] = None
    file_size: Optional[int] = None
    play_count: int = 0
    last_watched_at: Optional[datetime] = None
    added_at: Optional[datetime] = None
    matched_rule: Dict[str, Any] = field(default_factory=dict)
    review_status: ReviewStatus = ReviewStatus.PENDING
    flagged_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    review_note: Optional[str] = None
    action_taken: Optional[str] = None
    actioned_at: Optional[datetime] = None
    deletion_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'scanId': self.scan_id,
            'ruleId': self.rule_id,
            'mediaType': self.media_type.value,
            'externalRatingKey': self.external_rating_key,
            'title': self.title,
            'year': self.year,
            'movieManagerId': self.movie_manager_id,
            'seriesManagerId': self.series_manager_id,
            'tmdbId': self.tmdb_id,
            'tvdbId': self.tvdb_id,
            'fileSize': self.file_size,
            'playCount': self.play_count,
            'lastWatchedAt': isoformat(self.last_watched_at),
            'addedAt': isoformat(self.added_at),
            'matchedRule': self.matched_rule,
            'reviewStatus': self.review_status.value,
            'flaggedAt': isoformat(self.flagged_at),
            'reviewedAt': isoformat(self.reviewed_at),
            'reviewedBy': self.reviewed_by,
            'reviewNote': self.review_note,
            'actionTaken': self.action_taken,
            'actionedAt': isoformat(self.actioned_at),
            'deletionError': self.deletion_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Candidate':
        return cls(
            id=data['id'],
            scan_id=data['scanId'],
            rule_id=data['ruleId'],
            media_type=MediaType(data['mediaType']),
            external_rating_key=str(data.get('externalRatingKey') or ''),
            title=data.get('title') or '',
            year=data.get('year'),
            movie_manager_id=data.get('movieManagerId'),
            series_manager_id=data.get('seriesManagerId'),
            tmdb_id=data.get('tmdbId'),
            tvdb_id=data.get('tvdbId'),
            file_size=data.get('fileSize'),
            play_count=int(data.get('playCount') or 0),
            last_watched_at=parse_datetime(data.get('lastWatchedAt')),
            added_at=parse_datetime(data.get('addedAt')),
            matched_rule=data.get('matchedRule') or {},
            review_status=ReviewStatus(data.get('reviewStatus') or ReviewStatus.PENDING.value),
            flagged_at=parse_datetime(data.get('flaggedAt')),
            reviewed_at=parse_datetime(data.get('reviewedAt')),
            reviewed_by=data.get('reviewedBy'),
            review_note=data.get('reviewNote'),
            action_taken=data.get('actionTaken'),
            actioned_at=parse_datetime(data.get('actionedAt')),
            deletion_error=data.get('deletionError'),
        )


@dataclass
class ScanResult:
    scan_id: str
    items_scanned: int
    items_flagged: int
    candidate_ids: List[str] = field(default_factory=list)


@dataclass
class DeletionResult:
    success: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class ActionResult:
    success: bool
    not_found: bool = False
    error: Optional[str] = None
