"""gRPC servicer: the entry point for all inbound calls from the player API."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict
from typing import Any

import grpc
from google.protobuf import json_format
from google.protobuf.struct_pb2 import Struct

from smartshuffle.aggregator import ListeningProfileAggregator
from smartshuffle.catalogue import SongCatalogue
from smartshuffle.errors import StorageUnavailableError
from smartshuffle.event_log import EventLog
from smartshuffle.models import PlaybackEvent, SmartShufflePolicy, Song, UserSongPreference
from smartshuffle.preferences import PreferenceStore
from smartshuffle.profiles import ProfileStore
from smartshuffle.ranker import DEFAULT_LIMIT, RecommendationRanker

logger = logging.getLogger(__name__)

SERVICE_NAME = "smartshuffle.SmartShuffle"

_RECOMMENDATION_WARN_THRESHOLD_MS = 450  # warn if within 50ms of SLA

_METHODS = (
    "RecordPlayback",
    "GetRecommendations",
    "GetRecentlyPlayed",
    "GetPreference",
    "GetListeningProfile",
)


class SmartShuffleServicer:
    """Implements the ``smartshuffle.SmartShuffle`` gRPC service.

    Every method takes and returns a ``google.protobuf.Struct``, so the
    service needs no generated stubs; register it with
    :func:`add_servicer_to_server`.

    Error mapping:

    ==========================  =====================
    Exception                   Status code
    ==========================  =====================
    ``ValueError``              ``INVALID_ARGUMENT``
    ``StorageUnavailableError`` ``UNAVAILABLE``
    anything else               ``INTERNAL``
    ==========================  =====================

    Args:
        aggregator: Records playback events.
        ranker: Produces smart shuffle queues.
        catalogue: Resolves candidate songs.
        event_log: Serves recently played songs.
        preferences: Read-only access for inspection.
        profiles: Read-only access for inspection.
        default_limit: Queue length when a request does not set ``limit``.
    """

    def __init__(
        self,
        aggregator: ListeningProfileAggregator,
        ranker: RecommendationRanker,
        catalogue: SongCatalogue,
        event_log: EventLog,
        preferences: PreferenceStore,
        profiles: ProfileStore,
        default_limit: int = DEFAULT_LIMIT,
    ) -> None:
        self._aggregator = aggregator
        self._ranker = ranker
        self._catalogue = catalogue
        self._event_log = event_log
        self._preferences = preferences
        self._profiles = profiles
        self._default_limit = default_limit

    # ------------------------------------------------------------------
    # Event ingestion
    # ------------------------------------------------------------------

    def RecordPlayback(self, request: Struct, context: Any) -> Struct:
        """Record one playback outcome.

        Request fields: ``user_id``, ``song_id``, ``played_fully``,
        ``skipped``, optional ``context``.

        Returns:
            ``{"event": {...}}`` with the stored event.
        """
        data = _to_dict(request)
        try:
            event = self._aggregator.record_playback(
                _id(data.get("user_id")),
                _id(data.get("song_id")),
                played_fully=_flag(data, "played_fully"),
                skipped=_flag(data, "skipped"),
                context=data.get("context"),
            )
        except Exception as exc:
            _set_error(context, exc, "recording playback", data)
            return Struct()
        return _to_struct({"event": _event_to_dict(event)})

    # ------------------------------------------------------------------
    # Recommendation request
    # ------------------------------------------------------------------

    def GetRecommendations(self, request: Struct, context: Any) -> Struct:
        """Return a ranked queue for ``user_id``.

        Request fields: ``user_id``, optional ``policy`` (flag mapping),
        ``limit``, and either ``song_ids`` (explicit candidate pool) or
        ``genre``/``artist`` filters over the catalogue. Unknown song IDs
        in ``song_ids`` are skipped.

        Returns:
            ``{"songs": [...]}``, best first.
        """
        data = _to_dict(request)
        user_id = _id(data.get("user_id"))
        if not user_id:
            context.set_code(grpc.StatusCode.INVALID_ARGUMENT)
            context.set_details("user_id must be non-empty")
            return Struct()

        start_ms = time.monotonic() * 1000
        try:
            policy = SmartShufflePolicy.from_dict(data.get("policy"))
            limit = int(data.get("limit", self._default_limit))
            pool = self._candidate_pool(data)
            songs = self._ranker.recommend(user_id, policy, pool, limit)
        except Exception as exc:
            _set_error(context, exc, "generating recommendations", data)
            return Struct()
        finally:
            elapsed_ms = time.monotonic() * 1000 - start_ms
            if elapsed_ms > _RECOMMENDATION_WARN_THRESHOLD_MS:
                logger.warning(
                    "GetRecommendations for user=%r took %.1fms (SLA: 500ms)",
                    user_id,
                    elapsed_ms,
                )
            else:
                logger.debug(
                    "GetRecommendations for user=%r took %.1fms",
                    user_id,
                    elapsed_ms,
                )

        return _to_struct({"songs": [asdict(song) for song in songs]})

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def GetRecentlyPlayed(self, request: Struct, context: Any) -> Struct:
        """Return ``{"songs": [...]}``: distinct recent songs, newest first."""
        data = _to_dict(request)
        try:
            limit = int(data.get("limit", 10))
            song_ids = self._event_log.recently_played(_id(data.get("user_id")), limit)
        except Exception as exc:
            _set_error(context, exc, "listing recently played songs", data)
            return Struct()
        songs = [self._catalogue.get_song(song_id) for song_id in song_ids]
        return _to_struct({"songs": [asdict(song) for song in songs if song is not None]})

    def GetPreference(self, request: Struct, context: Any) -> Struct:
        """Return ``{"preference": {...}}`` for a (user, song) pair, or ``NOT_FOUND``."""
        data = _to_dict(request)
        preference = self._preferences.get(
            _id(data.get("user_id")), _id(data.get("song_id"))
        )
        if preference is None:
            context.set_code(grpc.StatusCode.NOT_FOUND)
            context.set_details("No preference recorded for this user and song.")
            return Struct()
        return _to_struct({"preference": _preference_to_dict(preference)})

    def GetListeningProfile(self, request: Struct, context: Any) -> Struct:
        """Return ``{"profile": {...}}`` for a user, or ``NOT_FOUND``."""
        data = _to_dict(request)
        profile = self._profiles.get(_id(data.get("user_id")))
        if profile is None:
            context.set_code(grpc.StatusCode.NOT_FOUND)
            context.set_details("No listening profile for this user.")
            return Struct()
        return _to_struct({"profile": profile.to_dict()})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _candidate_pool(self, data: dict[str, Any]) -> list[Song]:
        song_ids = data.get("song_ids")
        if song_ids is None:
            return self._catalogue.list_songs(genre=data.get("genre"), artist=data.get("artist"))
        pool = []
        for song_id in song_ids:
            song = self._catalogue.get_song(_id(song_id))
            if song is None:
                logger.debug("Skipping unknown candidate song %r.", song_id)
                continue
            pool.append(song)
        return pool


def add_servicer_to_server(servicer: SmartShuffleServicer, server: grpc.Server) -> None:
    """Register every method of *servicer* on *server* as a unary Struct RPC."""
    handlers = {
        name: grpc.unary_unary_rpc_method_handler(
            getattr(servicer, name),
            request_deserializer=Struct.FromString,
            response_serializer=Struct.SerializeToString,
        )
        for name in _METHODS
    }
    server.add_generic_rpc_handlers(
        (grpc.method_handlers_generic_handler(SERVICE_NAME, handlers),)
    )


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------


def _to_dict(message: Struct) -> dict[str, Any]:
    return json_format.MessageToDict(message)


def _id(value: Any) -> str:
    """Normalise a user or song ID; ``Struct`` carries numbers as doubles."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _flag(data: dict[str, Any], key: str) -> bool:
    value = data.get(key, False)
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be a boolean, got {value!r}")
    return value


def _to_struct(data: dict[str, Any]) -> Struct:
    message = Struct()
    message.update(data)
    return message


def _event_to_dict(event: PlaybackEvent) -> dict[str, Any]:
    data = asdict(event)
    data["played_at"] = event.played_at.isoformat() if event.played_at else None
    return data


def _preference_to_dict(preference: UserSongPreference) -> dict[str, Any]:
    data = asdict(preference)
    for key in ("last_played_at", "updated_at"):
        value = getattr(preference, key)
        data[key] = value.isoformat() if value else None
    return data


_STATUS_BY_ERROR: list[tuple[type[Exception], grpc.StatusCode]] = [
    (ValueError, grpc.StatusCode.INVALID_ARGUMENT),
    (StorageUnavailableError, grpc.StatusCode.UNAVAILABLE),
]


def _set_error(context: Any, exc: Exception, action: str, data: dict[str, Any]) -> None:
    """Translate *exc* into a status code on *context*."""
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            context.set_code(code)
            context.set_details(str(exc))
            if code is grpc.StatusCode.UNAVAILABLE:
                logger.error("Storage unavailable while %s: %s", action, exc)
            return
    logger.exception("Error %s for request %r", action, data)
    context.set_code(grpc.StatusCode.INTERNAL)
    context.set_details(f"Internal error {action}.")


