"""Entry point: wires all components and starts the gRPC server."""

from __future__ import annotations

import logging
import os
import signal
import sys
from concurrent import futures

import grpc

import config
from smartshuffle.aggregator import ListeningProfileAggregator
from smartshuffle.catalogue import SongCatalogue, load_songs_json
from smartshuffle.event_log import EventLog
from smartshuffle.preferences import PreferenceStore
from smartshuffle.profiles import ProfileStore
from smartshuffle.ranker import RecommendationRanker, default_factors
from smartshuffle.service import SmartShuffleServicer, add_servicer_to_server
from smartshuffle.similarity import SimilarityIndex

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_servicer(
    catalogue: SongCatalogue,
    event_log: EventLog,
    similarity_index: SimilarityIndex,
) -> SmartShuffleServicer:
    """Wire the stores, aggregator and ranker around already loaded sources.

    Replays *event_log* into fresh preference and profile stores before
    returning, so the servicer starts with up-to-date aggregates.

    Args:
        catalogue: The loaded :class:`~smartshuffle.catalogue.SongCatalogue`.
        event_log: The loaded :class:`~smartshuffle.event_log.EventLog`.
        similarity_index: The :class:`~smartshuffle.similarity.SimilarityIndex`.

    Returns:
        A ready :class:`~smartshuffle.service.SmartShuffleServicer`.
    """
    preferences = PreferenceStore()
    profiles = ProfileStore()
    aggregator = ListeningProfileAggregator(
        event_log=event_log,
        preferences=preferences,
        profiles=profiles,
        catalogue=catalogue,
    )
    aggregator.rebuild_from_log()

    ranker = RecommendationRanker(
        preferences=preferences,
        profiles=profiles,
        event_log=event_log,
        factors=default_factors(similarity_index, config.SIMILARITY_BONUS_WEIGHT),
        similarity_seed_count=config.SIMILARITY_SEED_COUNT,
    )
    return SmartShuffleServicer(
        aggregator=aggregator,
        ranker=ranker,
        catalogue=catalogue,
        event_log=event_log,
        preferences=preferences,
        profiles=profiles,
        default_limit=config.DEFAULT_RECOMMENDATION_LIMIT,
    )


def build_server(servicer: SmartShuffleServicer) -> grpc.Server:
    """Construct a gRPC server with *servicer* registered, not yet started."""
    server = grpc.server(
        futures.ThreadPoolExecutor(max_workers=config.GRPC_MAX_WORKERS)
    )
    add_servicer_to_server(servicer, server)
    server.add_insecure_port(
        f"{config.GRPC_SERVER_HOST}:{config.GRPC_SERVER_PORT}"
    )
    return server


def main() -> None:
    """Initialise all components and start the gRPC server.

    Startup sequence:
    1. Load the song catalogue.
    2. Load the playback event log and the similarity index.
    3. Rebuild preferences and profiles from the event log.
    4. Start the catalogue refresh thread.
    5. Register ``SIGTERM``/``SIGINT`` shutdown handlers.
    6. Build and start the gRPC server.
    """
    logger.info("Loading song catalogue from %s", config.CATALOGUE_PATH)
    catalogue = SongCatalogue(
        loader=lambda: load_songs_json(config.CATALOGUE_PATH),
        refresh_interval_seconds=config.CATALOGUE_REFRESH_INTERVAL_SECONDS,
    )
    catalogue.refresh()
    logger.info("Catalogue loaded: %d songs.", len(catalogue))

    event_log = EventLog(path=config.EVENT_LOG_PATH)
    event_log.load()

    similarity_index = SimilarityIndex()
    if os.path.exists(config.SIMILARITY_PATH):
        similarity_index.load_json(config.SIMILARITY_PATH)

    servicer = build_servicer(catalogue, event_log, similarity_index)
    catalogue.start_refresh_loop()

    server = build_server(servicer)

    def handle_shutdown(signum: int, frame: object) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("Received %s, shutting down…", sig_name)
        server.stop(grace=5)
        sys.exit(0)

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    server.start()
    logger.info(
        "Smart shuffle gRPC server listening on %s:%d",
        config.GRPC_SERVER_HOST,
        config.GRPC_SERVER_PORT,
    )
    server.wait_for_termination()


if __name__ == "__main__":
    main()
