"""Session event publisher for pub/sub notifications."""

import logging
from pubsub import pub

from ..models.events import ChunkPersistedEvent, SegmentsAppendedEvent, TimingVerifiedEvent

logger = logging.getLogger(__name__)

CHUNK_PERSISTED_TOPIC = "recorder.chunk_persisted"
TIMING_VERIFIED_TOPIC = "recorder.timing_verified"
SEGMENTS_APPENDED_TOPIC = "recorder.segments_appended"


class SessionEventPublisher:
    """Publishes session state changes using pubsub.pub."""

    def __init__(self,
                 chunk_topic: str = CHUNK_PERSISTED_TOPIC,
                 timing_topic: str = TIMING_VERIFIED_TOPIC,
                 segments_topic: str = SEGMENTS_APPENDED_TOPIC):
        """Initialize the publisher.

        Args:
            chunk_topic: Topic for persisted chunks
            timing_topic: Topic for completed timing verification passes
            segments_topic: Topic for newly appended segments
        """
        self.chunk_topic = chunk_topic
        self.timing_topic = timing_topic
        self.segments_topic = segments_topic
        logger.info(f"SessionEventPublisher initialized with topics: {chunk_topic}, {timing_topic}, "
                    f"{segments_topic}")

    def publish_chunk_persisted(self, event: ChunkPersistedEvent) -> None:
        pub.sendMessage(self.chunk_topic, event=event)
        logger.debug(f"Published chunk persisted: {event.chunk.id} (seq {event.chunk.seq})")

    def publish_timing_verified(self, event: TimingVerifiedEvent) -> None:
        pub.sendMessage(self.timing_topic, event=event)
        logger.debug(f"Published timing verified: {event.session_id} "
                     f"({len(event.timing.updated_chunk_ids)} chunks updated)")

    def publish_segments_appended(self, event: SegmentsAppendedEvent) -> None:
        pub.sendMessage(self.segments_topic, event=event)
        logger.debug(f"Published {len(event.segments)} appended segment(s) for {event.session_id}")
