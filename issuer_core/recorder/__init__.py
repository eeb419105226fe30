# issuer_core/recorder/__init__.py
import os
from issuer_core.recorder.recorder_base import Event, EventRecorder
from issuer_core.recorder.recorder_local import LogRecorder, MemoryRecorder
from issuer_core.recorder.recorder_kafka import KafkaRecorder


def recorder_factory(mode: str = None) -> EventRecorder:
    """
    mode (or ISSUER_EVENT_RECORDER):
      - "memory" → bounded in-process buffer (default)
      - "log"    → structured log lines only
      - "kafka"  → events topic on KAFKA_BROKERS
    """
    mode = (mode or os.getenv("ISSUER_EVENT_RECORDER", "memory")).lower()

    if mode == "kafka":
        return KafkaRecorder(
            brokers=os.getenv("KAFKA_BROKERS", "localhost:9092"),
            topic=os.getenv("KAFKA_EVENTS_TOPIC", "issuer.events"),
            enabled=os.getenv("KAFKA_ENABLED", "1") == "1",
        )

    if mode == "log":
        return LogRecorder()

    return MemoryRecorder()


__all__ = ["Event", "EventRecorder", "KafkaRecorder", "LogRecorder", "MemoryRecorder", "recorder_factory"]
