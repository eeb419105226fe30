# issuer_core/recorder/recorder_kafka.py
import json
import logging

from issuer_core.recorder.recorder_base import Event, EventRecorder

log = logging.getLogger("Issuer.Recorder.Kafka")


class KafkaRecorder(EventRecorder):
    """
    Publishes status-transition events to a Kafka topic.

    • Producer-only
    • Key == object kind + key, so events for one object stay ordered
    • Disables itself when the brokers are unreachable at startup
    """

    name = "kafka"

    def __init__(self, brokers="localhost:9092", topic="issuer.events", enabled=True):
        self.brokers = brokers
        self.topic = topic
        self.enabled = enabled
        self._producer = None

        if not self.enabled:
            log.warning("[KAFKA] disabled")
            return

        try:
            from kafka import KafkaProducer

            self._producer = KafkaProducer(
                bootstrap_servers=self.brokers,
                linger_ms=5,
                acks="all",
            )

            log.info(f"[KAFKA] connected brokers={self.brokers}")

        except Exception:
            log.exception("[KAFKA] init failed, disabling recorder")
            self.enabled = False

    def record(self, ev: Event) -> None:
        if not self.enabled:
            log.info(f"[KAFKA-SKIP] {ev.reason} {ev.kind} {ev.object_key}")
            return

        data = json.dumps(ev.to_dict(), ensure_ascii=False).encode("utf-8")
        try:
            self._producer.send(
                self.topic,
                value=data,
                key=f"{ev.kind}/{ev.object_key}".encode("utf-8"),
                headers=[("reason", ev.reason.encode("utf-8"))],
            )
            log.debug(f"[KAFKA PUB] topic={self.topic} reason={ev.reason}")
        except Exception:
            log.exception(f"[KAFKA PUB ERROR] topic={self.topic}")

    def close(self) -> None:
        if self._producer is not None:
            self._producer.flush(timeout=1.0)
            self._producer.close()
