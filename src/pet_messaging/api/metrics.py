"""Prometheus metrics, one registry per application instance."""

from prometheus_client import CollectorRegistry, Counter, generate_latest


class MessagingMetrics:
    def __init__(self) -> None:
        self.registry = CollectorRegistry()
        self.requests = Counter(
            "requests_total", "Total requests by endpoint", ["path"], registry=self.registry
        )
        self.errors = Counter(
            "errors_total", "Total errors by error code", ["code"], registry=self.registry
        )
        self.processing_time = Counter(
            "processing_time_seconds", "Total processing time by endpoint", ["path"],
            registry=self.registry,
        )
        self.messages_sent = Counter(
            "messages_sent_total", "Messages appended", registry=self.registry
        )
        self.messages_read = Counter(
            "messages_read_total", "Messages marked read", registry=self.registry
        )

    def render(self) -> bytes:
        return generate_latest(self.registry)
