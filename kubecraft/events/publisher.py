"""RabbitMQ publishers for tenant and workload audit events."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import pika

from ..config import RabbitMQConfig
from .models import AuditAction, AuditEvent, AuditOutcome

LOGGER = logging.getLogger(__name__)


class RabbitMQPublisher:
    """Utility for publishing JSON messages to the audit exchange."""

    def __init__(self, config: RabbitMQConfig) -> None:
        self._config = config
        self._parameters = pika.URLParameters(config.url)

    def publish(
        self,
        routing_key: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Publish an event to the configured topic exchange."""

        connection: Optional[pika.BlockingConnection] = None
        try:
            connection = pika.BlockingConnection(self._parameters)
            channel = connection.channel()
            channel.exchange_declare(exchange=self._config.exchange, exchange_type="topic", durable=True)
            channel.basic_publish(
                exchange=self._config.exchange,
                routing_key=routing_key,
                body=json.dumps(payload).encode("utf-8"),
                properties=pika.BasicProperties(
                    content_type="application/json",
                    delivery_mode=2,
                    headers=headers or {},
                ),
            )
            LOGGER.debug("Published event", extra={"routing_key": routing_key, "payload": payload})
        except Exception:
            LOGGER.exception("Failed to publish event", extra={"routing_key": routing_key, "payload": payload})
            raise
        finally:
            if connection and connection.is_open:
                connection.close()


class AuditEventPublisher:
    """Publish structured audit events; without a broker the events are only logged."""

    def __init__(self, publisher: Optional[RabbitMQPublisher], routing_key_prefix: str = "audit.kubecraft") -> None:
        self._publisher = publisher
        self._routing_key_prefix = routing_key_prefix

    def publish(
        self,
        tenant: str,
        action: AuditAction,
        outcome: AuditOutcome,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        event = AuditEvent(
            tenant=tenant,
            action=action,
            outcome=outcome,
            timestamp=datetime.now(timezone.utc).isoformat(),
            details={key: value for key, value in (details or {}).items() if value is not None},
        )
        payload = event.to_payload()
        LOGGER.info("Audit event", extra={"audit": payload})
        if self._publisher is None:
            return
        try:
            self._publisher.publish(f"{self._routing_key_prefix}.{action.value}", payload)
        except Exception:
            LOGGER.exception("Failed to publish audit event", extra={"tenant": tenant, "action": action.value})


def build_audit_publisher(config: RabbitMQConfig) -> AuditEventPublisher:
    publisher = RabbitMQPublisher(config) if config.enabled else None
    return AuditEventPublisher(publisher, routing_key_prefix=config.routing_key_prefix)


__all__ = ["RabbitMQPublisher", "AuditEventPublisher", "build_audit_publisher"]
