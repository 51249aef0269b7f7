"""Webhook ingestion.

A delivery moves through:
    RECEIVED -> SIGNATURE_VERIFIED -> NORMALIZED -> ENQUEUED
or ends in REJECTED (bad signature or malformed body). Rejected deliveries
leave an audit entry and never reach the queue.

Deliveries carrying a delivery id are deduplicated: redeliveries map to the
same intent id and the queue returns the existing item.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from entitysync.core.errors import AuthenticationError, SyncError, ValidationError
from entitysync.core.hashing import verify_signature
from entitysync.core.types import AuditStatus, Direction, Origin
from entitysync.domain.transitions import WebhookState, check_webhook_transition
from entitysync.sync.types import ChangeIntent

if TYPE_CHECKING:
    from entitysync.core.config import ConfigStore
    from entitysync.server.models import QueueItem
    from entitysync.sync.audit import AuditLog
    from entitysync.sync.mapper import EntityMapper
    from entitysync.sync.queue import ChangeQueue

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Sync-Signature"
DELIVERY_HEADER = "X-Sync-Delivery"


@dataclass
class WebhookReceipt:
    """Tracks one delivery through the ingest state machine."""

    entity_type: str
    intent_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: WebhookState = WebhookState.RECEIVED
    item: QueueItem | None = None
    error: str | None = None

    def advance(self, new: WebhookState) -> None:
        check_webhook_transition(self.state, new)
        self.state = new


class WebhookIngest:
    """Verifies, normalizes and enqueues inbound webhook deliveries."""

    def __init__(
        self,
        config: ConfigStore,
        queue: ChangeQueue,
        mapper: EntityMapper,
        audit: AuditLog,
    ) -> None:
        self._config = config
        self._queue = queue
        self._mapper = mapper
        self._audit = audit

    def receive(
        self,
        entity_type: str,
        body: bytes,
        signature: str | None,
        delivery_id: str | None = None,
    ) -> WebhookReceipt:
        """Process one delivery.

        Args:
            entity_type: Entity type from the webhook URL.
            body: Raw request body, exactly as received.
            signature: Value of the X-Sync-Signature header.
            delivery_id: Optional sender-assigned delivery id.

        Returns:
            The receipt, in the ENQUEUED state.

        Raises:
            AuthenticationError: If the signature does not verify.
            ValidationError: If the body cannot be normalized.
        """
        receipt = WebhookReceipt(entity_type=entity_type)
        if delivery_id:
            receipt.intent_id = str(uuid.uuid5(uuid.NAMESPACE_URL, f"{entity_type}:{delivery_id}"))

        secret = self._config.current.webhook_secret
        if not secret or not verify_signature(secret, body, signature):
            reason = "webhook secret not configured" if not secret else "invalid signature"
            self._reject(receipt, reason)
            raise AuthenticationError(reason)
        receipt.advance(WebhookState.SIGNATURE_VERIFIED)

        try:
            intent = self._normalize(entity_type, body, receipt.intent_id)
        except SyncError as e:
            self._reject(receipt, str(e))
            raise ValidationError(str(e)) from e
        receipt.advance(WebhookState.NORMALIZED)

        receipt.item = self._queue.enqueue(intent)
        receipt.advance(WebhookState.ENQUEUED)
        logger.info(
            "Webhook %s remote=%s enqueued as item %d",
            entity_type, intent.remote_id, receipt.item.id,
        )
        return receipt

    def _normalize(self, entity_type: str, body: bytes, intent_id: str) -> ChangeIntent:
        entity_config = self._config.current.entity(entity_type)
        try:
            data: Any = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValidationError(f"Body is not valid JSON: {e}") from e
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            # Event envelope: {"event": "...", "data": {...}}
            data = data["data"]

        remote_id, fields = entity_config.mapping.to_canonical(data)
        if not remote_id:
            raise ValidationError(f"Missing {entity_config.mapping.id_field!r} in payload")

        return ChangeIntent(
            entity_type=entity_type,
            direction=Direction.PULL,
            origin=Origin.REMOTE,
            payload=fields,
            local_id=self._mapper.resolve_reverse(entity_type, remote_id),
            remote_id=remote_id,
            intent_id=intent_id,
        )

    def _reject(self, receipt: WebhookReceipt, reason: str) -> None:
        receipt.advance(WebhookState.REJECTED)
        receipt.error = reason
        self._audit.append(
            change_intent_id=receipt.intent_id,
            entity_type=receipt.entity_type,
            direction=Direction.PULL.value,
            status=AuditStatus.REJECTED,
            error=reason,
            details={"source": "webhook"},
        )
        logger.warning("Rejected %s webhook: %s", receipt.entity_type, reason)
