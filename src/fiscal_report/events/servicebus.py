"""Service Bus publisher for report pipeline events."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from azure.servicebus import ServiceBusMessage
from azure.servicebus.aio import ServiceBusClient, ServiceBusSender

from fiscal_report.events.contracts import EventEnvelope, StageEvent

if TYPE_CHECKING:
    from fiscal_report.config import ServiceBusConfig

logger = logging.getLogger(__name__)


def _message_for(event_type: str, data: StageEvent | dict[str, Any] | str) -> ServiceBusMessage:
    """Wrap a payload in an envelope; stage events are routable by report and stage."""
    properties: dict[str, str] = {"event_type": event_type}
    if isinstance(data, StageEvent):
        properties["report_id"] = str(data.report_id)
        properties["stage_id"] = str(data.stage_id)
        data = data.model_dump(mode="json", exclude_none=True)
    return ServiceBusMessage(
        body=EventEnvelope(event=event_type, data=data).model_dump_json(),
        application_properties=properties,
        subject=event_type,
    )


class ServiceBusPublisher:
    """Publish report progress events to an Azure Service Bus topic.

    Without a connection string the publisher is a no-op, so local runs work
    without a bus.
    """

    def __init__(self, config: ServiceBusConfig, *, topic_name: str | None = None) -> None:
        self._config = config
        self._topic_name = topic_name or config.topic_name
        self._client: ServiceBusClient | None = None
        self._sender: ServiceBusSender | None = None
        self._disabled = not config.connection_string
        if self._disabled:
            logger.warning(
                "AZURE_SERVICEBUS_CONNECTION_STRING is not set — "
                "report events will not be published"
            )

    async def _ensure_sender(self) -> ServiceBusSender:
        if self._sender is None:
            self._client = ServiceBusClient.from_connection_string(self._config.connection_string)
            self._sender = self._client.get_topic_sender(topic_name=self._topic_name)
        return self._sender

    async def publish(self, event_type: str, data: StageEvent | dict[str, Any] | str) -> None:
        """Send an event; delivery failures are logged, not raised."""
        if self._disabled:
            return
        try:
            sender = await self._ensure_sender()
            await sender.send_messages(_message_for(event_type, data))
            logger.debug("Report event published — event=%s topic=%s", event_type, self._topic_name)
        except Exception:  # noqa: BLE001
            logger.warning("Report event not delivered — event=%s", event_type, exc_info=True)

    async def close(self) -> None:
        if self._sender:
            await self._sender.close()
        if self._client:
            await self._client.close()
