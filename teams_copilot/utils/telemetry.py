"""
Telemetry helper for Application Insights integration.

Tracks custom events and metrics for the bot (lease contention, debug
toggles, feedback, exhausted HTTP retries). Without a connection string the
helper is a no-op.

Usage:
    telemetry = TelemetryHelper.from_env()
    telemetry.track_event(EventNames.LEASE_CONTENTION, {'conversation_key': key})
"""
import logging
import os
from typing import Any, Dict, Optional

from applicationinsights import TelemetryClient
from applicationinsights.channel import SynchronousQueue, SynchronousSender, TelemetryChannel

logger = logging.getLogger(__name__)


class EventNames:
    LEASE_CONTENTION = "LeaseContention"
    DEBUG_ON = "DebugOn"
    DEBUG_OFF = "DebugOff"
    FEEDBACK_RECEIVED = "FeedbackReceived"


class MetricNames:
    LIKE_FEEDBACK_COUNT = "LikeFeedbackCount"
    DISLIKE_FEEDBACK_COUNT = "DislikeFeedbackCount"
    HTTP_RETRIES_EXHAUSTED = "HttpRetriesExhausted"


def parse_instrumentation_key(conn_str: str) -> str:
    """
    Extract InstrumentationKey from an Application Insights connection string.

    Args:
        conn_str: Connection string in format
                 "InstrumentationKey=xxx;IngestionEndpoint=yyy;..."

    Returns:
        The instrumentation key or empty string if not found
    """
    for part in conn_str.split(';'):
        if part.startswith('InstrumentationKey='):
            return part.split('=', 1)[1]
    return ''


class TelemetryHelper:
    """Thin wrapper over the Application Insights TelemetryClient."""

    def __init__(self, client: Optional[TelemetryClient] = None):
        self.client = client

    @classmethod
    def from_env(cls) -> "TelemetryHelper":
        """
        Configure the client from APPLICATIONINSIGHTS_CONNECTION_STRING.

        Uses a synchronous channel with a 15-second send interval.
        """
        key = parse_instrumentation_key(os.getenv('APPLICATIONINSIGHTS_CONNECTION_STRING', ''))
        if not key:
            logger.info("Application Insights not configured - telemetry disabled")
            return cls()

        sender = SynchronousSender()
        queue = SynchronousQueue(sender)
        channel = TelemetryChannel(None, queue)
        channel.sender.send_buffer_size = 1
        channel.sender.send_time = 15.0

        client = TelemetryClient(key, channel)
        client.context.application.ver = '1.0'
        return cls(client)

    def track_event(self, name: str, properties: Optional[Dict[str, Any]] = None) -> None:
        if not self.client:
            return
        try:
            self.client.track_event(name, {k: str(v) for k, v in (properties or {}).items()})
        except Exception as e:
            logger.warning(f"Telemetry tracking failed: {e}")

    def track_metric(self, name: str, value: float, properties: Optional[Dict[str, Any]] = None) -> None:
        if not self.client:
            return
        try:
            self.client.track_metric(name, value, properties=properties)
        except Exception as e:
            logger.warning(f"Telemetry tracking failed: {e}")
