"""MQTT adapter: subscribes to the configured topics and feeds the dispatcher."""

import asyncio
import logging

import paho.mqtt.client as mqtt

from topic_recorder.config import Config

logger = logging.getLogger(__name__)

QOS_AT_LEAST_ONCE = 1


class MqttBusClient:
    """Runs the paho network loop in its own thread.

    Messages are handed to the dispatcher on the asyncio loop with
    ``call_soon_threadsafe``, which keeps per-topic arrival order. paho
    reconnects on its own; topics are re-subscribed on every connect.
    """

    def __init__(self, config: Config, dispatcher, client: mqtt.Client | None = None):
        self._config = config
        self._dispatcher = dispatcher
        self._loop: asyncio.AbstractEventLoop | None = None
        self.connected = False

        self._client = client or mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2, client_id=config.client_id
        )
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message
        self._client.reconnect_delay_set(min_delay=1, max_delay=30)

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        logger.info("Connecting to MQTT broker %s:%d", self._config.host, self._config.port)
        self._client.connect_async(
            self._config.host, self._config.port, keepalive=self._config.keepalive_secs
        )
        self._client.loop_start()

    def stop(self) -> None:
        self._client.disconnect()
        self._client.loop_stop()
        self.connected = False
        logger.info("MQTT client stopped")

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error("MQTT connection refused: %s", reason_code)
            return
        self.connected = True
        logger.info("Connected to MQTT broker %s:%d", self._config.host, self._config.port)
        client.subscribe([(topic, QOS_AT_LEAST_ONCE) for topic in self._config.topics])
        for topic in self._config.topics:
            logger.info("Subscribed to topic: %s", topic)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self.connected = False
        logger.warning("Disconnected from MQTT broker (%s), paho will reconnect", reason_code)

    def _on_message(self, client, userdata, message):
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(
            self._dispatcher.dispatch, message.topic, message.payload
        )
