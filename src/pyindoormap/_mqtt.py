"""MQTT-backed live measurement stream."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import secrets
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

from pyindoormap.config import IndoorMapConfig
from pyindoormap.exceptions import IndoorMapConfigError, IndoorMapError

MeasurementCallback = Callable[[dict[str, Any]], None]


def decode_measurement_payload(payload: bytes) -> dict[str, Any] | None:
    """Decode a measurement message into the measurement object.

    Realtime notifications wrap the measurement as
    ``{"realtimeAction": "CREATE", "data": {...}}``; deletions carry no value
    and yield ``None``.
    """
    parsed = json.loads(payload.decode("utf-8"))
    if not isinstance(parsed, dict):
        raise IndoorMapError("MQTT payload is not a JSON object")
    if "realtimeAction" in parsed:
        if parsed.get("realtimeAction") == "DELETE":
            return None
        inner = parsed.get("data")
        return inner if isinstance(inner, dict) else None
    return parsed


@dataclass(frozen=True)
class _Registration:
    device_id: str
    callback: MeasurementCallback


class MqttSubscription:
    """Handle returned by :meth:`MqttMeasurementStream.subscribe`."""

    def __init__(self, stream: MqttMeasurementStream, topic: str, token: int) -> None:
        self._stream = stream
        self._topic = topic
        self._token = token
        self._active = True

    @property
    def topic(self) -> str:
        return self._topic

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._stream._remove(self._topic, self._token)


class MqttMeasurementStream:
    """Threaded paho-mqtt runtime dispatching measurement payloads onto an asyncio loop.

    Subscriptions are registered and removed on the loop thread; the network
    thread only forwards raw messages with ``call_soon_threadsafe``. Dispatch
    re-checks the registration, so no callback runs after ``unsubscribe``
    returns.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        host: str,
        port: int = 8883,
        username: str = "",
        password: str = "",
        topic_template: str = "measurements/{device_id}",
        keepalive: int = 120,
        tls: bool = True,
        client_id: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if not host:
            raise IndoorMapConfigError("MQTT host is required")
        self._loop = loop
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._topic_template = topic_template
        self._keepalive = keepalive
        self._tls = tls
        self._client_id = client_id or f"pyindoormap-{secrets.token_hex(6)}"
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._registrations: dict[str, dict[int, _Registration]] = {}
        self._tokens = itertools.count(1)
        # Topic set is read by the network thread on (re)connect.
        self._topics_lock = threading.Lock()
        self._topics: set[str] = set()

    @classmethod
    def from_config(cls, config: IndoorMapConfig, *, loop: asyncio.AbstractEventLoop) -> MqttMeasurementStream:
        host = config.mqtt_host or (urlsplit(config.base_url).hostname or "")
        return cls(
            loop=loop,
            host=host,
            port=config.mqtt_port,
            username=config.auth_user,
            password=config.password,
            topic_template=config.measurement_topic,
            keepalive=config.mqtt_keepalive,
            tls=config.mqtt_tls,
        )

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def topic_for(self, device_id: str) -> str:
        return self._topic_template.format(device_id=device_id)

    def start(self) -> None:
        """Connect and start the network loop."""
        self.stop()
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s client_id=%s",
            self._host,
            self._port,
            self._client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if self._username:
            client.username_pw_set(self._username, self._password)
        if self._tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.debug("MQTT connected successfully reason=%s", reason_code)
            with self._topics_lock:
                topics = sorted(self._topics)
            for topic in topics:
                c.subscribe(topic, qos=0)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            self._loop.call_soon_threadsafe(self._dispatch, msg.topic, msg.payload)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                # No automatic resubscription beyond paho's own reconnect.
                self._logger.warning("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(self._host, self._port, keepalive=self._keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")

    def subscribe(self, device_id: str, callback: MeasurementCallback) -> MqttSubscription:
        topic = self.topic_for(device_id)
        token = next(self._tokens)
        registrations = self._registrations.setdefault(topic, {})
        first = not registrations
        registrations[token] = _Registration(device_id=device_id, callback=callback)

        if first:
            with self._topics_lock:
                self._topics.add(topic)
            if self._client is not None and self._running:
                self._client.subscribe(topic, qos=0)
            self._logger.debug("MQTT subscribed topic=%s", topic)
        return MqttSubscription(self, topic, token)

    def _remove(self, topic: str, token: int) -> None:
        registrations = self._registrations.get(topic)
        if registrations is None:
            return
        registrations.pop(token, None)
        if registrations:
            return
        del self._registrations[topic]
        with self._topics_lock:
            self._topics.discard(topic)
        if self._client is not None and self._running:
            self._client.unsubscribe(topic)
        self._logger.debug("MQTT unsubscribed topic=%s", topic)

    def _dispatch(self, topic: str, payload: bytes) -> None:
        registrations = self._registrations.get(topic)
        if not registrations:
            return
        try:
            measurement = decode_measurement_payload(payload)
        except Exception:
            self._logger.debug("MQTT payload parse failure topic=%s", topic, exc_info=True)
            return
        if measurement is None:
            return

        for token, registration in list(registrations.items()):
            # A previous callback may have unsubscribed this one.
            if token not in registrations:
                continue
            try:
                registration.callback(measurement)
            except Exception:
                self._logger.warning(
                    "Measurement callback failed for device %s",
                    registration.device_id,
                    exc_info=True,
                )
