# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Follow ``gerrit stream-events`` over SSH.

The listener runs in its own thread, reads one JSON object per line,
converts the event types the handlers care about and passes them to a
callback one at a time. Connection failures are logged and the
connection is re-established after a delay until :meth:`stop` is called.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Iterable

import paramiko

from dls_gerrit.config import StreamConfig
from dls_gerrit.gerrit.events import Event, parse_stream_event

log = logging.getLogger("dls_gerrit.gerrit.stream")

STREAM_EVENTS_COMMAND = "gerrit stream-events"


class StreamEventsListener(threading.Thread):
    """Thread feeding stream-events to ``callback``."""

    def __init__(
        self,
        config: StreamConfig,
        callback: Callable[[Event], object],
        reconnect_delay: float = 5.0,
    ) -> None:
        super().__init__(name="gerrit-stream-events", daemon=True)
        self._config = config
        self._callback = callback
        self._reconnect_delay = reconnect_delay
        self._stop_event = threading.Event()
        self._client: paramiko.SSHClient | None = None

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def handle_line(self, line: str) -> Event | None:
        """Decode one line of the stream and dispatch it if relevant."""
        line = line.strip()
        if not line:
            return None
        try:
            data = json.loads(line)
        except json.JSONDecodeError as exc:
            log.warning("Ignoring undecodable stream-events line: %s", exc)
            return None
        try:
            event = parse_stream_event(data)
        except ValueError as exc:
            log.warning("Ignoring malformed stream event: %s", exc)
            return None
        if event is None:
            return None
        log.debug(
            "Received %s for change %d", event.event_type, event.change.number
        )
        self._callback(event)
        return event

    def consume(self, lines: Iterable[str]) -> int:
        """Dispatch every relevant event in ``lines`` until stopped."""
        count = 0
        for line in lines:
            if self.stopped:
                break
            if self.handle_line(line) is not None:
                count += 1
        return count

    def _connect(self) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.WarningPolicy())
        client.connect(
            self._config.hostname,
            username=self._config.user or None,
            port=self._config.port,
            key_filename=self._config.sshkey,
            timeout=self._config.timeout,
        )
        transport = client.get_transport()
        if transport is not None:
            transport.set_keepalive(self._config.keepalive)
        return client

    def _run(self) -> None:
        client = self._connect()
        self._client = client
        try:
            # no timeout: the command never completes on its own, ssh and
            # tcp keepalives detect a dead connection
            _stdin, stdout, _stderr = client.exec_command(STREAM_EVENTS_COMMAND)
            log.info(
                "Listening to stream-events on %s:%d",
                self._config.hostname,
                self._config.port,
            )
            self.consume(stdout)
            if not self.stopped:
                status = stdout.channel.recv_exit_status()
                log.warning("stream-events exited with status %s", status)
        finally:
            self._client = None
            client.close()

    def run(self) -> None:
        while not self.stopped:
            try:
                self._run()
            except Exception:
                log.exception(
                    "Exception on ssh event stream with %s",
                    self._config.hostname,
                )
            self._stop_event.wait(self._reconnect_delay)

    def stop(self) -> None:
        log.debug("Stopping stream-events listener")
        self._stop_event.set()
        client = self._client
        if client is not None:
            client.close()


__all__ = ["STREAM_EVENTS_COMMAND", "StreamEventsListener"]
