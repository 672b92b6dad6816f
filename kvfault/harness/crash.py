"""
Full-cluster crash and restart.

Stops every server, waits for teardown, then restarts them all so the store
has to rebuild itself from persisted state. Runs on the scenario runner's
thread and only after the partition injector has stopped.
"""

import logging
import time
from typing import Callable

from .events import EventLog, EventType
from .interfaces import ClusterController
from .metrics import MetricsCollector
from .timing import ELECTION_TIMEOUT, Seconds

logger = logging.getLogger(__name__)


class CrashRestartOrchestrator:
    """Shuts down and restarts every server by increasing index.

    Args:
        controller: Cluster to crash.
        election_timeout: Pause between the last shutdown and the first
            restart; shutdown is not instantaneous.
        metrics: Counters for shutdowns and restarts.
        events: Event log receiving each shutdown and restart.
        sleep: Sleep function (replaceable in tests).
    """

    def __init__(
        self,
        controller: ClusterController,
        election_timeout: Seconds = ELECTION_TIMEOUT,
        metrics: MetricsCollector | None = None,
        events: EventLog | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.controller = controller
        self.election_timeout = election_timeout
        self.metrics = metrics if metrics is not None else MetricsCollector()
        self.events = events if events is not None else EventLog(enabled=False)
        self.sleep = sleep

    def run(self) -> None:
        servers = sorted(self.controller.all_servers())

        logger.debug("shutting down servers %s", servers)
        for index in servers:
            self.controller.shutdown_server(index)
            self.metrics.record_shutdown()
            self.events.record(EventType.SERVER_SHUTDOWN, index)

        self.sleep(self.election_timeout)

        logger.debug("restarting servers %s", servers)
        for index in servers:
            self.controller.start_server(index)
            self.metrics.record_start()
            self.events.record(EventType.SERVER_STARTED, index)

        self.controller.reconnect_all()
        self.events.record(EventType.NETWORK_HEALED, "network")
