import logging
import threading
from typing import Callable, List

from portal.services.messages import WorkloadKind

logger = logging.getLogger(__name__)


class Broker:
    """
    Runs the request consumers and the batch deployer on a fixed tick.

    Every loop waits on one shared event between ticks, so stop() ends all of
    them at their next wait.
    """

    def __init__(self, consumers: dict, batch_deployer, tick_interval_seconds: float = 6):
        self.consumers = consumers
        self.batch_deployer = batch_deployer
        self.interval = tick_interval_seconds
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    def recover(self) -> None:
        """Finish records this consumer received before a restart but never acknowledged"""
        for kind in WorkloadKind:
            acked = self.consumers[kind].consume(pending=True)
            logger.info("Recovered %d pending %s request(s)", acked, kind.value)

        for kind in WorkloadKind:
            while self.batch_deployer.deploy_batch(kind, pending=True) > 0:
                pass

    def start(self) -> None:
        self.recover()

        loops = [(f"consumer-{kind.value}", self.consumers[kind].consume) for kind in WorkloadKind]
        loops.append(("batch-deployer", self.batch_deployer.tick))

        for name, fn in loops:
            thread = threading.Thread(target=self._run_periodic, args=(name, fn), name=name, daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info("Broker started with a %ss tick", self.interval)

    def _run_periodic(self, name: str, fn: Callable) -> None:
        while not self._stop.wait(self.interval):
            try:
                fn()
            except Exception:
                logger.exception("%s tick failed", name)
        logger.info("%s stopped", name)

    def stop(self, timeout: float = None) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()
