"""Periodic triggering of the configured APIs."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta

from .metrics import fetch_metrics_data
from .models import APIConf, User
from .nhg import get_nhg_details
from .runtime import Collector
from .sims import fetch_sim_data

log = logging.getLogger(__name__)

INTERVAL_MINUTES = 15

Job = Callable[[Collector, APIConf, User, int], None]


def _aligned_start(now: datetime, delay: int) -> datetime:
    diff = now.minute % INTERVAL_MINUTES - delay
    return now - timedelta(minutes=diff)


def first_run_time(now: datetime, delay: int) -> datetime:
    """Time of the first scheduled run: the next quarter hour shifted by ``delay`` minutes."""
    begin = _aligned_start(now, delay)
    if now > begin:
        begin += timedelta(minutes=INTERVAL_MINUTES)
    return begin


class Scheduler:
    """Runs every configured API for every user at its interval."""

    def __init__(self, collector: Collector) -> None:
        self.collector = collector
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()

    def _spawn(self, target: Callable[..., None], *args: object) -> threading.Thread:
        thread = threading.Thread(target=target, args=args, daemon=True)
        with self._lock:
            self._threads.append(thread)
        thread.start()
        return thread

    def _spawn_job(self, job: Job, api: APIConf, user: User) -> threading.Thread:
        return self._spawn(job, self.collector, api, user, self.collector.next_txn_id())

    def _repeat(self, job: Job, api: APIConf, user: User) -> None:
        period = api.interval * 60
        while not self._stop.wait(period):
            job(self.collector, api, user, self.collector.next_txn_id())

    def _check_intervals(self) -> None:
        config = self.collector.config
        if not config.users:
            return
        apis = [*config.metric_apis, *config.sim_apis]
        if config.list_nhg_api is not None:
            apis.append(config.list_nhg_api)
        for api in apis:
            if api.interval <= 0:
                raise ValueError(f"interval of {api.api} must be positive, got {api.interval}")

    def run_initial(self, user: User) -> list[threading.Thread]:
        """Refresh the user's NHGs, then start one run of each metric and SIM API.

        Returns the threads that were started.
        """
        config = self.collector.config
        if config.list_nhg_api is not None:
            get_nhg_details(self.collector, config.list_nhg_api, user, self.collector.next_txn_id())
        threads = [self._spawn_job(fetch_metrics_data, api, user) for api in config.metric_apis]
        threads += [self._spawn_job(fetch_sim_data, api, user) for api in config.sim_apis]
        return threads

    def start(self) -> None:
        """Wait for the first run time, then start the periodic triggers.

        If the current quarter hour has already begun, one run is made right
        away. Returns once the triggers are running, or early if stopped.
        Raises ValueError if an API that would be triggered has no positive interval.
        """
        self._check_intervals()
        config = self.collector.config
        now = self.collector.now()
        begin = first_run_time(now, config.delay)
        if now > _aligned_start(now, config.delay):
            for user in config.users:
                self.run_initial(user)

        wait = (begin - self.collector.now()).total_seconds()
        log.debug("first scheduled run at %s", begin)
        if self._stop.wait(max(wait, 0.0)):
            return

        for user in config.users:
            if config.list_nhg_api is not None:
                get_nhg_details(
                    self.collector, config.list_nhg_api, user, self.collector.next_txn_id()
                )
                self._spawn(self._repeat, get_nhg_details, config.list_nhg_api, user)
            for api in config.metric_apis:
                self._spawn_job(fetch_metrics_data, api, user)
                self._spawn(self._repeat, fetch_metrics_data, api, user)
            for api in config.sim_apis:
                self._spawn_job(fetch_sim_data, api, user)
                self._spawn(self._repeat, fetch_sim_data, api, user)

    def stop(self) -> None:
        """Stop the periodic triggers and wait for running calls to finish."""
        self._stop.set()
        with self._lock:
            threads, self._threads = self._threads, []
        current = threading.current_thread()
        for thread in threads:
            if thread is not current:
                thread.join()