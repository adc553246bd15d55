"""PM/FM metric collection with pagination and retries."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum

from .client import AUTHORIZATION_HEADER, APIError, check_status_code, do_request
from .models import APIConf, GetAPIResponse, User
from .runtime import Collector

log = logging.getLogger(__name__)

MAX_RETRY_ATTEMPTS = 3
FM_RESPONSE_TYPE = "fmdata"

START_TIME_QUERY_PARAM = "start_timestamp"
END_TIME_QUERY_PARAM = "end_timestamp"
LIMIT_QUERY_PARAM = "limit"
INDEX_QUERY_PARAM = "index"
ALARM_TYPE_QUERY_PARAM = "alarm_type"
METRIC_TYPE_QUERY_PARAM = "metric_type"
SEARCH_AFTER_KEY_QUERY_PARAM = "search_after_key"


class RetryAction(Enum):
    """What the caller of a metric API call should do next."""

    NONE = ""
    RETRY_CURRENT = "retry current"
    RETRY_NEXT = "retry next"


@dataclass
class ApiCallRequest:
    """Everything needed to call one metric API page."""

    api: APIConf
    user: User
    nhg_id: str = ""
    start_time: str = ""
    end_time: str = ""
    index: int = 0
    limit: int = 0
    search_after_key: str = ""
    url: str = ""


def _base(path: str) -> str:
    if not path:
        return "."
    stripped = path.rstrip("/")
    if not stripped:
        return "/"
    return stripped.rsplit("/", 1)[-1]


def api_key(api: APIConf, user: User) -> str:
    """Key identifying a running collection of ``api`` for ``user``."""
    key = f"{user.email}_{_base(api.api)}_{api.metric_type}"
    if api.type:
        key += f"_{api.type}"
    return key


def fetch_metrics_data(collector: Collector, api: APIConf, user: User, txn_id: int) -> None:
    """Collect ``api`` data for each of the user's NHGs, unless a previous run is still active."""
    if not user.is_session_alive:
        log.warning(
            "[tid=%s] Skipping API call %s (%s/%s) for %s at %s as user's session is inactive",
            txn_id, api.api, api.type, api.metric_type, user.email, collector.now(),
        )
        return

    key = api_key(api, user)
    if not collector.claim(key):
        log.debug(
            "[tid=%s] Previous API call %s for %s at %s is still active",
            txn_id, api.api, user.email, collector.now(),
        )
        return

    try:
        for nhg_id in list(user.nhg_ids):
            start_time, end_time = collector.interval_provider(user, api, nhg_id)
            req = ApiCallRequest(
                api=api,
                user=user,
                nhg_id=nhg_id,
                start_time=start_time,
                end_time=end_time,
                index=0,
                limit=collector.config.limit,
            )
            action = call_metric_api(collector, req, MAX_RETRY_ATTEMPTS, txn_id)
            if action is RetryAction.RETRY_CURRENT:
                call_metric_api(collector, req, 0, txn_id)
            while action is RetryAction.RETRY_NEXT:
                req.start_time, req.end_time = collector.interval_provider(user, api, nhg_id)
                req.index = 0
                log.info("[tid=%s] retrying next", txn_id)
                action = call_metric_api(collector, req, MAX_RETRY_ATTEMPTS, txn_id)
    finally:
        collector.release(key)


def call_metric_api(
    collector: Collector, req: ApiCallRequest, retry_attempts: int, txn_id: int
) -> RetryAction:
    """Call the API for one NHG and follow its pages; report whether it should be redone."""
    req = replace(req, url=collector.url_for(req.api, req.nhg_id))
    log.info(
        "[tid=%s] Triggered %s for %s at %s (nhg_id=%s)",
        txn_id, req.url, req.user.email, collector.now(), req.nhg_id,
    )
    try:
        response = call_api(collector, req, txn_id)
    except APIError as exc:
        if "500" not in str(exc):
            return RetryAction.NONE
        try:
            response = retry_api_call(collector, req, retry_attempts, txn_id)
        except APIError:
            log.info(
                "[tid=%s] API call %s failed for nhg %s (%s - %s), data will be skipped",
                txn_id, req.url, req.nhg_id, req.start_time, req.end_time,
            )
            return RetryAction.NONE

    if response is None:
        log.info("[tid=%s] found no response for %s (nhg %s)", txn_id, req.url, req.nhg_id)
        return RetryAction.NONE

    log.info(
        "[tid=%s] Received %s of %s records (nhg %s)",
        txn_id, response.num_of_records, response.total_num_records, req.nhg_id,
    )
    if response.next_record > 0:
        req.index = response.next_record
        req.search_after_key = response.search_after_key
        try:
            received = handle_pagination(collector, req, retry_attempts, txn_id)
        except APIError:
            return RetryAction.RETRY_CURRENT
        log.info(
            "[tid=%s] Received %s of %s records after pagination (nhg %s)",
            txn_id, response.num_of_records + received, response.total_num_records, req.nhg_id,
        )
    return RetryAction.NONE


def handle_pagination(
    collector: Collector, req: ApiCallRequest, retry_attempts: int, txn_id: int
) -> int:
    """Fetch the remaining pages and return how many records they held.

    Raises APIError when a page cannot be fetched even after retrying.
    """
    req = replace(req)
    received = 0
    while req.index > 0:
        try:
            response = call_api(collector, req, txn_id)
        except APIError:
            try:
                response = retry_api_call(collector, req, retry_attempts, txn_id)
            except APIError:
                log.info(
                    "[tid=%s] API call %s failed for nhg %s, will be retried from starting",
                    txn_id, req.url, req.nhg_id,
                )
                raise
        if response is None:
            log.info("[tid=%s] found no response for %s (nhg %s)", txn_id, req.url, req.nhg_id)
            return 0
        req.index = response.next_record
        req.search_after_key = response.search_after_key
        received += response.num_of_records
    return received


def retry_api_call(
    collector: Collector, req: ApiCallRequest, retry_attempts: int, txn_id: int
) -> GetAPIResponse | None:
    """Call the API up to ``retry_attempts`` times.

    Returns the first successful response, None if no attempt was made, and
    raises the last error if every attempt failed.
    """
    last_error: APIError | None = None
    for _ in range(retry_attempts):
        log.info(
            "[tid=%s] retrying api call %s (nhg %s, index %s, limit %s)",
            txn_id, req.url, req.nhg_id, req.index, req.limit,
        )
        try:
            return call_api(collector, req, txn_id)
        except APIError as exc:
            last_error = exc
    if last_error is not None:
        raise last_error
    return None


def build_query(req: ApiCallRequest) -> list[tuple[str, str]]:
    """Query parameters for one metric API call."""
    query = [
        (START_TIME_QUERY_PARAM, req.start_time),
        (END_TIME_QUERY_PARAM, req.end_time),
        (LIMIT_QUERY_PARAM, str(req.limit)),
        (INDEX_QUERY_PARAM, str(req.index)),
    ]
    if req.api.type:
        query.append((ALARM_TYPE_QUERY_PARAM, req.api.type))
    if req.api.metric_type:
        query.append((METRIC_TYPE_QUERY_PARAM, req.api.metric_type))
    if req.search_after_key:
        query.append((SEARCH_AFTER_KEY_QUERY_PARAM, req.search_after_key))
    return query


def call_api(collector: Collector, req: ApiCallRequest, txn_id: int) -> GetAPIResponse:
    """Call one page of a metric API, store its data and return the decoded response.

    Raises APIError on any failure.
    """
    req.user.token_ready.wait()

    headers = {AUTHORIZATION_HEADER: req.user.access_token, "Accept-Encoding": "gzip"}
    params = build_query(req)
    log.info("[tid=%s] URL: %s %s", txn_id, req.url, params)

    try:
        body = do_request(collector.session, req.url, headers, params)
    except APIError as exc:
        log.error(
            "[tid=%s] Error while calling %s for %s (nhg %s): %s",
            txn_id, req.url, req.user.email, req.nhg_id, exc,
        )
        raise

    try:
        resp = GetAPIResponse.from_dict(json.loads(body), _base(req.url))
    except ValueError as exc:
        log.error("[tid=%s] Unable to decode response (nhg %s): %s", txn_id, req.nhg_id, exc)
        raise APIError(f"unable to decode response: {exc}") from exc

    try:
        check_status_code(resp.status)
    except APIError as exc:
        log.error(
            "[tid=%s] Invalid status code received while calling %s for %s: %s",
            txn_id, req.url, req.user.email, exc,
        )
        raise

    log.info(
        "[tid=%s] %s called successfully for %s (total %s, received %s, next %s)",
        txn_id, req.url, req.user.email,
        resp.total_num_records, resp.num_of_records, resp.next_record,
    )

    try:
        collector.writer.store_last_received_data_time(req.user, resp.data, req.api, req.nhg_id, txn_id)
    except Exception as exc:  # the writer's failures are reported, not fatal
        log.error("[tid=%s] %s", txn_id, exc)

    if _base(req.api.api) == FM_RESPONSE_TYPE and collector.notifier is not None:
        threading.Thread(
            target=collector.notifier,
            args=(txn_id, resp.data, req.api.metric_type, req.api.type),
            daemon=True,
        ).start()

    try:
        collector.writer.write_response(req.user, req.api, resp.data, req.nhg_id, txn_id)
    except Exception as exc:
        log.error("[tid=%s] unable to write response for %s: %s", txn_id, req.user.email, exc)
        raise APIError(f"unable to write response: {exc}") from exc
    return resp