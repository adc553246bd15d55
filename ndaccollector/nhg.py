"""Network hardware group (NHG) discovery for a user."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable

from .client import AUTHORIZATION_HEADER, APIError, check_status_code, do_request
from .models import APIConf, NetworkInfo, Status, User
from .runtime import Collector

log = logging.getLogger(__name__)

ACTIVE_NHG_STATUS = "ACTIVE"


def get_nhg_details(collector: Collector, api: APIConf, user: User, txn_id: int) -> None:
    """Fetch the user's NHGs, store the response and remember active NHG and hardware ids.

    Any failure marks the user's session as inactive.
    """
    api_url = collector.url_for(api)
    if not user.is_session_alive:
        log.warning(
            "[tid=%s] Skipping API call %s for %s at %s as user's session is inactive",
            txn_id, api_url, user.email, collector.now(),
        )
        return

    user.token_ready.wait()

    log.info("[tid=%s] Triggered %s for %s at %s", txn_id, api_url, user.email, collector.now())
    try:
        body = do_request(collector.session, api_url, {AUTHORIZATION_HEADER: user.access_token})
    except APIError as exc:
        user.is_session_alive = False
        log.error("[tid=%s] Error while calling %s for %s: %s", txn_id, api_url, user.email, exc)
        return

    try:
        payload = json.loads(body)
        status = Status.from_dict(payload.get("status") if isinstance(payload, dict) else payload)
    except (ValueError, AttributeError) as exc:
        user.is_session_alive = False
        log.error("[tid=%s] Unable to decode response: %s", txn_id, exc)
        return

    try:
        check_status_code(status)
    except APIError as exc:
        user.is_session_alive = False
        log.error(
            "[tid=%s] Invalid status code received while calling %s for %s: %s",
            txn_id, api_url, user.email, exc,
        )
        return

    network_info = payload.get("network_info")
    try:
        collector.writer.write_response(user, api, network_info, "", txn_id)
    except Exception as exc:  # the writer's failures are reported, not fatal
        log.error("[tid=%s] unable to write response for %s: %s", txn_id, user.email, exc)

    try:
        if network_info is None:
            nhg_data = []
        elif isinstance(network_info, list):
            nhg_data = [NetworkInfo.from_dict(item) for item in network_info]
        else:
            raise ValueError("network_info must be an array")
    except ValueError as exc:
        user.is_session_alive = False
        log.error("[tid=%s] Unable to extract data from response: %s", txn_id, exc)
        return

    store_user_nhg(nhg_data, user)
    log.info("[tid=%s] user %s nhgs: %s", txn_id, user.email, user.nhg_ids)
    store_user_hw_id(nhg_data, user)
    log.info("[tid=%s] user %s access point hardware: %s", txn_id, user.email, user.hw_ids)


def store_user_nhg(nhg_data: Iterable[NetworkInfo], user: User) -> None:
    """Keep the ids of the active NHGs; the session stays alive only if there is one."""
    user.nhg_ids = [info.nhg_id for info in nhg_data if info.nhg_config_status == ACTIVE_NHG_STATUS]
    if user.nhg_ids:
        user.is_session_alive = True
    else:
        log.info("no active nhg found for user %s", user.email)
        user.is_session_alive = False


def store_user_hw_id(nhg_data: Iterable[NetworkInfo], user: User) -> None:
    """Keep the distinct hardware ids of all clusters of the active NHGs."""
    hw_ids = dict.fromkeys(
        hw_id
        for info in nhg_data
        if info.nhg_config_status == ACTIVE_NHG_STATUS
        for hw_id in info.hw_ids()
    )
    user.hw_ids = list(hw_ids)