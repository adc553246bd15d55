"""SIM data collection: plain, per-NHG and per-access-point SIM APIs."""

from __future__ import annotations

import json
import logging

from .client import AUTHORIZATION_HEADER, APIError, check_status_code, do_request
from .models import APIConf, SimAPIResponse, SimData, Status, User
from .runtime import NHG_PATH_PARAM, Collector

log = logging.getLogger(__name__)

PAGE_NO_QUERY_PARAM = "page.page_number"
ACCESS_POINT_SIMS_API = "access-point-sims"
HW_ID_QUERY_PARAM = "access_point_hw_id"


def fetch_sim_data(collector: Collector, api: APIConf, user: User, txn_id: int) -> None:
    """Collect SIM data for ``user`` from ``api``.

    Access point SIM APIs are called once per hardware id, APIs with an
    ``{nhg_id}`` path parameter once per NHG, and any other API once.
    """
    if not user.is_session_alive:
        log.warning(
            "[tid=%s] Skipping API call %s for %s at %s as user's session is inactive",
            txn_id, api.api, user.email, collector.now(),
        )
        return

    if ACCESS_POINT_SIMS_API in api.api:
        hw_ids = list(user.hw_ids)
        log.info("[tid=%s] starting ap_sims api for %d hardware ids", txn_id, len(hw_ids))
        for hw_id in hw_ids:
            call_access_points_sim_api(collector, api, user, hw_id, txn_id)
        log.info("[tid=%s] finished ap_sims api for %d hardware ids", txn_id, len(hw_ids))
    elif NHG_PATH_PARAM in api.api:
        for nhg_id in list(user.nhg_ids):
            call_sim_api(collector, api, user, nhg_id, 1, txn_id)
    else:
        call_sim_api(collector, api, user, "", 1, txn_id)


def call_sim_api(
    collector: Collector, api: APIConf, user: User, nhg_id: str, page_no: int, txn_id: int
) -> None:
    """Fetch and store SIM data page by page, starting at ``page_no``.

    Stops at the last page or at the first failure, which is logged.
    """
    url = collector.url_for(api, nhg_id)
    while True:
        user.token_ready.wait()
        log.info("[tid=%s] Triggered %s for %s at %s", txn_id, url, user.email, collector.now())
        try:
            body = do_request(
                collector.session,
                url,
                {AUTHORIZATION_HEADER: user.access_token},
                [(PAGE_NO_QUERY_PARAM, str(page_no))],
            )
        except APIError as exc:
            log.error("[tid=%s] Error while calling %s for %s: %s", txn_id, url, user.email, exc)
            return

        try:
            resp = SimAPIResponse.from_dict(json.loads(body))
        except ValueError as exc:
            log.error(
                "[tid=%s] Unable to decode sim api response from %s (nhg %s): %s",
                txn_id, url, nhg_id, exc,
            )
            return

        try:
            check_status_code(resp.status)
        except APIError as exc:
            log.error(
                "[tid=%s] Invalid status code received while calling %s for %s: %s",
                txn_id, url, user.email, exc,
            )
            return

        sim_data = SimData(
            email_id=resp.email_id,
            total_sims=resp.total_sims,
            in_use_sims=resp.in_use_sims,
            subsc=resp.subsc,
            requested_sims=resp.requested_sims,
        )
        try:
            collector.writer.write_response(user, api, sim_data.to_dict(), nhg_id, txn_id)
        except Exception as exc:  # the writer's failures are reported, not fatal
            log.error("[tid=%s] unable to write response for %s: %s", txn_id, user.email, exc)
            return

        pages = resp.page_response
        if pages.total_pages == pages.page_details.page_number:
            return
        page_no += 1


def call_access_points_sim_api(
    collector: Collector, api: APIConf, user: User, hw_id: str, txn_id: int
) -> None:
    """Fetch and store the SIM details of one access point; failures are logged."""
    url = collector.url_for(api)
    user.token_ready.wait()
    log.info(
        "[tid=%s] Triggered %s for %s at %s (hw_id=%s)",
        txn_id, url, user.email, collector.now(), hw_id,
    )
    try:
        body = do_request(
            collector.session,
            url,
            {AUTHORIZATION_HEADER: user.access_token},
            [(HW_ID_QUERY_PARAM, hw_id)],
        )
    except APIError as exc:
        log.error(
            "[tid=%s] Error while calling %s for %s (hw_id=%s): %s",
            txn_id, url, user.email, hw_id, exc,
        )
        return

    try:
        payload = json.loads(body)
        if not isinstance(payload, dict):
            raise ValueError("expected a JSON object")
        status = Status.from_dict(payload.get("status"))
    except ValueError as exc:
        log.error(
            "[tid=%s] Unable to decode access point sim api response from %s (hw_id=%s): %s",
            txn_id, url, hw_id, exc,
        )
        return

    try:
        check_status_code(status)
    except APIError as exc:
        log.error(
            "[tid=%s] Invalid status code received while calling %s for %s: %s",
            txn_id, url, user.email, exc,
        )
        return

    details = payload.get("access_point_imsi_details")
    if not isinstance(details, list) or not details:
        log.error("[tid=%s] no access point sims found for %s (hw_id=%s)", txn_id, user.email, hw_id)
        return

    try:
        collector.writer.write_response(user, api, details, "", txn_id)
    except Exception as exc:  # the writer's failures are reported, not fatal
        log.error(
            "[tid=%s] unable to write response for %s (hw_id=%s): %s",
            txn_id, user.email, hw_id, exc,
        )