import threading
from urllib.parse import parse_qs, urlsplit

import pytest
import requests
import responses

from ndaccollector.client import APIError, StatusCodeError
from ndaccollector.metrics import (
    ApiCallRequest,
    RetryAction,
    api_key,
    build_query,
    call_api,
    call_metric_api,
    fetch_metrics_data,
    handle_pagination,
    retry_api_call,
)
from ndaccollector.models import APIConf, CollectorConfig, User
from ndaccollector.runtime import Collector

BASE = "https://ndac.example.com"
PM_API = APIConf(api="/network-hardware-groups/{nhg_id}/pmdata", interval=15, metric_type="RADIO")
FM_API = APIConf(api="/network-hardware-groups/{nhg_id}/fmdata", interval=15, type="ACTIVE", metric_type="RADIO")
PM_URL_A = BASE + "/network-hardware-groups/nhg-a/pmdata"
PM_URL_B = BASE + "/network-hardware-groups/nhg-b/pmdata"
FM_URL_A = BASE + "/network-hardware-groups/nhg-a/fmdata"
START, END = "2024-01-01T00:00:00Z", "2024-01-01T00:15:00Z"

SUCCESS = {"status_code": "SUCCESS", "status_description": {"description_code": "OK", "description": "ok"}}


def page(next_record=0, num=1, data=None, key=""):
    return {
        "total_num_records": num,
        "num_of_records": num,
        "next_record": next_record,
        "data": data if data is not None else [{"value": num}],
        "status": SUCCESS,
        "search_after_key": key,
    }


class RecordingWriter:
    def __init__(self, fail_write=False):
        self.writes = []
        self.stored = []
        self.fail_write = fail_write

    def write_response(self, user, api, data, nhg_id, txn_id):
        if self.fail_write:
            raise OSError("disk full")
        self.writes.append((api.api, data, nhg_id))

    def store_last_received_data_time(self, user, data, api, nhg_id, txn_id):
        self.stored.append((api.api, data, nhg_id))


def query_of(call):
    return parse_qs(urlsplit(call.request.url).query)


@pytest.fixture
def mocked():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


@pytest.fixture
def writer():
    return RecordingWriter()


@pytest.fixture
def user():
    return User(email="user@example.com", access_token="token", is_session_alive=True, nhg_ids=["nhg-a"])


def make_collector(writer, notifier=None):
    return Collector(
        CollectorConfig(base_url=BASE, limit=100),
        session=requests.Session(),
        writer=writer,
        interval_provider=lambda u, a, n: (START, END),
        notifier=notifier,
    )


@pytest.fixture
def collector(writer):
    return make_collector(writer)


def request_for(user, api=PM_API, url=PM_URL_A, index=0, key=""):
    return ApiCallRequest(
        api=api, user=user, nhg_id="nhg-a", start_time=START, end_time=END,
        index=index, limit=100, search_after_key=key, url=url,
    )


def test_api_key_without_type(user):
    assert api_key(PM_API, user) == "user@example.com_pmdata_RADIO"


def test_api_key_with_type(user):
    assert api_key(FM_API, user) == "user@example.com_fmdata_RADIO_ACTIVE"


def test_build_query_minimal(user):
    req = ApiCallRequest(api=APIConf(api="/x"), user=user, start_time=START, end_time=END, limit=100)
    assert build_query(req) == [
        ("start_timestamp", START),
        ("end_timestamp", END),
        ("limit", "100"),
        ("index", "0"),
    ]


def test_build_query_all_fields(user):
    req = request_for(user, api=FM_API, index=5, key="abc")
    query = dict(build_query(req))
    assert query["alarm_type"] == "ACTIVE"
    assert query["metric_type"] == "RADIO"
    assert query["search_after_key"] == "abc"
    assert query["index"] == "5"


def test_call_api_success(mocked, collector, writer, user):
    mocked.add(responses.GET, PM_URL_A, json=page(num=2, data=[1, 2]))
    resp = call_api(collector, request_for(user), 7)
    assert resp.type == "pmdata"
    assert resp.num_of_records == 2
    assert writer.writes == [(PM_API.api, [1, 2], "nhg-a")]
    assert writer.stored == [(PM_API.api, [1, 2], "nhg-a")]
    sent = mocked.calls[0].request
    assert sent.headers["Authorization"] == "token"
    assert "gzip" in sent.headers["Accept-Encoding"]
    query = query_of(mocked.calls[0])
    assert query["start_timestamp"] == [START]
    assert query["metric_type"] == ["RADIO"]


def test_call_api_bad_status(mocked, collector, writer, user):
    body = page()
    body["status"] = {"status_code": "FAILED", "status_description": {"description": "nope"}}
    mocked.add(responses.GET, PM_URL_A, json=body)
    with pytest.raises(StatusCodeError):
        call_api(collector, request_for(user), 1)
    assert writer.writes == []


def test_call_api_http_error(mocked, collector, user):
    mocked.add(responses.GET, PM_URL_A, json={"detail": "missing"}, status=404)
    with pytest.raises(APIError) as info:
        call_api(collector, request_for(user), 1)
    assert info.value.status_code == 404


def test_call_api_invalid_json(mocked, collector, user):
    mocked.add(responses.GET, PM_URL_A, body="not json")
    with pytest.raises(APIError):
        call_api(collector, request_for(user), 1)


def test_call_api_write_failure(mocked, user):
    mocked.add(responses.GET, PM_URL_A, json=page())
    with pytest.raises(APIError):
        call_api(make_collector(RecordingWriter(fail_write=True)), request_for(user), 1)


def test_call_api_notifies_alarms(mocked, writer, user):
    received = []
    done = threading.Event()

    def notifier(txn_id, data, metric_type, alarm_type):
        received.append((txn_id, data, metric_type, alarm_type))
        done.set()

    mocked.add(responses.GET, FM_URL_A, json=page(data=["alarm"]))
    resp = call_api(make_collector(writer, notifier), request_for(user, api=FM_API, url=FM_URL_A), 9)
    assert resp.type == "fmdata"
    assert resp.data == ["alarm"]
    assert done.wait(5)
    assert received == [(9, ["alarm"], "RADIO", "ACTIVE")]


def test_retry_api_call_zero_attempts(mocked, collector, user):
    assert retry_api_call(collector, request_for(user), 0, 1) is None
    assert len(mocked.calls) == 0


def test_retry_api_call_recovers(mocked, collector, user):
    mocked.add(responses.GET, PM_URL_A, json={"detail": "boom"}, status=503)
    mocked.add(responses.GET, PM_URL_A, json=page(num=4))
    resp = retry_api_call(collector, request_for(user), 3, 1)
    assert resp.num_of_records == 4
    assert len(mocked.calls) == 2


def test_retry_api_call_gives_up(mocked, collector, user):
    mocked.add(responses.GET, PM_URL_A, json={"detail": "boom"}, status=503)
    with pytest.raises(APIError):
        retry_api_call(collector, request_for(user), 2, 1)
    assert len(mocked.calls) == 2


def test_handle_pagination_follows_pages(mocked, collector, writer, user):
    mocked.add(responses.GET, PM_URL_A, json=page(next_record=200, num=5, key="k2"))
    mocked.add(responses.GET, PM_URL_A, json=page(next_record=0, num=7))
    total = handle_pagination(collector, request_for(user, index=100, key="k1"), 3, 1)
    assert total == 5 + 7
    assert query_of(mocked.calls[0])["index"] == ["100"]
    assert query_of(mocked.calls[1])["index"] == ["200"]
    assert query_of(mocked.calls[1])["search_after_key"] == ["k2"]
    assert len(writer.writes) == 2


def test_handle_pagination_failure_raises(mocked, collector, user):
    mocked.add(responses.GET, PM_URL_A, json={"detail": "boom"}, status=503)
    with pytest.raises(APIError):
        handle_pagination(collector, request_for(user, index=10), 1, 1)


def test_call_metric_api_retries_on_500(mocked, collector, writer, user):
    mocked.add(responses.GET, PM_URL_A, json={"detail": "boom"}, status=500)
    mocked.add(responses.GET, PM_URL_A, json=page())
    action = call_metric_api(collector, request_for(user, url=""), 3, 1)
    assert action is RetryAction.NONE
    assert len(mocked.calls) == 2
    assert len(writer.writes) == 1


def test_call_metric_api_no_retry_on_other_errors(mocked, collector, writer, user):
    mocked.add(responses.GET, PM_URL_A, json={"detail": "missing"}, status=404)
    action = call_metric_api(collector, request_for(user, url=""), 3, 1)
    assert action is RetryAction.NONE
    assert len(mocked.calls) == 1
    assert writer.writes == []


def test_call_metric_api_pagination_failure_asks_retry(mocked, collector, user):
    mocked.add(responses.GET, PM_URL_A, json=page(next_record=10))
    mocked.add(responses.GET, PM_URL_A, json={"detail": "boom"}, status=503)
    action = call_metric_api(collector, request_for(user, url=""), 3, 1)
    assert action is RetryAction.RETRY_CURRENT


def test_fetch_metrics_data_all_nhgs(mocked, collector, writer, user):
    user.nhg_ids = ["nhg-a", "nhg-b"]
    mocked.add(responses.GET, PM_URL_A, json=page())
    mocked.add(responses.GET, PM_URL_B, json=page())
    fetch_metrics_data(collector, PM_API, user, 1)
    assert [w[2] for w in writer.writes] == ["nhg-a", "nhg-b"]
    assert query_of(mocked.calls[0])["limit"] == ["100"]
    assert collector.claim(api_key(PM_API, user)) is True


def test_fetch_metrics_data_skips_inactive_session(mocked, collector, writer, user):
    user.is_session_alive = False
    mocked.add(responses.GET, PM_URL_A, json=page())
    fetch_metrics_data(collector, PM_API, user, 1)
    assert len(mocked.calls) == 0
    assert writer.writes == []
    assert user.is_session_alive is False
    assert collector.claim(api_key(PM_API, user)) is True


def test_fetch_metrics_data_skips_when_already_running(mocked, collector, writer, user):
    assert collector.claim(api_key(PM_API, user)) is True
    fetch_metrics_data(collector, PM_API, user, 1)
    assert len(mocked.calls) == 0
    assert writer.writes == []


def test_fetch_metrics_data_redoes_current_after_pagination_failure(mocked, collector, writer, user):
    failure = {"json": {"detail": "boom"}, "status": 503}
    mocked.add(responses.GET, PM_URL_A, json=page(next_record=10))
    for _ in range(4):
        mocked.add(responses.GET, PM_URL_A, **failure)
    mocked.add(responses.GET, PM_URL_A, json=page(next_record=10))
    mocked.add(responses.GET, PM_URL_A, **failure)
    fetch_metrics_data(collector, PM_API, user, 1)
    assert len(mocked.calls) == 7
    assert len(writer.writes) == 2
    assert query_of(mocked.calls[5])["index"] == ["0"]
    assert query_of(mocked.calls[6])["index"] == ["10"]
    assert collector.claim(api_key(PM_API, user)) is True