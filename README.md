# ndaccollector

`ndaccollector` polls NDAC REST APIs for each configured user. Every response
it gets goes to a writer object that you supply. It covers three kinds of API:

- **Network hardware groups (NHG).** `ndaccollector.nhg.get_nhg_details` lists
  a user's network groups and passes the `network_info` part to the writer.
  - It keeps the ids of the groups whose `nhg_config_status` is `ACTIVE` in
    `User.nhg_ids`.
  - It keeps the distinct hardware ids of those groups' clusters in
    `User.hw_ids`.
  - If the call fails, or if no group is active, the user's session is marked
    inactive (`User.is_session_alive = False`).
- **Metric and alarm APIs.** `ndaccollector.metrics.fetch_metrics_data` fetches
  PM/FM data for each of the user's NHGs over a time window.
  - Pages are followed through `next_record` and `search_after_key`.
  - If the first page fails with an HTTP 500, it is retried up to three times.
  - If a later page still fails after its retries, the collection for that NHG
    is run once more from the first page.
  - Data from APIs whose path ends in `fmdata` is also passed to the optional
    notifier, which runs in a background thread.
- **SIM APIs.** `ndaccollector.sims.fetch_sim_data` picks one of three ways to
  call the API, based on its path:
  - a path containing `access-point-sims` is called once per hardware id, with
    `access_point_hw_id` as a query parameter;
  - a path containing `{nhg_id}` is called once per NHG, following pages with
    `page.page_number`;
  - any other path is called once, with the same paging.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Usage

There is no command-line tool. You assemble the pieces in code.

```python
from ndaccollector.client import create_http_client
from ndaccollector.models import APIConf, CollectorConfig, User
from ndaccollector.runtime import Collector
from ndaccollector.scheduler import Scheduler


class PrintWriter:
    def write_response(self, user, api, data, nhg_id, txn_id):
        print(user.email, api.api, nhg_id, data)

    def store_last_received_data_time(self, user, data, api, nhg_id, txn_id):
        pass


user = User(email="someone@example.com", access_token="token", is_session_alive=True)
config = CollectorConfig(
    base_url="https://api.example.com",
    users=[user],
    list_nhg_api=APIConf(api="/network-hardware-groups", interval=60),
    metric_apis=[APIConf(api="/nhgs/{nhg_id}/pmdata", interval=15, metric_type="RADIO")],
    limit=1000,
)
collector = Collector(config, session=create_http_client("", False), writer=PrintWriter())
scheduler = Scheduler(collector)
scheduler.start()
```

### Building an HTTP session

`ndaccollector.client.create_http_client(cert_file, skip_tls)` returns a
`requests.Session`. TLS verification is set up in one of these ways:

- With `skip_tls=True`, certificates are not verified.
- With an empty `cert_file`, the system's root certificates are used.
- With a `cert_file`, that file is used as the CA bundle. If the file cannot be
  read, the error is logged and the system's root certificates are used
  instead.

Requests time out after 62 seconds. Gzip-encoded responses are decompressed.

### Describing APIs and users

These models are in `ndaccollector.models`:

- **`APIConf`** holds the API path, which is appended to
  `CollectorConfig.base_url`. It also holds the polling `interval` in minutes,
  and optionally an alarm `type` and a `metric_type`.
- **`User`** holds an e-mail, an access token, the session flag and the NHG and
  hardware ids that were learned.
  - Calls for a user are skipped while `is_session_alive` is false, and that is
    the default. Set it to `True` for a user whose token is valid.
  - While `User.token_ready` is cleared, API calls wait before they use the
    token.
- **`CollectorConfig`** holds the users and APIs, the page `limit` for metric
  calls, and the scheduling `delay` in minutes.

### The collector

`ndaccollector.runtime.Collector(config, session, writer, interval_provider, clock, notifier)`
holds the state that all calls share. Every argument except `config` is
optional.

- **`writer`** must provide `write_response(user, api, data, nhg_id, txn_id)`
  and `store_last_received_data_time(user, data, api, nhg_id, txn_id)`. The
  default writer discards everything.
- **`interval_provider(user, api, nhg_id)`** returns the `(start, end)`
  timestamps that a metric call asks for. The default is the last
  `api.interval` minutes up to now, formatted as `YYYY-MM-DDTHH:MM:SSZ` in UTC.
- **`clock`** returns the current time. The default is UTC now.
- **`notifier(txn_id, data, metric_type, alarm_type)`** is called with FM data.
- **`next_txn_id()`** hands out transaction ids, starting at 1001. These ids
  appear in the log lines.

### Scheduling

`ndaccollector.scheduler.Scheduler(collector)` handles the timing.

`start()` works out the first run with
`ndaccollector.scheduler.first_run_time(now, delay)`. That is the next
15-minute boundary, shifted by `delay` minutes. Then it does the following:

1. If the current period has already begun, it makes one run right away, using
   `run_initial(user)` for each user.
2. It waits until the first run time.
3. For every user it refreshes the NHGs, starts one run of each metric and SIM
   API, and starts a background trigger for each API. A trigger repeats the API
   every `interval` minutes.
4. It returns.

`start()` raises `ValueError` if an API has no positive interval. `stop()`
ends the triggers and waits for the running calls to finish.

Calls can also be made one at a time with `get_nhg_details`,
`fetch_metrics_data` and `fetch_sim_data`. Each takes the collector, an
`APIConf`, a `User` and a transaction id.

Only one metric collection runs at a time for each user and API. It is
identified by the key from `ndaccollector.metrics.api_key(api, user)`. A run
that finds its key still held is skipped.

Errors from individual calls are logged through the standard `logging` module
and are not raised to the caller.

## What it does not do

- **No command-line program.** It must be driven from Python code.
- **No configuration file reading.** A `CollectorConfig` has to be built in
  code.
- **No log-in or token refresh.** The access token has to be supplied and kept
  current by the caller. Clear and set `User.token_ready` around a refresh.
- **No storage of responses.** Responses and last-received timestamps are only
  handed to the supplied writer.
- **No alarm notifications of its own.** FM data is only passed to the notifier
  you give it.