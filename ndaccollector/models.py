"""Data shapes for the collector's configuration and the API responses it reads."""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


def _mapping(data: Any, what: str) -> Mapping[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError(f"{what}: expected a JSON object, got {type(data).__name__}")
    return data


def _str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string, got {type(value).__name__}")
    return value


def _int(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field {key!r} must be an integer, got {type(value).__name__}")
    return value


def _list(data: Mapping[str, Any], key: str) -> list[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"field {key!r} must be an array, got {type(value).__name__}")
    return value


def _ready_event() -> threading.Event:
    event = threading.Event()
    event.set()
    return event


@dataclass
class APIConf:
    """One configured API endpoint and how often it is polled (minutes)."""

    api: str
    interval: int = 0
    type: str = ""
    metric_type: str = ""


@dataclass(eq=False)
class User:
    """A user whose session is used to call the APIs.

    ``token_ready`` is cleared while the access token is being refreshed;
    API calls wait on it before using the token.
    """

    email: str
    access_token: str = ""
    is_session_alive: bool = False
    nhg_ids: list[str] = field(default_factory=list)
    hw_ids: list[str] = field(default_factory=list)
    token_ready: threading.Event = field(default_factory=_ready_event, repr=False)


@dataclass
class CollectorConfig:
    """Settings that drive data collection."""

    base_url: str
    users: list[User] = field(default_factory=list)
    list_nhg_api: APIConf | None = None
    metric_apis: list[APIConf] = field(default_factory=list)
    sim_apis: list[APIConf] = field(default_factory=list)
    limit: int = 0
    delay: int = 0


@dataclass(frozen=True)
class StatusDescription:
    description_code: str = ""
    description: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> StatusDescription:
        data = _mapping(data, "status_description")
        return cls(_str(data, "description_code"), _str(data, "description"))


@dataclass(frozen=True)
class Status:
    status_code: str = ""
    status_description: StatusDescription = field(default_factory=StatusDescription)

    @classmethod
    def from_dict(cls, data: Any) -> Status:
        data = _mapping(data, "status")
        return cls(
            _str(data, "status_code"),
            StatusDescription.from_dict(data.get("status_description")),
        )


@dataclass(frozen=True)
class ErrorResponse:
    type: str = ""
    title: str = ""
    detail: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> ErrorResponse:
        data = _mapping(data, "error response")
        return cls(_str(data, "type"), _str(data, "title"), _str(data, "detail"))


@dataclass(frozen=True)
class GetAPIResponse:
    """A page of PM/FM data returned by a metric API."""

    type: str = ""
    total_num_records: int = 0
    num_of_records: int = 0
    next_record: int = 0
    data: Any = None
    status: Status = field(default_factory=Status)
    search_after_key: str = ""

    @classmethod
    def from_dict(cls, data: Any, response_type: str = "") -> GetAPIResponse:
        """Build from decoded JSON; ``response_type`` applies unless the payload sets ``type``."""
        data = _mapping(data, "api response")
        kind = _str(data, "type") if data.get("type") is not None else response_type
        return cls(
            type=kind,
            total_num_records=_int(data, "total_num_records"),
            num_of_records=_int(data, "num_of_records"),
            next_record=_int(data, "next_record"),
            data=data.get("data"),
            status=Status.from_dict(data.get("status")),
            search_after_key=_str(data, "search_after_key"),
        )


@dataclass(frozen=True)
class PageDetails:
    page_number: int = 0
    page_size: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> PageDetails:
        data = _mapping(data, "page_details")
        return cls(_int(data, "page_number"), _int(data, "page_size"))


@dataclass(frozen=True)
class PageResponse:
    page_details: PageDetails = field(default_factory=PageDetails)
    total_pages: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> PageResponse:
        data = _mapping(data, "page_response")
        return cls(PageDetails.from_dict(data.get("page_details")), _int(data, "total_pages"))


@dataclass(frozen=True)
class SimAPIResponse:
    status: Status = field(default_factory=Status)
    email_id: str = ""
    total_sims: int = 0
    in_use_sims: int = 0
    page_response: PageResponse = field(default_factory=PageResponse)
    subsc: Any = None
    requested_sims: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> SimAPIResponse:
        data = _mapping(data, "sim api response")
        return cls(
            status=Status.from_dict(data.get("status")),
            email_id=_str(data, "email_id"),
            total_sims=_int(data, "total_sims"),
            in_use_sims=_int(data, "in_use_sims"),
            page_response=PageResponse.from_dict(data.get("page_response")),
            subsc=data.get("subsc"),
            requested_sims=_int(data, "requested_sims"),
        )


@dataclass(frozen=True)
class SimData:
    """The part of a SIM response that is stored."""

    email_id: str = ""
    total_sims: int = 0
    in_use_sims: int = 0
    subsc: Any = None
    requested_sims: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialisable form; empty fields other than ``subsc`` are left out."""
        result: dict[str, Any] = {}
        if self.email_id:
            result["email_id"] = self.email_id
        if self.total_sims:
            result["total_sims"] = self.total_sims
        if self.in_use_sims:
            result["in_use_sims"] = self.in_use_sims
        result["subsc"] = self.subsc
        if self.requested_sims:
            result["requested_sims"] = self.requested_sims
        return result


@dataclass(frozen=True)
class NetworkInfo:
    """A network hardware group and the hardware ids of its clusters."""

    nhg_id: str = ""
    nhg_config_status: str = ""
    clusters: tuple[tuple[str, ...], ...] = ()

    @classmethod
    def from_dict(cls, data: Any) -> NetworkInfo:
        data = _mapping(data, "network_info")
        clusters = []
        for cluster in _list(data, "clusters"):
            cluster = _mapping(cluster, "cluster")
            hw_set = tuple(_str(_mapping(hw, "hw_set"), "hw_id") for hw in _list(cluster, "hw_set"))
            clusters.append(hw_set)
        return cls(_str(data, "nhg_id"), _str(data, "nhg_config_status"), tuple(clusters))

    def hw_ids(self) -> list[str]:
        """All hardware ids of all clusters, in order."""
        return [hw_id for cluster in self.clusters for hw_id in cluster]