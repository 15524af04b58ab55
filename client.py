"""
Python client for the Global Tracker API.

``ApiClient`` wraps the HTTP calls. ``ListView`` keeps the state of one
paginated list screen (page, page size, search text, filters) and reloads it
from the server. Totals always come from the server's pagination block; pages
are never filtered again on the client.
"""
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10
SEARCH_DEBOUNCE_SECONDS = 0.3


class ApiError(Exception):
    def __init__(self, status_code: int, message: str, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.payload = payload or {}


class ApiClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000/api/v1",
        token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    def request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {**self._headers(), **kwargs.pop("headers", {})}
        try:
            resp = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout:
            raise ApiError(0, f"Request to {url} timed out after {self.timeout}s")
        except requests.exceptions.ConnectionError as e:
            raise ApiError(0, f"Could not connect to {url}: {e}")

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code >= 400:
            message = body.get("error") or body.get("message") or resp.reason or "Request failed"
            raise ApiError(resp.status_code, message, body)
        return body

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.request("POST", path, json=json)

    def put(self, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.request("PUT", path, json=json)

    def delete(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.request("DELETE", path, params=params)

    def login(self, email: str, password: str) -> Dict[str, Any]:
        body = self.post("auth/login", json={"email": email, "password": password})
        self.token = body.get("token")
        return body.get("user", {})

    def logout(self) -> None:
        if self.token:
            self.post("auth/logout")
        self.token = None


class ListView:
    """State of one list screen (``countries``, ``companies`` or ``people``)."""

    def __init__(
        self,
        client: ApiClient,
        resource: str,
        page_size: int = 10,
        sort_by: Optional[str] = None,
        sort_order: str = "asc",
        debounce: float = SEARCH_DEBOUNCE_SECONDS,
        on_change: Optional[Callable[["ListView"], None]] = None,
    ):
        self.client = client
        self.resource = resource
        self.page = 1
        self.page_size = page_size
        self.sort_by = sort_by
        self.sort_order = sort_order
        self.search = ""
        self.filters: Dict[str, Any] = {}
        self.debounce = debounce
        self.on_change = on_change

        self.items: List[Dict[str, Any]] = []
        self.total = 0
        self.total_pages = 0
        self.error: Optional[str] = None

        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {"page": self.page, "limit": self.page_size}
        if self.sort_by:
            params["sortBy"] = self.sort_by
            params["sortOrder"] = self.sort_order
        if self.search.strip():
            params["search"] = self.search
        for key, value in self.filters.items():
            if value is None or value == "":
                continue
            params[key] = str(value).lower() if isinstance(value, bool) else value
        return params

    def refresh(self) -> List[Dict[str, Any]]:
        try:
            body = self.client.get(self.resource, params=self.params())
        except ApiError as e:
            logger.warning("Failed to load %s: %s", self.resource, e.message)
            self.error = e.message
            self.items, self.total, self.total_pages = [], 0, 0
        else:
            self.error = None
            self.items = body.get("data", [])
            pagination = body.get("pagination") or {}
            self.total = pagination.get("total", body.get("count", len(self.items)))
            self.total_pages = pagination.get("totalPages", 1 if self.items else 0)
        if self.on_change:
            self.on_change(self)
        return self.items

    def set_search(self, text: str) -> None:
        """Schedule a reload; typing again within the debounce window restarts it."""
        with self._lock:
            self.search = text
            self.page = 1
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce, self.refresh)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> None:
        """Run a pending debounced search now."""
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            self.refresh()

    def set_filter(self, name: str, value: Any) -> List[Dict[str, Any]]:
        self.filters[name] = value
        self.page = 1
        return self.refresh()

    def clear_filters(self) -> List[Dict[str, Any]]:
        self.filters = {}
        self.search = ""
        self.page = 1
        return self.refresh()

    def set_sort(self, field: str, order: str = "asc") -> List[Dict[str, Any]]:
        self.sort_by, self.sort_order = field, order
        return self.refresh()

    def set_page_size(self, size: int) -> List[Dict[str, Any]]:
        self.page_size = size
        self.page = 1
        return self.refresh()

    def go_to(self, page: int) -> List[Dict[str, Any]]:
        last = max(self.total_pages, 1)
        self.page = min(max(page, 1), last)
        return self.refresh()

    def next_page(self) -> List[Dict[str, Any]]:
        return self.go_to(self.page + 1)

    def previous_page(self) -> List[Dict[str, Any]]:
        return self.go_to(self.page - 1)
