from unittest.mock import MagicMock

import pytest
import requests

from client import ApiClient, ApiError, ListView


def _response(status_code=200, body=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.reason = "Bad Request" if status_code >= 400 else "OK"
    resp.json.return_value = body or {}
    return resp


def _page(items, total, total_pages, page=1, size=10):
    return {
        "success": True,
        "count": len(items),
        "pagination": {"total": total, "totalPages": total_pages, "currentPage": page, "pageSize": size},
        "data": items,
    }


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def api(session):
    return ApiClient("http://api.test/api/v1/", token="tok", session=session)


class TestApiClient:
    def test_sends_bearer_and_timeout(self, api, session):
        session.request.return_value = _response(body={"success": True})
        api.get("people", params={"page": 1})

        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert (method, url) == ("GET", "http://api.test/api/v1/people")
        assert kwargs["headers"]["Authorization"] == "Bearer tok"
        assert kwargs["timeout"] == 10

    def test_error_envelope_raises(self, api, session):
        session.request.return_value = _response(400, {"success": False, "error": "Invalid country id"})
        with pytest.raises(ApiError) as exc:
            api.get("people", params={"country": "x"})
        assert exc.value.status_code == 400
        assert exc.value.message == "Invalid country id"

    def test_timeout_raises_api_error(self, api, session):
        session.request.side_effect = requests.exceptions.Timeout()
        with pytest.raises(ApiError) as exc:
            api.get("people")
        assert exc.value.status_code == 0

    def test_login_stores_token(self, session):
        session.request.return_value = _response(body={"token": "new", "user": {"email": "a@acme.io"}})
        api = ApiClient("http://api.test/api/v1", session=session)
        assert api.login("a@acme.io", "pw") == {"email": "a@acme.io"}
        assert api.token == "new"


class TestListView:
    def test_refresh_trusts_server_totals(self, api, session):
        session.request.return_value = _response(body=_page([{"id": "1"}], total=42, total_pages=5))
        view = ListView(api, "people")
        items = view.refresh()
        assert items == [{"id": "1"}]
        assert (view.total, view.total_pages) == (42, 5)

    def test_params_include_filters_and_search(self, api):
        view = ListView(api, "people", page_size=25, sort_by="lastName", sort_order="desc")
        view.search = "O'Brien"
        view.filters = {"isActive": False, "company": "", "country": "abc"}
        assert view.params() == {
            "page": 1,
            "limit": 25,
            "sortBy": "lastName",
            "sortOrder": "desc",
            "search": "O'Brien",
            "isActive": "false",
            "country": "abc",
        }

    def test_debounced_search_resets_page_and_fires_once(self, api, session):
        session.request.return_value = _response(body=_page([], total=0, total_pages=0))
        view = ListView(api, "people", debounce=60)
        view.page = 4
        view.set_search("O")
        view.set_search("O'B")
        assert session.request.call_count == 0

        view.flush()
        assert session.request.call_count == 1
        params = session.request.call_args.kwargs["params"]
        assert params["search"] == "O'B"
        assert params["page"] == 1

    def test_navigation_is_clamped(self, api, session):
        session.request.return_value = _response(body=_page([{"id": "1"}], total=15, total_pages=2))
        view = ListView(api, "companies")
        view.refresh()
        view.next_page()
        view.next_page()
        assert view.page == 2
        view.go_to(-5)
        assert view.page == 1

    def test_failed_load_clears_items(self, api, session):
        session.request.return_value = _response(500, {"success": False, "error": "Server error"})
        view = ListView(api, "countries")
        assert view.refresh() == []
        assert view.error == "Server error"
