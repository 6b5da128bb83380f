"""
Shared fixtures: an in-memory portal standing in for requests.Session, and a fake clock
"""
import json
import logging

import pytest
import requests

from requests.cookies import RequestsCookieJar
from requests.structures import CaseInsensitiveDict

from xdrinternals.auth import XdrSession
from xdrinternals.cache import TtlCache

PORTAL = "https://security.microsoft.com/"
PORTAL_HOST = "security.microsoft.com"
LOGIN_ERROR = "https://login.microsoftonline.com/error"
TENANT_CONTEXT = "https://security.microsoft.com/apiproxy/mtp/sccManagement/mgmt/TenantContext"

FORM_PAGE = """<html><body>
<form method="POST" name="hiddenform" action="https://security.microsoft.com/">
<input type="hidden" name="code" value="auth-code" />
<input type="hidden" name="id_token" value="id-token" />
<input type="hidden" name="state" value="state-value" />
<input type="hidden" name="session_state" value="session-state" />
<input type="hidden" name="correlation_id" value="correlation-id" />
<noscript><input type="submit" value="Continue" /></noscript>
</form></body></html>"""


def make_response(status=200, json_body=None, text=None, url=PORTAL):
    """Build a real requests.Response without touching the network"""
    response = requests.Response()
    response.status_code = status
    if json_body is not None:
        response._content = json.dumps(json_body).encode("utf-8")
    elif text is not None:
        response._content = text.encode("utf-8")
    else:
        response._content = b""
    response.encoding = "utf-8"
    response.url = url
    return response


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, minutes):
        self.now += minutes * 60


class FakeHttp:
    """Minimal requests.Session replacement routing every call to a FakePortal"""

    def __init__(self, portal):
        self.portal = portal
        self.cookies = RequestsCookieJar()
        self.headers = CaseInsensitiveDict()
        self.closed = False

    def request(self, method, url, **kwargs):
        return self.portal.handle(self, method, url, kwargs)

    def close(self):
        self.closed = True


class FakePortal:
    """Routes (method, url without query) to canned responses or handler functions"""

    def __init__(self):
        self.routes = []
        self.sessions = []
        self.calls = []

    def factory(self):
        http = FakeHttp(self)
        self.sessions.append(http)
        return http

    def route(self, method, url, handler):
        """handler is a Response, an exception instance, or callable(http, kwargs)"""
        self.routes.insert(0, (method, url, handler))

    def handle(self, http, method, url, kwargs):
        self.calls.append({"method": method, "url": url, "http": http,
                           "session_headers": dict(http.headers), **kwargs})
        base = url.split("?")[0]
        for route_method, route_url, handler in self.routes:
            if route_method == method and route_url == base:
                if isinstance(handler, Exception):
                    raise handler
                if callable(handler):
                    return handler(http, kwargs)
                return handler
        raise AssertionError(f"Unexpected request {method} {url}")

    def calls_to(self, url, method=None):
        return [c for c in self.calls
                if c["url"].split("?")[0] == url and (method is None or c["method"] == method)]


def set_portal_cookies(http, xsrf="token%3Aone"):
    http.cookies.set("sccauth", "scc-session", domain=PORTAL_HOST, path="/")
    http.cookies.set("XSRF-TOKEN", xsrf, domain=PORTAL_HOST, path="/")


def install_sign_in(portal, sign_in_page=FORM_PAGE, xsrf="token%3Aone"):
    """Routes for the ESTS cookie exchange ending with the portal cookies being issued"""

    def portal_root(http, kwargs):
        if any(c.name == "sccauth" for c in http.cookies):
            return make_response(text="<html>portal</html>")
        return make_response(text=sign_in_page, url="https://login.microsoftonline.com/common/oauth2/authorize")

    def post_code(http, kwargs):
        assert kwargs["data"]["code"] == "auth-code"
        set_portal_cookies(http, xsrf=xsrf)
        return make_response(text="<html>portal</html>")

    portal.route("GET", LOGIN_ERROR, make_response(text="<html>error</html>"))
    portal.route("GET", PORTAL, portal_root)
    portal.route("POST", PORTAL, post_code)


@pytest.fixture(autouse=True)
def detach_log_files():
    """Close debug.log / error.log handlers a test attached to the package loggers"""
    yield
    for name in list(logging.root.manager.loggerDict):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            if isinstance(handler, logging.FileHandler):
                handler.close()
                logger.removeHandler(handler)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def portal():
    return FakePortal()


@pytest.fixture
def session(portal, clock):
    return XdrSession(cache=TtlCache(clock=clock), http_factory=portal.factory)


@pytest.fixture
def connected_session(session):
    """Session connected with explicit cookies for tenant-a, no calls made"""
    return session.connect_with_cookies("scc-session", "token%3Aone", tenant_id="tenant-a")
