#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""XDR Internals: Auth!
This module establishes and maintains the cookie based session against the Defender XDR portal.
"""

import configparser
import json
import re
import sys
import threading

import requests

from bs4 import BeautifulSoup
from colored import stylize, attr, fg
from urllib.parse import unquote, urljoin, urlparse

from xdrinternals.cache import TENANT_ID_KEY, TtlCache
from xdrinternals.client import XdrClient
from xdrinternals.errors import ApiCallError, AuthenticationError, XdrError
from xdrinternals.models import TENANT_CONTEXT_KEY, TENANT_CONTEXT_PATH, TenantContext
from xdrinternals.utils import *

CSRF_TOKEN_KEY = "XdrXsrfToken"
SCCAUTH_COOKIE = "sccauth"
XSRF_COOKIE = "XSRF-TOKEN"
ESTS_COOKIE_NAME = "ESTSAUTHPERSISTENT"

DEFAULT_CSRF_TTL = 5
DEFAULT_TENANT_TTL = 1440
DEFAULT_USER_AGENT = ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                      "(KHTML, like Gecko) Chrome/128.0.0.0 Safari/537.36 Edg/128.0.0.0")

# Hidden form fields the provider posts back to the portal at the end of the sign-in
REQUIRED_FORM_FIELDS = ("code", "id_token", "state", "session_state", "correlation_id")
MAX_RESUME_STEPS = 2

CONFIG_BLOB_RE = re.compile(r"\$Config=(\{.*?\});\s*(?:\n|$)", re.DOTALL)


def parse_config_blob(text):
    """
    Extract the $Config={...}; JSON blob embedded in identity provider pages.

    Returns None when the page has no blob or the blob is not valid JSON.
    """
    if not text:
        return None
    match = CONFIG_BLOB_RE.search(text)
    if not match:
        return None
    try:
        return json.loads(match.group(1))
    except ValueError:
        return None


def parse_hidden_form(text):
    """
    Return (action, fields) for the first form of a page, fields being its hidden inputs.
    """
    soup = BeautifulSoup(text or "", "html.parser")
    form = soup.find("form")
    fields = {}
    for tag in soup.find_all("input"):
        if (tag.get("type") or "").lower() != "hidden":
            continue
        name = tag.get("name")
        if name:
            fields[name] = tag.get("value", "")
    action = form.get("action") if form is not None else None
    return action, fields


def cookie_value(jar, name):
    """Value of the last cookie called name in jar, ignoring domains and paths."""
    value = None
    for cookie in jar:
        if cookie.name == name:
            value = cookie.value
    return value


class XdrSession(object):
    """
    Authenticated session against the Defender XDR portal.

    Holds the requests.Session with the portal cookies, the CSRF token echoed back in
    the X-XSRF-TOKEN header and the selected tenant. The cache is shared with every
    XdrClient built on top of this session.
    """

    def __init__(self, cache=None, user_agent=None, csrf_ttl=DEFAULT_CSRF_TTL, tenant_ttl=DEFAULT_TENANT_TTL,
                 us_government=False, http_factory=None, debug=False, log_dir=None):
        self.cache = cache if cache is not None else TtlCache()
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.csrf_ttl = csrf_ttl
        self.tenant_ttl = tenant_ttl
        self.endpoints = get_endpoints(us_government)
        self.portal_url = self.endpoints["portal"] + "/"
        self.http_factory = http_factory or requests.Session
        self.log_dir = log_dir
        self.http = None
        self.csrf_token = None
        self.tenant_id = None
        self.logger = setup_logger(__name__, debug, log_dir=log_dir)
        self._lock = threading.RLock()

    @property
    def is_established(self):
        return self.http is not None

    def headers(self):
        """Base headers sent with every portal call."""
        headers = {"User-Agent": self.user_agent}
        if self.csrf_token:
            headers["X-XSRF-TOKEN"] = self.csrf_token
        if self.tenant_id:
            headers["tenant-id"] = self.tenant_id
            headers["x-tid"] = self.tenant_id
        return headers

    def _new_http(self, user_agent=None):
        http = self.http_factory()
        http.headers.update({"User-Agent": user_agent or self.user_agent})
        return http

    def _apply_headers(self):
        self.http.headers.update(self.headers())
        if not self.tenant_id:
            self.http.headers.pop("tenant-id", None)
            self.http.headers.pop("x-tid", None)

    def _commit(self, http, csrf_token, tenant_id, user_agent=None):
        """Swap in a freshly authenticated transport. Everything cached so far is dropped."""
        with self._lock:
            old = self.http
            self.http = http
            if user_agent:
                self.user_agent = user_agent
            self.csrf_token = csrf_token
            self.tenant_id = tenant_id
            self._apply_headers()
            if old is not None and old is not http:
                old.close()
            self.cache.clear()
            if tenant_id:
                self.cache.set(TENANT_ID_KEY, tenant_id, self.tenant_ttl, scoped=False)
            self.cache.set(CSRF_TOKEN_KEY, csrf_token, self.csrf_ttl, scoped=False)

    def connect_with_ests_cookie(self, cookie, tenant_id=None, user_agent=None, cookie_name=ESTS_COOKIE_NAME):
        """
        Exchange a long-lived identity provider cookie for a portal session.

        Args:
            cookie: value of the ESTSAUTH / ESTSAUTHPERSISTENT cookie from a signed in browser
            tenant_id: tenant to target, cached with the tenant TTL when given
            user_agent: user agent override for every request of this session
            cookie_name: name the cookie is injected under

        Raises:
            AuthenticationError: the exchange failed at any step. The current session is left untouched.
        """
        if not cookie or not cookie.strip():
            raise AuthenticationError("Connect with ESTS cookie: the cookie value is empty")

        http = self._new_http(user_agent)
        try:
            csrf_token = self._exchange_ests_cookie(http, cookie.strip(), cookie_name)
        except requests.RequestException as e:
            http.close()
            raise AuthenticationError(f"Connect with ESTS cookie: request failed: {str(e)}") from e
        except AuthenticationError:
            http.close()
            raise

        self._commit(http, csrf_token, tenant_id, user_agent)
        self.logger.info("Connected to the Defender XDR portal with the ESTS cookie.")
        return self

    def _exchange_ests_cookie(self, http, cookie, cookie_name):
        authority = self.endpoints["authority"]

        self.logger.debug("Bootstrapping identity provider session")
        http.request("GET", authority + "/error", allow_redirects=True)
        http.cookies.set(cookie_name, cookie, domain=urlparse(authority).hostname, path="/")

        self.logger.debug(f"Starting portal sign-in at {self.portal_url}")
        response = http.request("GET", self.portal_url, allow_redirects=True)

        for _ in range(MAX_RESUME_STEPS):
            blob = parse_config_blob(response.text)
            if not blob or not blob.get("urlResume"):
                break
            self.logger.debug("Following resume url from the identity provider")
            response = http.request("GET", blob["urlResume"], allow_redirects=True)

        blob = parse_config_blob(response.text) or {}
        action, fields = parse_hidden_form(response.text)

        if "code" not in fields:
            description = fields.get("error_description") or blob.get("strServiceExceptionMessage")
            if not description and blob.get("sErrorCode"):
                description = f"identity provider error code {blob['sErrorCode']}"
            if not description:
                description = "the identity provider did not return an authorization code. Is the cookie expired?"
            raise AuthenticationError(f"Connect with ESTS cookie: {description}")

        missing = [name for name in REQUIRED_FORM_FIELDS if not fields.get(name)]
        if missing:
            raise AuthenticationError(f"Connect with ESTS cookie: sign-in response is missing {', '.join(missing)}")

        post_url = urljoin(response.url or self.portal_url, action) if action else self.portal_url
        self.logger.debug(f"Posting authorization code to {post_url}")
        http.request("POST", post_url, data=fields, allow_redirects=True)

        return self._portal_csrf_token(http, "Connect with ESTS cookie")

    def _portal_csrf_token(self, http, operation):
        sccauth = cookie_value(http.cookies, SCCAUTH_COOKIE)
        xsrf = cookie_value(http.cookies, XSRF_COOKIE)
        if not sccauth or not xsrf:
            raise AuthenticationError(f"{operation}: the portal did not issue the sccauth and XSRF-TOKEN cookies")
        return unquote(xsrf)

    def connect_with_cookies(self, sccauth, xsrf, tenant_id=None, user_agent=None):
        """
        Use the portal's own session cookies, e.g. copied out of the browser developer tools.

        The tenant is resolved with one call to the tenant context endpoint when not supplied.
        """
        if not sccauth or not xsrf:
            raise AuthenticationError("Connect with cookies: both sccauth and xsrf are required")

        http = self._new_http(user_agent)
        portal_host = urlparse(self.portal_url).hostname
        http.cookies.set(SCCAUTH_COOKIE, sccauth.strip(), domain=portal_host, path="/")
        http.cookies.set(XSRF_COOKIE, xsrf.strip(), domain=portal_host, path="/")
        csrf_token = self._portal_csrf_token(http, "Connect with cookies")

        context = None
        if not tenant_id:
            try:
                context = self._resolve_tenant(http, csrf_token)
            except AuthenticationError:
                http.close()
                raise
            tenant_id = context.tenant_id

        self._commit(http, csrf_token, tenant_id, user_agent)
        if context is not None:
            self.cache.set(TENANT_CONTEXT_KEY, context, self.tenant_ttl)
        self.logger.info("Connected to the Defender XDR portal with session cookies.")
        return self

    def _resolve_tenant(self, http, csrf_token):
        url = urljoin(self.portal_url, TENANT_CONTEXT_PATH)
        self.logger.debug("Resolving tenant from the tenant context endpoint")
        try:
            response = http.request("GET", url, headers={"X-XSRF-TOKEN": csrf_token})
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise AuthenticationError(f"Connect with cookies: could not resolve the tenant: {str(e)}") from e
        context = TenantContext.from_payload(payload)
        if context is None:
            raise AuthenticationError("Connect with cookies: the tenant context response has no tenant id")
        return context

    def select_tenant(self, tenant_id):
        """Target another tenant. Tenant scoped headers and cache keys follow."""
        with self._lock:
            self.tenant_id = tenant_id
            if tenant_id:
                self.cache.set(TENANT_ID_KEY, tenant_id, self.tenant_ttl, scoped=False)
            else:
                self.cache.clear(TENANT_ID_KEY, scoped=False)
            if self.http is not None:
                self._apply_headers()
        return self

    def refresh(self):
        """
        Make sure the CSRF token is current before a call.

        Zero calls while the cached token is valid, otherwise one GET of the portal root.
        """
        with self._lock:
            if self.http is None:
                raise AuthenticationError("Refresh session: no session has been established, connect first")

            entry = self.cache.get(CSRF_TOKEN_KEY, scoped=False)
            if entry is not None and entry.is_valid(self.cache.clock()):
                return self

            self.logger.debug("CSRF token expired, refreshing the session")
            try:
                response = self.http.request("GET", self.portal_url, allow_redirects=True)
                response.raise_for_status()
            except requests.RequestException as e:
                status_code = e.response.status_code if e.response is not None else None
                raise ApiCallError(f"Refresh session: {str(e)}", endpoint=self.portal_url,
                                   status_code=status_code) from e

            xsrf = cookie_value(self.http.cookies, XSRF_COOKIE)
            if xsrf and unquote(xsrf) != self.csrf_token:
                self.logger.debug("Portal rotated the XSRF-TOKEN cookie")
                self.csrf_token = unquote(xsrf)
                self._apply_headers()
            self.cache.set(CSRF_TOKEN_KEY, self.csrf_token, self.csrf_ttl, scoped=False)
        return self

    def reset(self):
        """Replace the pooled transport, keeping the cookies and base headers."""
        with self._lock:
            if self.http is None:
                return self
            http = self._new_http()
            http.cookies.update(self.http.cookies)
            old = self.http
            self.http = http
            self._apply_headers()
            old.close()
        return self


def session_from_files(config=".conf", auth=".auth", encryption_pw=None, debug=False, log_dir=None):
    """
    Build a connected XdrSession from the .conf and .auth files written by `xdrinternals conf`.

    The ESTS cookie is preferred when the auth file has one, otherwise sccauth and xsrf are used.
    debug.log and error.log are written to log_dir when it is set.
    """
    logger = setup_logger(__name__, debug, log_dir=log_dir)

    conf = configparser.ConfigParser()
    conf.read(config)
    tenant = config_get(conf, 'config', 'tenant', logger) or None
    user_agent = config_get(conf, 'config', 'user_agent', logger) or None
    us_government = (config_get(conf, 'config', 'us_government', logger) or 'false').lower() == 'true'
    csrf_ttl = config_getint(conf, 'variables', 'csrf_ttl', logger, DEFAULT_CSRF_TTL)
    tenant_ttl = config_getint(conf, 'variables', 'tenant_ttl', logger, DEFAULT_TENANT_TTL)

    auth_str = read_auth(auth, logger=logger, encryption_pw=encryption_pw)
    if not auth_str:
        logger.error(f"{auth} auth file missing. Please run conf first. Exiting.")
        sys.exit(1)
    authconfig = configparser.ConfigParser()
    authconfig.read_string(auth_str)

    session = XdrSession(user_agent=user_agent, csrf_ttl=csrf_ttl, tenant_ttl=tenant_ttl,
                         us_government=us_government, debug=debug, log_dir=log_dir)

    estsauth = config_get(authconfig, 'auth', 'estsauth', logger)
    if estsauth:
        return session.connect_with_ests_cookie(estsauth, tenant_id=tenant)

    sccauth = config_get(authconfig, 'auth', 'sccauth', logger)
    xsrf = config_get(authconfig, 'auth', 'xsrf', logger)
    if not sccauth or not xsrf:
        logger.error("The auth file needs either estsauth or both sccauth and xsrf. Exiting.")
        sys.exit(1)
    return session.connect_with_cookies(sccauth, xsrf, tenant_id=tenant)


def auth(config=".conf",
         auth=".auth",
         debug=False,
         encryption_pw=None,
         log_dir=None):
    """
    XDR Internals Authentication check

    Args:
        config: Path to config file
        auth: File storing the cookies used for authentication
        debug: Enable debug logging
        encryption_pw: Password for the auth file encryption
        log_dir: Directory for debug.log and error.log. No log files are written when unset
    """
    args = dict2obj(locals())
    logger = setup_logger(__name__, args.debug, log_dir=args.log_dir)
    try:
        session = session_from_files(config=args.config, auth=args.auth, encryption_pw=args.encryption_pw,
                                     debug=args.debug, log_dir=args.log_dir)
        context = XdrClient(session).get_tenant_context()
    except XdrError as e:
        logger.error(f"Authentication failed: {str(e)}")
        sys.exit(1)

    print(stylize(f"Authenticated to tenant {context.tenant_id} as {context.user_principal_name}", fg("green") + attr("bold")))
