#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""XDR Internals: Client!
This module has the generic authenticated call into the portal /apiproxy APIs and the
handful of portal calls the rest of the library depends on.
"""

import json
import logging
import random
import time

import dateutil.parser
import pytz
import requests

from datetime import datetime, timedelta
from tenacity import before_sleep_log, retry, retry_if_exception, stop_after_attempt, wait_random
from urllib.parse import quote, urljoin

from xdrinternals.cache import cache_key_for
from xdrinternals.errors import ApiCallError, ValidationError
from xdrinternals.models import TENANT_CONTEXT_KEY, TENANT_CONTEXT_PATH, TenantContext
from xdrinternals.utils import setup_logger

utc = pytz.UTC

logger = setup_logger(__name__, debug=False)

DEFAULT_CACHE_TTL = 30
TIMELINE_PATH = "/apiproxy/mtp/mdeTimelineExperience/machines/{device_id}/events/"
TIMELINE_ATTEMPTS = 3
INCIDENT_PATH = "/apiproxy/mtp/incidentQueue/incidents/{incident_id}"
INCIDENT_MERGE_PATH = "/apiproxy/mtp/incidentQueue/incidents/merge"


def to_utc(value):
    """Accept a datetime or a date string and return an aware UTC datetime."""
    if isinstance(value, str):
        value = dateutil.parser.parse(value)
    if value.tzinfo is None:
        return utc.localize(value)
    return value.astimezone(utc)


def format_portal_time(value):
    return value.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def incident_cache_key(incident_id):
    return f"XdrIncident_{incident_id}"


def is_transient(exception):
    """Transport failures, throttling and server errors are worth another attempt."""
    if not isinstance(exception, ApiCallError):
        return False
    status_code = exception.status_code
    return status_code is None or status_code == 429 or status_code >= 500


class XdrClient(object):
    """
    Calls into the portal through an established XdrSession.

    Every call refreshes the session first and can be served from the session's cache.
    """

    def __init__(self, session, cache_ttl=DEFAULT_CACHE_TTL, debug=False, log_dir=None):
        self.session = session
        self.cache = session.cache
        self.cache_ttl = cache_ttl
        self.logger = setup_logger(__name__, debug, log_dir=log_dir or session.log_dir)

    def _url(self, uri):
        return urljoin(self.session.portal_url, uri)

    def invoke_rest_method(self, uri, method="GET", body=None, cache_key=None, ttl_minutes=None,
                           force=False, headers=None, params=None):
        """
        Issue one authenticated call and return the decoded JSON body.

        Args:
            uri: absolute url, or a path resolved against the portal root
            method: HTTP method
            body: request body. Dicts and lists are sent as JSON
            cache_key: cache the result under this key. Nothing is cached without one
            ttl_minutes: lifetime of the cached result, defaults to the client cache_ttl
            force: skip the cache lookup, the live result still overwrites the cache
            headers: one-off headers for this call only
            params: query string parameters

        Raises:
            ApiCallError: transport failure, non-2xx status or a body that is not JSON
        """
        self.session.refresh()
        url = self._url(uri)
        method = method.upper()

        if cache_key and not force:
            entry = self.cache.get(cache_key)
            if entry is not None and entry.is_valid(self.cache.clock()):
                self.logger.debug(f"Cache hit for {cache_key}")
                return entry.value

        request_headers = {}
        kwargs = {}
        if body is not None:
            request_headers["Content-Type"] = "application/json"
            kwargs["data"] = body if isinstance(body, (str, bytes)) else json.dumps(body)
        if headers:
            request_headers.update(headers)

        self.logger.debug(f"{method} {url}")
        try:
            try:
                response = self.session.http.request(method, url, headers=request_headers or None, params=params, **kwargs)
                response.raise_for_status()
            except requests.RequestException as e:
                status_code = e.response.status_code if e.response is not None else None
                raise ApiCallError(f"{method} {url} failed: {str(e)}", endpoint=url, status_code=status_code) from e

            try:
                result = response.json() if response.content else None
            except ValueError as e:
                raise ApiCallError(f"{method} {url} returned a body that is not JSON: {str(e)}", endpoint=url,
                                   status_code=response.status_code) from e
        finally:
            if headers:
                self.session.reset()

        if cache_key:
            self.cache.set(cache_key, result, ttl_minutes if ttl_minutes is not None else self.cache_ttl)
        return result

    def get_tenant_context(self, force=False):
        """
        Tenant id and signed in user of the session. Cached with the tenant TTL.
        """
        if not force:
            cached = self.cache.get_valid(TENANT_CONTEXT_KEY)
            if cached is not None:
                return cached

        payload = self.invoke_rest_method(TENANT_CONTEXT_PATH)
        context = TenantContext.from_payload(payload)
        if context is None:
            raise ApiCallError("Get tenant context: the response has no tenant id", endpoint=self._url(TENANT_CONTEXT_PATH))
        if context.tenant_id != self.session.tenant_id:
            self.session.select_tenant(context.tenant_id)
        self.cache.set(TENANT_CONTEXT_KEY, context, self.session.tenant_ttl)
        return context

    def get_device_timeline(self, device_id, from_date=None, to_date=None, page_size=200, force=False,
                            ttl_minutes=None):
        """Events of one device between from_date and to_date (default: the last day).

        Pages are fetched one after the other with a random 3-10 second pause in between
        to stay under the portal's rate limiting. A page failing on the transport, a 429 or
        a 5xx is retried before the whole call fails. Other statuses fail at once.

        :param device_id: MDE machine id
        :type device_id: str
        :param from_date: start of the window, datetime or date string
        :param to_date: end of the window, datetime or date string
        :param page_size: events per page
        :type page_size: int
        :param force: ignore a cached timeline for the same parameters
        :type force: bool
        :return: list of timeline events
        :rtype: list
        """
        if not device_id:
            raise ValidationError("Get device timeline: a device id is required")
        to_date = to_utc(to_date) if to_date else datetime.now(utc)
        from_date = to_utc(from_date) if from_date else to_date - timedelta(days=1)
        if from_date > to_date:
            raise ValidationError(f"Get device timeline: from date {from_date.isoformat()} is after to date {to_date.isoformat()}")

        cache_key = cache_key_for("XdrDeviceTimeline", device_id=device_id, from_date=from_date.isoformat(),
                                  to_date=to_date.isoformat(), page_size=page_size)
        if not force:
            cached = self.cache.get_valid(cache_key)
            if cached is not None:
                return cached

        url = self._url(TIMELINE_PATH.format(device_id=quote(str(device_id), safe="")))
        params = {
            "fromDate": format_portal_time(from_date),
            "toDate": format_portal_time(to_date),
            "pageSize": page_size,
            "doNotUseCache": "false",
            "forceUseCache": "false"
        }

        events = []
        page = 0
        while url:
            if page:
                delay = random.uniform(3, 10)
                self.logger.debug(f"Sleeping {delay:.1f} seconds before the next timeline page")
                time.sleep(delay)
            result = self._get_timeline_page(url, params if page == 0 else None) or {}
            page += 1
            items = result.get("Items") or []
            events.extend(items)
            self.logger.info(f"Retrieved timeline page {page} for device {device_id} ({len(items)} events)")
            next_link = result.get("Prev")
            url = urljoin(url, next_link) if next_link and items else None

        self.cache.set(cache_key, events, ttl_minutes if ttl_minutes is not None else self.cache_ttl)
        return events

    @retry(stop=stop_after_attempt(TIMELINE_ATTEMPTS),
           wait=wait_random(5, 10),
           retry=retry_if_exception(is_transient),
           before_sleep=before_sleep_log(logger, logging.WARNING),
           reraise=True)
    def _get_timeline_page(self, url, params):
        return self.invoke_rest_method(url, params=params)

    def get_incident(self, incident_id, force=False, ttl_minutes=None):
        """
        One incident, or None when the portal does not know the id.
        """
        try:
            return self.invoke_rest_method(INCIDENT_PATH.format(incident_id=quote(str(incident_id), safe="")),
                                           cache_key=incident_cache_key(incident_id), ttl_minutes=ttl_minutes,
                                           force=force)
        except ApiCallError as e:
            if e.status_code == 404:
                self.logger.debug(f"Incident {incident_id} not found")
                return None
            raise

    def merge_incidents(self, incident_ids, comment=None):
        """
        Merge incidents into one. Every id is checked before the merge is sent.

        Raises:
            ValidationError: fewer than two ids, or ids the portal does not know
        """
        ids = list(dict.fromkeys(incident_ids))
        if len(ids) < 2:
            raise ValidationError("Merge incidents: at least two distinct incident ids are required", invalid_ids=ids)

        invalid = [incident_id for incident_id in ids if self.get_incident(incident_id, force=True) is None]
        if invalid:
            raise ValidationError(f"Merge incidents: unknown incident ids: {', '.join(str(i) for i in invalid)}",
                                  invalid_ids=invalid)

        body = {"IncidentIds": ids}
        if comment:
            body["Comment"] = comment
        result = self.invoke_rest_method(INCIDENT_MERGE_PATH, method="POST", body=body)
        for incident_id in ids:
            self.cache.clear(incident_cache_key(incident_id))
        self.logger.info(f"Merged incidents {', '.join(str(i) for i in ids)}")
        return result
