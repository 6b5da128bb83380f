#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""XDR Internals: XDRay!
Turns portal traffic captured in the browser developer tools (a HAR export) into a
Python script that replays it through XdrClient.
"""

import json
import os
import re
import sys

from collections import namedtuple
from pathvalidate import sanitize_filename
from urllib.parse import parse_qs, unquote, urlparse

from xdrinternals.utils import setup_logger

CapturedRequest = namedtuple("CapturedRequest", ["method", "url", "headers", "body"])

APIPROXY_MARKER = "/apiproxy"

# Path templates of the portal calls XdrClient implements. Parameter sources:
#   path:<name>   placeholder in the path template
#   query:<name>  query string value
#   header:<name> request header
#   fixed:<value> literal
#   body.<a.b>    dotted path into the JSON body
API_MAPPING = [
    {
        "path": "/apiproxy/mtp/sccManagement/mgmt/TenantContext",
        "call": "get_tenant_context",
        "parameters": {}
    },
    {
        "path": "/apiproxy/mtp/mdeTimelineExperience/machines/{device_id}/events/",
        "call": "get_device_timeline",
        "parameters": {
            "device_id": "path:device_id",
            "from_date": "query:fromDate",
            "to_date": "query:toDate",
            "page_size": "query:pageSize"
        }
    },
    {
        "path": "/apiproxy/mtp/incidentQueue/incidents/merge",
        "method": "POST",
        "call": "merge_incidents",
        "parameters": {
            "incident_ids": "body.IncidentIds",
            "comment": "body.Comment"
        }
    },
    {
        "path": "/apiproxy/mtp/incidentQueue/incidents/{incident_id}",
        "method": "GET",
        "call": "get_incident",
        "parameters": {
            "incident_id": "path:incident_id"
        }
    }
]

SCRIPT_HEADER = """# XDRay generated script
# The mapping to XdrClient calls is best effort and may not reflect the exact parameters.
# Do NOT run this code without verifying it yourself.

from xdrinternals.auth import session_from_files
from xdrinternals.client import XdrClient

session = session_from_files(config={config!r}, auth={auth!r})
client = XdrClient(session)
"""


def _template_regex(template):
    pattern = ""
    for part in re.split(r"(\{[^}]+\})", template.rstrip("/")):
        if part.startswith("{") and part.endswith("}"):
            pattern += f"(?P<{part[1:-1]}>[^/]+)"
        else:
            pattern += re.escape(part)
    return re.compile("^" + pattern + "/?$", re.IGNORECASE)


_COMPILED_MAPPING = [(_template_regex(m["path"]), m) for m in API_MAPPING]


def load_har(path):
    """
    Read a HAR export and return its portal /apiproxy requests in capture order.
    """
    with open(path, "r", encoding="utf-8") as f:
        har = json.load(f)

    captured = []
    for entry in har.get("log", {}).get("entries", []):
        request = entry.get("request") or {}
        url = request.get("url", "")
        if APIPROXY_MARKER not in url:
            continue
        headers = {h["name"].lower(): h.get("value") for h in request.get("headers", []) if "name" in h}
        body = (request.get("postData") or {}).get("text")
        if body:
            try:
                body = json.loads(body)
            except ValueError:
                pass
        else:
            body = None
        captured.append(CapturedRequest(request.get("method", "GET").upper(), url, headers, body))
    return captured


def match_request(request):
    """
    Find the XdrClient call for a captured request.

    :return: (mapping, path parameters), or (None, {}) when no call matches
    """
    path = urlparse(request.url).path
    for regex, mapping in _COMPILED_MAPPING:
        if "method" in mapping and mapping["method"] != request.method:
            continue
        match = regex.match(path)
        if match:
            return mapping, {k: unquote(v) for k, v in match.groupdict().items()}
    return None, {}


def resolve_value(request, source, path_params):
    if source.startswith("fixed:"):
        return source[len("fixed:"):]
    if source.startswith("header:"):
        return request.headers.get(source[len("header:"):].lower())
    if source.startswith("path:"):
        return path_params.get(source[len("path:"):])
    if source.startswith("query:"):
        values = parse_qs(urlparse(request.url).query).get(source[len("query:"):])
        if not values:
            return None
        value = values[0]
        return int(value) if value.isdigit() else value

    current = request._asdict()
    for part in source.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def generate_code(request):
    mapping, path_params = match_request(request)
    if mapping:
        args = []
        for name, source in mapping["parameters"].items():
            value = resolve_value(request, source, path_params)
            if value is not None:
                args.append(f"{name}={value!r}")
        return f"# {mapping['call']}\nclient.{mapping['call']}({', '.join(args)})"

    # Only fall back to the generic call when no XdrClient method matches
    code = f"client.invoke_rest_method({request.url!r}, method={request.method!r}"
    if request.body is not None:
        code += f", body={request.body!r}"
    return code + ")"


def generate_script(captured, config=".conf", auth=".auth"):
    script = SCRIPT_HEADER.format(config=config, auth=auth)
    for request in captured:
        script += "\n" + generate_code(request) + "\n"
    return script


def xdray(har,
          output=None,
          config=".conf",
          auth=".auth",
          debug=False,
          log_dir=None):
    """
    Generate a Python script from portal traffic captured in a HAR file

    Args:
        har: Path to the HAR export from the browser developer tools
        output: Path of the script to write. The script is printed when not set
        config: Config file the generated script connects with
        auth: Auth file the generated script connects with
        debug: Enable debug logging
        log_dir: Directory for debug.log and error.log. No log files are written when unset
    """
    logger = setup_logger(__name__, debug, log_dir=log_dir)
    try:
        captured = load_har(har)
    except (OSError, ValueError) as e:
        logger.error(f"Could not read HAR file {har}: {str(e)}")
        sys.exit(1)

    if not captured:
        logger.warning(f"No {APIPROXY_MARKER} requests found in {har}.")
    logger.debug(f"Captured {len(captured)} portal requests")

    script = generate_script(captured, config=config, auth=auth)
    if output is None:
        print(script)
        return

    output = os.path.join(os.path.dirname(output), sanitize_filename(os.path.basename(output)))
    with open(output, "w", encoding="utf-8") as f:
        f.write(script)
    logger.info(f"Wrote {len(captured)} requests to {output}")
