#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""XDR Internals: Invoke!
Command line access to single portal calls and device timeline pulls.
"""

import configparser
import json
import os
import sys
import time

from pathvalidate import sanitize_filename

from xdrinternals.auth import session_from_files
from xdrinternals.client import DEFAULT_CACHE_TTL, XdrClient
from xdrinternals.errors import XdrError
from xdrinternals.utils import *

logger = setup_logger(__name__, debug=False)

def _client_from_files(args):
    conf = configparser.ConfigParser()
    conf.read(args.config)
    cache_ttl = config_getint(conf, 'variables', 'cache_ttl', logger, DEFAULT_CACHE_TTL)
    page_size = config_getint(conf, 'variables', 'timeline_page_size', logger, 200)
    session = session_from_files(config=args.config, auth=args.auth, encryption_pw=args.encryption_pw,
                                 debug=args.debug, log_dir=args.log_dir)
    return XdrClient(session, cache_ttl=cache_ttl, debug=args.debug), page_size

def invoke(uri,
           method="GET",
           body=None,
           config=".conf",
           auth=".auth",
           debug=False,
           encryption_pw=None,
           log_dir=None):
    """
    Call one portal API and print the JSON response

    Args:
        uri: Absolute url or /apiproxy/... path of the call
        method: HTTP method
        body: JSON body, as a JSON string or a dictionary
        config: Path to config file
        auth: File storing the cookies used for authentication
        debug: Enable debug logging
        encryption_pw: Password for the auth file encryption
        log_dir: Directory for debug.log and error.log. No log files are written when unset
    """
    global logger
    args = dict2obj({k: v for k, v in locals().items() if k != 'body'})
    logger = setup_logger(__name__, args.debug, log_dir=args.log_dir)

    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError:
            logger.error("The body is not valid JSON. Exiting.")
            sys.exit(1)

    try:
        client, _ = _client_from_files(args)
        result = client.invoke_rest_method(args.uri, method=args.method, body=body)
    except XdrError as e:
        logger.error(f"Invoke failed: {str(e)}")
        sys.exit(1)

    print(json.dumps(result, indent=2))

def timeline(device_id,
             from_date=None,
             to_date=None,
             output_dir="output",
             config=".conf",
             auth=".auth",
             debug=False,
             encryption_pw=None,
             log_dir=None):
    """
    Pull the timeline of one device into a JSON lines file

    Args:
        device_id: MDE machine id of the device
        from_date: Start of the window. Format should be YYYY-MM-DD or an ISO timestamp. Defaults to one day before to_date
        to_date: End of the window. Defaults to now
        output_dir: Directory for storing the results
        config: Path to config file
        auth: File storing the cookies used for authentication
        debug: Enable debug logging
        encryption_pw: Password for the auth file encryption
        log_dir: Directory for debug.log and error.log. No log files are written when unset
    """
    global logger
    args = dict2obj(locals())
    logger = setup_logger(__name__, args.debug, log_dir=args.log_dir)

    check_output_dir(args.output_dir, logger)
    outfile = os.path.join(args.output_dir, sanitize_filename(f"timeline_{args.device_id}.json"))

    seconds = time.perf_counter()
    try:
        client, page_size = _client_from_files(args)
        events = client.get_device_timeline(args.device_id, from_date=args.from_date, to_date=args.to_date,
                                            page_size=page_size)
    except XdrError as e:
        logger.error(f"Timeline pull failed: {str(e)}")
        sys.exit(1)

    with open(outfile, 'w', encoding='utf-8') as f:
        for event in events:
            f.write(json.dumps(event) + '\n')
    elapsed = time.perf_counter() - seconds
    logger.info("Wrote {0} events to {1} in {2:0.2f} seconds.".format(len(events), outfile, elapsed))
