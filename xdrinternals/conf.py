#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""XDR Internals: generate_conf
This script creates the configuration and auth files to use.
"""
import configparser
import getpass
import inspect
import os

from docstring_parser import parse

from xdrinternals.utils import *

def genconfstring(args, docstring_params, section_name, prefix, config_dict=None):
    config_dict = config_dict or {}
    conf_s = f"[{section_name}]\n"
    for arg_key in args.keys():
        if arg_key.startswith(prefix):
            var_name = arg_key[len(prefix):]
            val = args[arg_key]
            if val is None and section_name in config_dict and var_name in config_dict[section_name]:
                val = config_dict[section_name][var_name]
            if val is None:
                val = ""
            if arg_key in docstring_params:
                desc = docstring_params[arg_key]
                conf_s += f"# {desc}\n"
            conf_s += f"{var_name}={val}\n"
    conf_s += "\n"
    return conf_s

def _auth_file_exists(outpath_auth, insecure):
    return (insecure and os.path.isfile(outpath_auth)) or os.path.isfile(outpath_auth + ".aes")

def genconf(outpath_auth=".auth",
            outpath_conf=".conf",
            auth_estsauth=None,
            auth_sccauth=None,
            auth_xsrf=None,
            config_tenant=None,
            config_user_agent=None,
            config_us_government=False,
            variable_csrf_ttl=5,
            variable_tenant_ttl=1440,
            variable_cache_ttl=30,
            variable_timeline_page_size=200,
            dict_config=None,
            new=False,
            insecure=False,
            debug=False):
    """
    Generate Configuration Files for XDR Internals

    Args:
        outpath_auth: Path to output the auth config
        outpath_conf: Path to output the main config
        auth_estsauth: Value of the ESTSAUTHPERSISTENT cookie of login.microsoftonline.com. Preferred over sccauth/xsrf when set
        auth_sccauth: Value of the sccauth cookie of security.microsoft.com
        auth_xsrf: Value of the XSRF-TOKEN cookie of security.microsoft.com
        config_tenant: The tenant ID to target. Resolved from the portal when empty
        config_user_agent: User agent sent with every portal request. A current Edge user agent is used when empty
        config_us_government: If you have a US government tenant
        variable_csrf_ttl: Minutes before the XSRF token is checked against the portal again
        variable_tenant_ttl: Minutes the tenant id and tenant context stay cached
        variable_cache_ttl: Default minutes a cached API response stays valid
        variable_timeline_page_size: Events per page when pulling a device timeline
        dict_config: dictionary of config values you want to set. Will only update valid config parameters. e.g. {"variables": {"cache_ttl": 60}}
        new: Overwrite the existing config. Default will not overwrite existing configs, but will update config info if out of date
        insecure: Disable secure authentication handling (file encryption)
        debug: Enable debug logging
    """
    # Grab arguments as a dictionary object
    args = locals()
    # parse the docstring for arguments so they can be used as comments
    docstring = parse(genconf.__doc__)

    logger = setup_logger(__name__, args["debug"])

    # Generate dictionary of descriptions for each parameter
    docstring_params = {}
    for param in docstring.params:
        docstring_params[param.arg_name] = param.description

    # check if authfile exists.
    if not _auth_file_exists(outpath_auth, args["insecure"]):
        # If no cookie was provided prompt for one
        if not args["auth_estsauth"] and not (args["auth_sccauth"] and args["auth_xsrf"]):
            args["auth_estsauth"] = getpass.getpass("Paste the ESTSAUTHPERSISTENT cookie value (leave empty to use sccauth and XSRF-TOKEN): ")

        if not args["auth_estsauth"]:
            if not args["auth_sccauth"]:
                args["auth_sccauth"] = getpass.getpass("Paste the sccauth cookie value: ")
            if not args["auth_xsrf"]:
                args["auth_xsrf"] = getpass.getpass("Paste the XSRF-TOKEN cookie value: ")

        # Generate the auth conf
        auth_s = genconfstring(args, docstring_params, "auth", "auth_")
        encryption_pw = None
        if not args["insecure"]:
            encryption_pw = getpass.getpass("Please create a password for file encryption: ")
        write_auth(outpath_auth, auth_s, logger=logger, encryption_pw=encryption_pw, insecure=args["insecure"])
        logger.debug("auth config created")
    else:
        logger.debug("Auth file already exists")

    dict_config = dict_config or {}
    if not new:
        old_config = configparser.ConfigParser()
        old_config.read(outpath_conf)
        old_dict_config = {s: dict(old_config.items(s)) for s in old_config.sections()}
        # merge in dict_config from parameters
        for key in dict_config.keys():
            old_dict_config.setdefault(key, {}).update(dict_config[key])
        dict_config = old_dict_config

    # Existing and dict_config values replace parameters left at their default
    defaults = {k: v.default for k, v in inspect.signature(genconf).parameters.items()}
    for section, prefix in (("config", "config_"), ("variables", "variable_")):
        for var_name, val in dict_config.get(section, {}).items():
            arg_key = prefix + var_name
            if arg_key in args and args[arg_key] == defaults[arg_key]:
                args[arg_key] = val

    # Generate the main config
    conf_s = genconfstring(args, docstring_params, "config", "config_", dict_config)
    conf_s += genconfstring(args, docstring_params, "variables", "variable_", dict_config)

    with open(outpath_conf, 'w') as f:
        f.write(conf_s)
    logger.info(f"Wrote {outpath_conf}")
