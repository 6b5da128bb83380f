#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""XDR Internals: Utils!
"""

import configparser
import getpass
import io
import json
import logging
import os
import sys

import pyAesCrypt

from logging import handlers

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s (%(filename)s:%(lineno)d)"

# Custom logging from https://stackoverflow.com/questions/384076/how-can-i-color-python-logging-output
class CustomFormatter(logging.Formatter):
    """Logging Formatter to add colors and count warning / errors"""

    blue = "\x1b[34;21m"
    grey = "\x1b[38;21m"
    yellow = "\x1b[33;21m"
    red = "\x1b[31;21m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"

    # No colors on non-posix terminals
    if os.name != 'posix':
        blue = ""
        grey = ""
        yellow = ""
        red = ""
        bold_red = ""
        reset = ""

    FORMATS = {
        logging.DEBUG: blue + LOG_FORMAT + reset,
        logging.INFO: grey + LOG_FORMAT + reset,
        logging.WARNING: yellow + LOG_FORMAT + reset,
        logging.ERROR: red + LOG_FORMAT + reset,
        logging.CRITICAL: bold_red + LOG_FORMAT + reset
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno)
        formatter = logging.Formatter(log_fmt)
        return formatter.format(record)

class LogLevelFilter(logging.Filter):
    def __init__(self, level):
        self.level = level

    def filter(self, record):
        return record.levelno == self.level

def _add_file_handlers(logger, log_dir):
    debug_path = os.path.abspath(os.path.join(log_dir, "debug.log"))
    if any(getattr(h, 'baseFilename', None) == debug_path for h in logger.handlers):
        return
    os.makedirs(log_dir, exist_ok=True)
    file_formatter = logging.Formatter(LOG_FORMAT)

    debug_fh = handlers.WatchedFileHandler(debug_path)
    debug_fh.setFormatter(file_formatter)
    debug_fh.addFilter(LogLevelFilter(logging.DEBUG))
    debug_fh.setLevel(logging.DEBUG)

    error_fh = handlers.WatchedFileHandler(os.path.join(log_dir, "error.log"))
    error_fh.setFormatter(file_formatter)
    error_fh.addFilter(LogLevelFilter(logging.ERROR))
    error_fh.setLevel(logging.ERROR)

    logger.addHandler(debug_fh)
    logger.addHandler(error_fh)

def setup_logger(name, debug, formatter='cli', log_dir=None):
    """Helper function to set up logger.

    :param name: Logger name to grab
    :type name: str
    :param debug: Flag indicating if debug mode is set.
    :type debug: bool
    :param formatter: Custom formatter to use.
    :type formatter: str
    :param log_dir: Directory for debug.log and error.log. No log files are written when unset.
    :type log_dir: str
    :return: The configured logger
    :rtype: logging.Logger
    """
    logger = logging.getLogger(name)
    level = logging.DEBUG if debug else logging.INFO
    logger.setLevel(level)

    if log_dir:
        _add_file_handlers(logger, log_dir)

    # The console handler is attached once per logger name
    if getattr(logger, '_xdr_configured', False):
        for handler in logger.handlers:
            if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
                handler.setLevel(level)
        return logger

    # create console handler with a higher log level
    ch = logging.StreamHandler()
    ch.setLevel(level)

    if formatter == 'cli':
        ch.setFormatter(CustomFormatter())
    logger.addHandler(ch)
    logger.propagate = False
    logger._xdr_configured = True

    return logger

class obj(object):
    def __init__(self, dict_):
        self.__dict__.update(dict_)

def dict2obj(d):
    return json.loads(json.dumps(d), object_hook=obj)

def get_endpoints(us_government=False):
    """
    Return the portal and sign-in authority urls based on the tenant type
    """
    urls_dict = {}
    # default endpoints
    urls_dict["portal"] = "https://security.microsoft.com"
    urls_dict["authority"] = "https://login.microsoftonline.com"
    # If using a government tenant
    if us_government:
        urls_dict["portal"] = "https://security.microsoft.us"
        urls_dict["authority"] = "https://login.microsoftonline.us"
    return urls_dict

def config_get(conf, section: str, option: str, logger=None, default=None):
    """Helper function for getting config options from a configparser.

    :param conf: configparser item after reading a config file or string.
    :type conf: configparser.ConfigParser
    :param section: section in config file
    :type section: str
    :param option: option item in config file
    :type option: str
    :param logger: logging context
    :type logger: logger
    :param default: default to return
    :type default: any
    :return: config item based on section and option
    :rtype: any
    """
    r = default
    try:
        r = conf.get(section, option)
    except configparser.NoSectionError:
        err = f"Missing section in config file: {section}. Proceeding."
        logger.warning(err) if logger else print(err)
    except configparser.NoOptionError:
        err = f"Missing option in config file: {option}. Proceeding."
        logger.warning(err) if logger else print(err)
    return r

def config_getint(conf, section: str, option: str, logger=None, default=None):
    """Integer flavour of config_get. Empty values fall back to the default."""
    value = config_get(conf, section, option, logger=logger, default=default)
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError:
        err = f"Invalid integer for {section}.{option}: {value}. Using {default}."
        logger.warning(err) if logger else print(err)
        return default

def read_auth(filepath: str, logger=logging, encryption_pw=None):
    """Read the auth file, decrypting <filepath>.aes when it exists.

    Returns None when neither the plain nor the encrypted file exists.
    """
    try:
        authString = None
        dir_path = os.path.dirname(os.path.realpath(filepath))
        encrypted_filepath = os.path.join(dir_path, os.path.basename(filepath) + '.aes')
        if os.path.isfile(encrypted_filepath):
            if encryption_pw is None:
                encryption_pw = getpass.getpass("Please type the password for file encryption: ")
            with open(encrypted_filepath, "rb") as fIn:
                outStream = io.BytesIO()
                pyAesCrypt.decryptStream(fIn, outStream, encryption_pw)
                outStream.seek(0)
                authString = outStream.getvalue().decode()
                logger.debug("Decrypted the " + filepath + " file!")
        elif os.path.isfile(filepath):
            with open(filepath, "r") as fIn:
                authString = fIn.read()
    except Exception as e:
        logger.error(f"Could not read current authfile: {str(e)}")
        sys.exit(1)

    return authString

def write_auth(filepath: str, writestr, logger=logging, encryption_pw=None, insecure=False):
    try:
        if not insecure:
            dir_path = os.path.dirname(os.path.realpath(filepath))
            encrypted_filepath = os.path.join(dir_path, os.path.basename(filepath) + '.aes')
            with open(encrypted_filepath, "wb") as fOut:
                inStream = io.BytesIO(bytearray(writestr, "utf-8"))
                pyAesCrypt.encryptStream(inStream, fOut, encryption_pw)
                logger.debug("Encrypted the " + filepath + " file!")
                # Delete the unencrypted filepath if it exists
                if os.path.isfile(filepath):
                    os.remove(filepath)
        else:
            with open(filepath, 'w') as outfile:
                outfile.write(writestr)
    except Exception as e:
        logger.error(f"Error writing auth to file: {str(e)}")

def check_output_dir(output_dir, logger):
    if not os.path.exists(output_dir):
        logger.info(f'Output directory "{output_dir}" does not exist. Attempting to create.')
        try:
            os.makedirs(output_dir)
        except Exception as e:
            logger.error(f'Error while attempting to create output directory {output_dir}: {str(e)}')
            raise
    elif not os.path.isdir(output_dir):
        logger.error(f'{output_dir} exists but is not a directory or you do not have permissions to access. Exiting.')
        sys.exit(1)
