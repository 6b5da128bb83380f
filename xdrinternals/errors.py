#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""XDR Internals: Errors!
Exceptions raised by the session manager and the request wrapper.
"""


class XdrError(Exception):
    """Base class for every error raised by xdrinternals."""


class AuthenticationError(XdrError):
    """The supplied cookies could not be turned into a usable portal session."""


class ApiCallError(XdrError):
    """An authenticated call failed at the transport, HTTP status or JSON level."""

    def __init__(self, message, endpoint=None, status_code=None):
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code


class ValidationError(XdrError):
    """Referenced IDs or arguments were rejected before any mutating call was made."""

    def __init__(self, message, invalid_ids=()):
        super().__init__(message)
        self.invalid_ids = list(invalid_ids)
