#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""XDR Internals: Models!
Records for the few portal payloads the library reads fields from.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

TENANT_CONTEXT_PATH = "/apiproxy/mtp/sccManagement/mgmt/TenantContext?realTime=true"
TENANT_CONTEXT_KEY = "XdrTenantContext"


@dataclass
class TenantContext:
    """Which tenant the session targets and who is signed in."""

    tenant_id: str
    user_principal_name: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload):
        """
        Build a TenantContext from the TenantContext endpoint response.

        Returns None when the payload carries no tenant id.
        """
        if not isinstance(payload, dict):
            return None
        auth_info = dict(payload.get("AuthInfo") or {})
        tenant_id = auth_info.pop("TenantId", None)
        if not tenant_id:
            return None
        user_principal_name = auth_info.pop("UserName", None)
        return cls(tenant_id=tenant_id, user_principal_name=user_principal_name, extra=auth_info)
