"""
Shared route dependencies

The identity provider sits in front of this API and forwards the
authenticated tenant as an opaque id in the X-Tenant-ID header.
"""
from typing import Optional

from fastapi import Header, HTTPException, status

TENANT_HEADER = "X-Tenant-ID"


async def get_tenant_id(x_tenant_id: Optional[str] = Header(None, alias=TENANT_HEADER)) -> str:
    if not x_tenant_id or not x_tenant_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {TENANT_HEADER} header",
        )
    return x_tenant_id.strip()
