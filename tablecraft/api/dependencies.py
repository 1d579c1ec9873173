# tablecraft/api/dependencies.py
from typing import List, Optional

from fastapi import Request

from tablecraft.compiler.actions import RouteInfo


def get_route_info(request: Request) -> RouteInfo:
    """Routing facts used to build action button URLs"""
    route_name = request.headers.get("x-route-name") or request.query_params.get("route_name")
    return RouteInfo(
        referrer=request.headers.get("referer"),
        route_uri=request.headers.get("x-route-uri"),
        route_name=route_name,
        request_path=request.url.path,
    )


def get_privilege_roles(request: Request) -> List[str]:
    """Route names the caller is allowed to reach, comma separated in X-Privileges"""
    raw = request.headers.get("x-privileges") or ""
    return [role.strip() for role in raw.split(",") if role.strip()]


def get_role_group(request: Request) -> Optional[int]:
    raw = request.headers.get("x-role-group")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None
