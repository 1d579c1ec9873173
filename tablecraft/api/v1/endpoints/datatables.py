# tablecraft/api/v1/endpoints/datatables.py
import logging
import time
from typing import Any, Dict, List, Optional

import orjson
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from tablecraft.api.dependencies import get_privilege_roles, get_role_group, get_route_info
from tablecraft.compiler.actions import RouteInfo
from tablecraft.compiler.context import ContextAdapter
from tablecraft.core.cache import get_cache, set_cache
from tablecraft.core.config import settings
from tablecraft.core.db import get_db
from tablecraft.core.exceptions import ConfigurationError, DataSourceUnavailableError, SecurityViolation
from tablecraft.core.rate_limit import rate_limit
from tablecraft.core.security import validate_identifier, validate_request_params
from tablecraft.models.descriptor import RelationSpec, TableDescriptor
from tablecraft.parity.harness import ParityHarness
from tablecraft.parity.inspector import Inspector, summary_markdown
from tablecraft.registry import registry
from tablecraft.services.schema import SchemaIntrospector

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/datatables", tags=["datatables"])

context_adapter = ContextAdapter()


async def read_request_params(request: Request) -> Dict[str, Any]:
    """Query string merged with a form or JSON body"""
    params: Dict[str, Any] = dict(request.query_params)
    if request.method != "POST":
        return params

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = orjson.loads(await request.body() or b"{}")
        except orjson.JSONDecodeError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed JSON body")
        if isinstance(body, dict):
            params.update(body)
    elif content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        params.update({key: value for key, value in form.items() if isinstance(value, str)})
    return params


def requested_table(table_name: Optional[str], params: Dict[str, Any]) -> Optional[str]:
    if table_name:
        return table_name
    difta = params.get("difta")
    if isinstance(difta, dict) and difta.get("name"):
        return str(difta["name"])
    return params.get("difta[name]") or params.get("difta.name")


async def relation_catalog(db: Session, table_name: str) -> List[RelationSpec]:
    """Introspected relations of a table, cached in Redis when available"""
    cache_key = f"relations:{table_name}"
    cached = await get_cache(cache_key)
    if cached is not None:
        return [RelationSpec.model_validate(item) for item in cached]

    def introspect():
        return SchemaIntrospector(db.get_bind()).relation_catalog(table_name)

    catalog = await run_in_threadpool(introspect)
    await set_cache(cache_key, [relation.model_dump() for relation in catalog])
    return catalog


async def compile_table(
        table_name: Optional[str],
        request: Request,
        db: Session,
        route: RouteInfo,
        privilege_roles: List[str],
        role_group: Optional[int]
) -> Response:
    start_time = time.time()
    params = await read_request_params(request)

    try:
        validate_request_params(params)
        name = requested_table(table_name, params)
        if not name:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No table requested")
        validate_identifier(name)
    except SecurityViolation as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    descriptor: Optional[TableDescriptor] = registry.get(name)
    if descriptor is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown table: {name}")

    try:
        catalog = await relation_catalog(db, descriptor.name)
        context = context_adapter.adapt(
            params,
            descriptor,
            route=route,
            privilege_roles=privilege_roles,
            role_group=role_group
        )
        harness = ParityHarness(db, asset_root=settings.PUBLIC_DIR, relation_catalog=catalog)
        result = await run_in_threadpool(harness.run, context)
    except ConfigurationError as e:
        logger.error(f"Configuration error for {name}: {str(e)}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except DataSourceUnavailableError as e:
        logger.error(f"Data source unavailable for {name}: {str(e)}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Data source unavailable")

    logger.info(
        f"Compiled {name} in {result.mode} mode: {len(result.chosen_result.get('data', []))} rows "
        f"in {time.time() - start_time:.3f}s"
    )
    return Response(content=orjson.dumps(result.chosen_result), media_type="application/json")


@router.get("/inspector/summary")
async def inspector_summary(
        limit: int = Query(20, ge=1, le=500),
        route: Optional[str] = None,
        format: str = Query("json", pattern="^(json|markdown)$"),
        _: None = Depends(rate_limit)
):
    """Recent parity diagnostics"""
    inspector = Inspector()
    rows = await run_in_threadpool(inspector.summary, limit, route)
    if format == "markdown":
        return Response(content=summary_markdown(rows), media_type="text/markdown")
    payload = {"status": inspector.status(), "rows": rows}
    return Response(content=orjson.dumps(payload), media_type="application/json")


@router.api_route("", methods=["GET", "POST"])
async def get_datatable_by_param(
        request: Request,
        db: Session = Depends(get_db),
        route: RouteInfo = Depends(get_route_info),
        privilege_roles: List[str] = Depends(get_privilege_roles),
        role_group: Optional[int] = Depends(get_role_group),
        _: None = Depends(rate_limit)
):
    """Grid data for the table named by difta[name]"""
    return await compile_table(None, request, db, route, privilege_roles, role_group)


@router.api_route("/{table_name}", methods=["GET", "POST"])
async def get_datatable(
        table_name: str,
        request: Request,
        db: Session = Depends(get_db),
        route: RouteInfo = Depends(get_route_info),
        privilege_roles: List[str] = Depends(get_privilege_roles),
        role_group: Optional[int] = Depends(get_role_group),
        _: None = Depends(rate_limit)
):
    """DataTables server-side payload: draw, recordsTotal, recordsFiltered, data"""
    return await compile_table(table_name, request, db, route, privilege_roles, role_group)
