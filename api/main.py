from __future__ import annotations

from dataclasses import asdict
import logging
import math
from typing import Any, Dict

import numpy as np
import pandas as pd
from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.responses import Response
from fastapi.encoders import jsonable_encoder

from api.schemas import EndpointDraftModel, EndpointUpdateModel, PanelRequest
from retail_core.data import dataset_from_records, load_dashboard_data, prepare_context
from retail_core.endpoints import PRESET_ENDPOINTS, EndpointRegistry, InMemoryEndpointCollaborator, endpoints_frame
from retail_core.filters import DashboardFilters, available_ranges, normalize_filters
from retail_core.metrics_analytics import compute_analytics
from retail_core.metrics_intelligence import compute_intelligence
from retail_core.models import EndpointDraft


app = FastAPI(title="Retail Insights Dashboard API", version="0.1.0")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

registry = EndpointRegistry(InMemoryEndpointCollaborator())


def _filters_from_request(request: PanelRequest) -> DashboardFilters:
    return normalize_filters(request.filters.model_dump())


def _data_ctx(request: PanelRequest) -> Dict[str, object]:
    if request.dataset is None:
        return load_dashboard_data()
    ds = request.dataset
    return dataset_from_records(
        products=ds.products,
        sales=ds.sales,
        returns=ds.returns,
        customers=ds.customers,
        settings=ds.settings,
    )


def _json(data: object, status_code: int = 200) -> JSONResponse:
    """Return JSON with safe encoding for pandas/numpy objects."""

    def _safe_float(value: object) -> float | None:
        try:
            out = float(value)  # type: ignore[arg-type]
        except Exception:
            return None
        if math.isnan(out) or math.isinf(out):
            return None
        return out

    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            data,
            custom_encoder={
                type(pd.NA): lambda _: None,
                type(pd.NaT): lambda _: None,
                np.integer: int,
                float: _safe_float,
                np.floating: _safe_float,
                np.bool_: bool,
                np.ndarray: lambda arr: arr.tolist(),
                pd.Timestamp: lambda ts: ts.isoformat(),
            },
        ),
    )


def _error(exc: Exception, status_code: int = 500) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(exc), "type": type(exc).__name__})


@app.get("/meta/ranges")
def meta_ranges():
    return _json({"ranges": available_ranges()})


@app.post("/analytics")
def analytics(request: PanelRequest):
    try:
        f = _filters_from_request(request)
        ctx = prepare_context(f, _data_ctx(request))
        return _json(compute_analytics(f, ctx))
    except Exception as exc:
        logger.exception("analytics failed")
        return _error(exc)


@app.post("/intelligence")
def intelligence(request: PanelRequest):
    try:
        f = _filters_from_request(request)
        ctx = prepare_context(f, _data_ctx(request))
        return _json(compute_intelligence(f, ctx))
    except Exception as exc:
        logger.exception("intelligence failed")
        return _error(exc)


# ---------------- API integrations ----------------
@app.get("/endpoints")
def list_endpoints():
    return _json({"endpoints": [asdict(ep) for ep in registry.endpoints()]})


@app.get("/endpoints/presets")
def endpoint_presets():
    return _json({"presets": [asdict(p) for p in PRESET_ENDPOINTS]})


@app.post("/endpoints", status_code=201)
def create_endpoint(draft: EndpointDraftModel):
    try:
        registry.save(EndpointDraft(**draft.model_dump()))
        return _json({"endpoints": [asdict(ep) for ep in registry.endpoints()]}, status_code=201)
    except Exception as exc:
        logger.exception("create_endpoint failed")
        return _error(exc)


@app.patch("/endpoints/{endpoint_id}")
def update_endpoint(endpoint_id: str, fields: EndpointUpdateModel):
    ep = registry.get(endpoint_id)
    if ep is None:
        return _error(KeyError(endpoint_id), status_code=404)
    try:
        merged = {**asdict(ep), **fields.model_dump(exclude_none=True)}
        merged.pop("id")
        merged.pop("last_sync")
        registry.save(EndpointDraft(**merged), editing_id=endpoint_id)
        return _json(asdict(registry.get(endpoint_id)))
    except Exception as exc:
        logger.exception("update_endpoint failed")
        return _error(exc)


@app.delete("/endpoints/{endpoint_id}")
def delete_endpoint(endpoint_id: str, confirm: bool = Query(default=False)):
    if registry.get(endpoint_id) is None:
        return _error(KeyError(endpoint_id), status_code=404)
    if not registry.delete(endpoint_id, lambda _ep: confirm):
        return JSONResponse(status_code=409, content={"error": "deletion requires confirm=true", "type": "ConfirmationRequired"})
    return _json({"id": endpoint_id, "deleted": True})


@app.post("/endpoints/{endpoint_id}/test")
async def test_endpoint(endpoint_id: str):
    if registry.get(endpoint_id) is None:
        return _error(KeyError(endpoint_id), status_code=404)
    ok = await registry.test(endpoint_id)
    return _json({"id": endpoint_id, "ok": ok, "busy": ok is None})


@app.post("/endpoints/{endpoint_id}/sync")
async def sync_endpoint(endpoint_id: str):
    ep = registry.get(endpoint_id)
    if ep is None:
        return _error(KeyError(endpoint_id), status_code=404)
    if not ep.enabled:
        return JSONResponse(status_code=409, content={"error": "endpoint is disabled", "type": "EndpointDisabled"})
    ok = await registry.sync(endpoint_id)
    return _json({"id": endpoint_id, "ok": ok, "busy": ok is None})


@app.post("/export/{page}")
def export_page(page: str, request: PanelRequest):
    f = _filters_from_request(request)
    ctx = prepare_context(f, _data_ctx(request))

    export_df: Any = None
    filename = f"{page}.csv"
    if page in {"analytics", "intelligence", "sales"}:
        export_df = ctx.get("filtered_sales")
    elif page == "returns":
        export_df = ctx.get("filtered_returns")
    elif page == "endpoints":
        export_df = endpoints_frame(registry.endpoints())
    else:
        export_df = pd.DataFrame()

    if export_df is None or not hasattr(export_df, "to_csv"):
        export_df = pd.DataFrame()
    csv_bytes = export_df.to_csv(index=False).encode("utf-8")
    return Response(content=csv_bytes, media_type="text/csv", headers={"Content-Disposition": f"attachment; filename={filename}"})
