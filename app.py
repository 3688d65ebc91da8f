"""
BFC Map Generator API - FastAPI Entry Point

This is the main entry point for the map generator.
All business logic is in the mapgen/ package - this file only handles:
- FastAPI app setup
- CORS middleware
- Service wiring (Supabase stores, pipeline, caller identity)
- Route definitions (thin wrappers calling package functions)
"""

from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Import from mapgen package
from mapgen import (
    # Logging
    logger,
    # Errors
    MapGenError,
    ConfigurationError,
    UpstreamError,
    AuthorizationError,
    ShareNotFound,
    ShareValidationError,
    JoinError,
    # Services
    Stores,
    ShareService,
    MapGenerationPipeline,
    share_url,
    # Data
    analyze_csv_structure,
    join_csv_with_geography,
    load_boundaries,
    clear_cache as clear_geometry_cache,
    get_base_layers,
    layers_for_data_level,
)
from mapgen.auth import extract_bearer_token, require_admin, require_user, resolve_user
from mapgen.geocoding import get_geocoder
from mapgen.settings import get_settings_with_status, save_settings

from supabase_client import get_supabase_client

GENERIC_UPSTREAM_MESSAGE = (
    "Le service de génération est momentanément indisponible. Veuillez réessayer."
)

# Create FastAPI app
app = FastAPI(
    title="BFC Map Generator API",
    description="AI map generation for Bourgogne-Franche-Comté",
    version="1.0.0"
)

# Enable CORS so browser frontend can communicate with backend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# === Service Wiring ===

_supabase = None


def get_supabase():
    """Shared Supabase client. Raises ConfigurationError when not configured."""
    global _supabase
    if _supabase is None:
        _supabase = get_supabase_client()
    if _supabase is None:
        raise ConfigurationError("Supabase is not configured")
    return _supabase


def get_stores() -> Stores:
    return Stores(get_supabase().client)


def get_auth_client():
    return get_supabase().client.auth


def get_pipeline(stores: Stores = Depends(get_stores)) -> MapGenerationPipeline:
    return MapGenerationPipeline(stores)


def get_share_service(stores: Stores = Depends(get_stores)) -> ShareService:
    return ShareService(stores.shared_maps)


def get_current_user(
    authorization: Optional[str] = Header(None),
    stores: Stores = Depends(get_stores),
    auth_client=Depends(get_auth_client),
):
    """Caller resolved from the bearer token, or None for anonymous requests."""
    token = extract_bearer_token(authorization)
    if not token:
        return None
    return resolve_user(auth_client, stores.profiles, token)


# === Error Mapping ===

def error_response(e: Exception) -> JSONResponse:
    """Map package exceptions to HTTP responses."""
    if isinstance(e, UpstreamError):
        return JSONResponse(content={"error": GENERIC_UPSTREAM_MESSAGE}, status_code=502)
    if isinstance(e, ConfigurationError):
        return JSONResponse(content={"error": str(e)}, status_code=503)
    if isinstance(e, AuthorizationError):
        return JSONResponse(content={"error": str(e)}, status_code=e.status_code)
    if isinstance(e, ShareNotFound):
        return JSONResponse(content={"error": str(e)}, status_code=404)
    if isinstance(e, (ShareValidationError, JoinError, ValueError)):
        return JSONResponse(content={"error": str(e)}, status_code=400)
    return JSONResponse(content={"error": str(e)}, status_code=500)


@app.exception_handler(MapGenError)
async def mapgen_error_handler(request: Request, exc: MapGenError):
    """Errors raised while resolving dependencies (e.g. Supabase not configured)."""
    logger.error(f"Error in {request.url.path}: {exc}")
    return error_response(exc)


# === Startup Event ===

@app.on_event("startup")
async def startup_event():
    logger.info("Starting BFC map generator API...")
    status = get_settings_with_status()
    if not status["supabase_configured"]:
        logger.warning("Supabase not configured - persistence endpoints will return 503")
    if not status["mistral_configured"]:
        logger.warning("MISTRAL_API_KEY not set - generation will fail")
    logger.info("Startup complete")


# === Health Check ===

@app.get("/health")
async def health_check():
    """Health check endpoint for Docker deployments."""
    return {"status": "healthy", "service": "mapgen-api"}


# === Generation ===

@app.post("/generate")
async def generate_endpoint(
    req: Request,
    user=Depends(get_current_user),
    pipeline: MapGenerationPipeline = Depends(get_pipeline),
):
    """
    Generate a map from a natural-language prompt.
    Accepts: { prompt: "...", dataLevel?: "communes", recommendedMapType?: "geocodage" }
    """
    try:
        data = await req.json()
        prompt = (data.get("prompt") or "").strip()
        if not prompt:
            return JSONResponse(content={"error": "No prompt provided"}, status_code=400)

        result = pipeline.generate(
            prompt,
            user=user,
            data_level=data.get("dataLevel"),
            map_type=data.get("recommendedMapType"),
        )
        return JSONResponse(content=result)
    except MapGenError as e:
        logger.error(f"Error in /generate: {e}")
        return error_response(e)
    except Exception as e:
        logger.error(f"Error in /generate: {e}")
        return JSONResponse(content={"error": str(e)}, status_code=500)


@app.post("/geocode")
async def geocode_endpoint(req: Request, geocoder=Depends(get_geocoder)):
    """
    Geocode one location inside the region.
    Accepts: { location: "...", context?: "..." }
    """
    try:
        data = await req.json()
        location = (data.get("location") or "").strip()
        if not location:
            return JSONResponse(content={"error": "No location provided"}, status_code=400)

        result = geocoder.geocode(location, data.get("context"))
        return JSONResponse(content=result)
    except Exception as e:
        logger.error(f"Error in /geocode: {e}")
        return JSONResponse(content={"error": str(e)}, status_code=500)


# === Data Join Endpoints ===

@app.post("/data/analyze")
async def analyze_data_endpoint(file: UploadFile = File(...)):
    """Column names of an uploaded CSV/Excel file."""
    try:
        content = await file.read()
        text = content.decode("utf-8", errors="replace") if file.filename.lower().endswith(".csv") else ""
        result = analyze_csv_structure(file.filename, text, len(content))
        return JSONResponse(content=result)
    except Exception as e:
        logger.error(f"Error in /data/analyze: {e}")
        return JSONResponse(content={"error": str(e)}, status_code=500)


@app.post("/data/join")
async def join_data_endpoint(
    file: UploadFile = File(...),
    geoLevel: str = Form(...),
    joinColumn: str = Form(...),
    pipeline: MapGenerationPipeline = Depends(get_pipeline),
):
    """Join an uploaded CSV to communes, departements or EPCI boundaries."""
    try:
        content = await file.read()
        csv_text = content.decode("utf-8", errors="replace")
        result = join_csv_with_geography(csv_text, geoLevel, joinColumn, pipeline.load_geo_features)
        return JSONResponse(content=result)
    except FileNotFoundError as e:
        logger.error(f"Error in /data/join: {e}")
        return JSONResponse(content={"error": f"No boundaries for level '{geoLevel}'"}, status_code=404)
    except (MapGenError, ValueError) as e:
        logger.error(f"Error in /data/join: {e}")
        return error_response(e)
    except Exception as e:
        logger.error(f"Error in /data/join: {e}")
        return JSONResponse(content={"error": str(e)}, status_code=500)


# === Geometry Endpoints ===

@app.get("/geometry/{level}")
async def get_geometry_endpoint(level: str):
    """
    Boundary FeatureCollection for a level.
    Examples: /geometry/region, /geometry/departements, /geometry/communes
    """
    try:
        return JSONResponse(content=load_boundaries(level))
    except ValueError as e:
        return JSONResponse(content={"error": str(e)}, status_code=400)
    except FileNotFoundError as e:
        logger.error(f"Error in /geometry/{level}: {e}")
        return JSONResponse(content={"error": f"No boundaries for level '{level}'"}, status_code=404)
    except Exception as e:
        logger.error(f"Error in /geometry/{level}: {e}")
        return JSONResponse(content={"error": str(e)}, status_code=500)


@app.get("/layers")
async def get_layers_endpoint(dataLevel: Optional[str] = None):
    """Base layer catalog, with visibility flags when a data level is given."""
    try:
        layers = layers_for_data_level(dataLevel) if dataLevel else get_base_layers()
        return JSONResponse(content={"layers": layers})
    except Exception as e:
        logger.error(f"Error in /layers: {e}")
        return JSONResponse(content={"error": str(e)}, status_code=500)


@app.post("/geometry/cache/clear")
async def clear_geometry_cache_endpoint(user=Depends(get_current_user)):
    """Clear the boundary cache (admin only). Useful after updating data files."""
    try:
        require_admin(user)
        cleared = clear_geometry_cache()
        return JSONResponse(content={"message": "Geometry cache cleared", "entries": cleared})
    except MapGenError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error clearing geometry cache: {e}")
        return JSONResponse(content={"error": str(e)}, status_code=500)


# === Maps & Sharing ===

@app.get("/maps")
async def list_maps_endpoint(user=Depends(get_current_user), stores: Stores = Depends(get_stores)):
    """Maps generated by the current user."""
    try:
        require_user(user)
        return JSONResponse(content={"maps": stores.generated_maps.list_for_user(user["id"])})
    except MapGenError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error in /maps: {e}")
        return JSONResponse(content={"error": str(e)}, status_code=500)


@app.post("/share")
async def create_share_endpoint(
    req: Request,
    user=Depends(get_current_user),
    shares: ShareService = Depends(get_share_service),
):
    """
    Share the current map.
    Accepts: { title, description?, mapData, layers?, isPublic? }
    """
    try:
        data = await req.json()
        share = shares.create_share(
            user,
            title=data.get("title"),
            map_data=data.get("mapData"),
            layers=data.get("layers"),
            description=data.get("description"),
            is_public=data.get("isPublic", True),
        )
        return JSONResponse(content={
            "share": share,
            "url": share_url(share["share_token"], str(req.base_url)),
        })
    except MapGenError as e:
        logger.error(f"Error in /share: {e}")
        return error_response(e)
    except Exception as e:
        logger.error(f"Error in /share: {e}")
        return JSONResponse(content={"error": str(e)}, status_code=500)


@app.get("/map/{token}")
async def get_shared_map_endpoint(token: str, shares: ShareService = Depends(get_share_service)):
    """Public shared map. Private and unknown tokens both return 404."""
    try:
        share = shares.fetch_public(token)
        return JSONResponse(content={
            "id": share.get("id"),
            "title": share.get("title"),
            "description": share.get("description"),
            "mapData": share.get("map_data"),
            "layers": share.get("layers") or [],
            "viewCount": share.get("view_count", 0),
            "createdAt": share.get("created_at"),
        })
    except MapGenError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error in /map/{token}: {e}")
        return JSONResponse(content={"error": str(e)}, status_code=500)


@app.patch("/share/{share_id}")
async def update_share_endpoint(
    share_id: str,
    req: Request,
    user=Depends(get_current_user),
    shares: ShareService = Depends(get_share_service),
):
    """Publish or unpublish a share. Accepts: { isPublic: true|false }"""
    try:
        data = await req.json()
        if "isPublic" not in data:
            return JSONResponse(content={"error": "isPublic is required"}, status_code=400)
        share = shares.set_visibility(user, share_id, bool(data["isPublic"]))
        return JSONResponse(content={"share": share})
    except MapGenError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error in /share/{share_id}: {e}")
        return JSONResponse(content={"error": str(e)}, status_code=500)


@app.delete("/share/{share_id}")
async def delete_share_endpoint(
    share_id: str,
    user=Depends(get_current_user),
    shares: ShareService = Depends(get_share_service),
):
    try:
        shares.delete_share(user, share_id)
        return JSONResponse(content={"success": True})
    except MapGenError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error deleting share {share_id}: {e}")
        return JSONResponse(content={"error": str(e)}, status_code=500)


# === Admin Endpoints ===

@app.get("/admin/logs")
async def list_generation_logs_endpoint(
    limit: int = 100,
    offset: int = 0,
    validated: Optional[bool] = None,
    user=Depends(get_current_user),
    stores: Stores = Depends(get_stores),
):
    """Generation logs, newest first (admin only)."""
    try:
        require_admin(user)
        logs = stores.generation_logs.list_logs(limit=limit, offset=offset, validated=validated)
        return JSONResponse(content={"logs": logs, "count": len(logs)})
    except MapGenError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error in /admin/logs: {e}")
        return JSONResponse(content={"error": str(e)}, status_code=500)


@app.post("/admin/logs/{log_id}/validate")
async def validate_generation_log_endpoint(
    log_id: str,
    req: Request,
    user=Depends(get_current_user),
    stores: Stores = Depends(get_stores),
):
    """
    Review a generation (admin only).
    Accepts: { isValidated?: true, notes?: "...", correctedGeojson?: {...} }
    """
    try:
        require_admin(user)
        if stores.generation_logs.get(log_id) is None:
            return JSONResponse(content={"error": "Generation log not found"}, status_code=404)

        data = await req.json()
        updated = stores.generation_logs.validate(
            log_id,
            notes=data.get("notes"),
            corrected_geojson=data.get("correctedGeojson"),
            is_validated=data.get("isValidated", True),
        )
        if updated is None:
            return JSONResponse(content={"error": "Failed to update log"}, status_code=500)
        return JSONResponse(content={"log": updated})
    except MapGenError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error validating log {log_id}: {e}")
        return JSONResponse(content={"error": str(e)}, status_code=500)


# === Settings Endpoints ===

@app.get("/settings")
async def get_settings():
    """
    Get current application settings.
    Returns settings and service configuration status (no secrets).
    """
    try:
        settings = get_settings_with_status()
        return JSONResponse(content=settings)
    except Exception as e:
        logger.error(f"Error getting settings: {e}")
        return JSONResponse(content={"error": str(e)}, status_code=500)


@app.post("/settings")
async def update_settings(req: Request, user=Depends(get_current_user)):
    """
    Update application settings (admin only).
    Accepts any of: { data_dir, geocode_timeout, geocode_max_workers, llm_temperature, llm_max_tokens }
    """
    try:
        require_admin(user)
        data = await req.json()

        # Save the settings
        success = save_settings(data)

        if success:
            clear_geometry_cache()
            settings = get_settings_with_status()
            return JSONResponse(content={"success": True, "settings": settings})
        else:
            return JSONResponse(
                content={"error": "Failed to save settings"},
                status_code=500
            )
    except MapGenError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error updating settings: {e}")
        return JSONResponse(content={"error": str(e)}, status_code=500)


# === Main Entry Point ===

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=7000)
