import logging
import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
load_dotenv()

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from agrisense import config
from agrisense.auth import get_current_user
from agrisense.services import database, forum, history, profiles
from agrisense.services.database import DataAccessError
from agrisense.services.vision import ProxyResponse, diagnose_disease, identify_plant, probe_gemini
from agrisense.services.weather import WeatherError, validate_coordinates, weather_report

logging.basicConfig(
    level=config.get_log_level(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="AgriSense API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=config.CORS_ALLOW_HEADERS,
)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": ", ".join(config.CORS_ALLOW_HEADERS),
}

FUNCTION_NAMES = ("identify-plant", "diagnose-disease", "test-gemini")
FUNCTIONS_PREFIX = "/functions/v1"
FUNCTION_PATHS = frozenset(
    path for name in FUNCTION_NAMES for path in (f"/{name}", f"{FUNCTIONS_PREFIX}/{name}")
)


class ImageAnalysisRequest(BaseModel):
    imageData: str


class ProbeRequest(BaseModel):
    imageData: Optional[str] = None


def _function_response(result: ProxyResponse) -> JSONResponse:
    return JSONResponse(result.body, status_code=result.status_code, headers=CORS_HEADERS)


def _is_function_path(path: str) -> bool:
    return path.rstrip("/") in FUNCTION_PATHS


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # Image analysis callers expect {"error": ...}, not FastAPI's 422 detail list.
    if _is_function_path(request.url.path):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request body") if errors else "Invalid request body"
        return JSONResponse({"error": message}, status_code=400, headers=CORS_HEADERS)
    return await request_validation_exception_handler(request, exc)


@app.exception_handler(DataAccessError)
async def data_access_error_handler(request: Request, exc: DataAccessError):
    logger.error("Data access error on %s: %s", request.url.path, exc)
    return JSONResponse({"detail": str(exc)}, status_code=502)


@app.exception_handler(WeatherError)
async def weather_error_handler(request: Request, exc: WeatherError):
    logger.error("Weather provider error: %s", exc)
    return JSONResponse({"detail": f"Weather provider error: {exc}"}, status_code=502)


@app.get("/healthz")
def healthz():
    return {"status": "ok"}


# =============================================================================
# IMAGE ANALYSIS FUNCTIONS
# =============================================================================

functions = APIRouter()


@functions.options("/identify-plant")
@functions.options("/diagnose-disease")
@functions.options("/test-gemini")
def function_preflight():
    return Response(status_code=200, headers=CORS_HEADERS)


@functions.post("/identify-plant")
def identify_plant_route(req: ImageAnalysisRequest):
    return _function_response(identify_plant(req.imageData))


@functions.post("/diagnose-disease")
def diagnose_disease_route(req: ImageAnalysisRequest):
    return _function_response(diagnose_disease(req.imageData))


@functions.post("/test-gemini")
def test_gemini_route(req: Optional[ProbeRequest] = None):
    return _function_response(probe_gemini(req.imageData if req else None))


app.include_router(functions)
app.include_router(functions, prefix=FUNCTIONS_PREFIX)


# =============================================================================
# ACCOUNT
# =============================================================================

class SignUpRequest(BaseModel):
    email: str
    password: str
    full_name: Optional[str] = None


class SignInRequest(BaseModel):
    email: str
    password: str


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None


@app.post("/api/auth/signup")
def signup(req: SignUpRequest):
    try:
        return database.sign_up(req.email, req.password, req.full_name)
    except DataAccessError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/auth/signin")
def signin(req: SignInRequest):
    try:
        session = database.sign_in(req.email, req.password)
    except DataAccessError:
        raise HTTPException(status_code=401, detail="invalid_credentials")
    if not session.get("access_token"):
        raise HTTPException(status_code=401, detail="invalid_credentials")
    return session


@app.post("/api/auth/signout")
def signout():
    database.sign_out()
    return {"success": True}


@app.get("/api/auth/user")
def current_user(user: Dict[str, Any] = Depends(get_current_user)):
    return {"user": user}


@app.get("/api/dashboard")
def get_dashboard(user: Dict[str, Any] = Depends(get_current_user)):
    return profiles.dashboard(user["id"])


@app.get("/api/profile")
def get_profile(user: Dict[str, Any] = Depends(get_current_user)):
    return {"profile": profiles.get_profile(user["id"])}


@app.put("/api/profile")
def put_profile(req: ProfileUpdate, user: Dict[str, Any] = Depends(get_current_user)):
    return {"profile": profiles.update_profile(user["id"], req.model_dump(exclude_unset=True))}


@app.get("/api/profile/roles/{role}")
def check_role(role: str, user: Dict[str, Any] = Depends(get_current_user)):
    try:
        return {"role": role, "granted": profiles.has_role(user["id"], role)}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# =============================================================================
# FORUM
# =============================================================================

class PostCreate(BaseModel):
    title: str
    content: str


class CommentCreate(BaseModel):
    content: str


@app.get("/api/forum/posts")
def forum_posts(q: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
    return {"posts": forum.list_posts(search=q)}


@app.post("/api/forum/posts", status_code=201)
def forum_create_post(req: PostCreate, user: Dict[str, Any] = Depends(get_current_user)):
    try:
        return {"post": forum.create_post(user["id"], req.title, req.content)}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/forum/posts/{post_id}/comments")
def forum_comments(post_id: str):
    return {"comments": forum.list_comments(post_id)}


@app.post("/api/forum/posts/{post_id}/comments", status_code=201)
def forum_add_comment(post_id: str, req: CommentCreate, user: Dict[str, Any] = Depends(get_current_user)):
    try:
        return {"comment": forum.add_comment(user["id"], post_id, req.content)}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/forum/posts/{post_id}/like")
def forum_like(post_id: str, user: Dict[str, Any] = Depends(get_current_user)):
    return forum.toggle_like(user["id"], post_id)


# =============================================================================
# HISTORY & CATALOG
# =============================================================================

class IdentificationRecord(BaseModel):
    image_url: str
    confidence: Optional[float] = None
    plant_id: Optional[str] = None


class DiagnosisRecord(BaseModel):
    image_url: str
    confidence: Optional[float] = None
    disease_id: Optional[str] = None


@app.get("/api/history/identifications")
def identifications(limit: int = Query(20, ge=1, le=100), user: Dict[str, Any] = Depends(get_current_user)):
    return {"history": history.list_identifications(user["id"], limit=limit)}


@app.post("/api/history/identifications", status_code=201)
def save_identification(req: IdentificationRecord, user: Dict[str, Any] = Depends(get_current_user)):
    return {"saved": history.record_identification(user["id"], req.image_url, req.confidence, req.plant_id)}


@app.get("/api/history/diagnoses")
def diagnoses(limit: int = Query(20, ge=1, le=100), user: Dict[str, Any] = Depends(get_current_user)):
    return {"history": history.list_diagnoses(user["id"], limit=limit)}


@app.post("/api/history/diagnoses", status_code=201)
def save_diagnosis(req: DiagnosisRecord, user: Dict[str, Any] = Depends(get_current_user)):
    return {"saved": history.record_diagnosis(user["id"], req.image_url, req.confidence, req.disease_id)}


@app.get("/api/catalog/plants")
def catalog_plants():
    return {"plants": history.list_plants()}


@app.get("/api/catalog/diseases")
def catalog_diseases():
    return {"diseases": history.list_diseases()}


# =============================================================================
# WEATHER
# =============================================================================

@app.get("/api/weather")
def weather(lat: float, lon: float):
    try:
        validate_coordinates(lat, lon)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return weather_report(lat, lon)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
