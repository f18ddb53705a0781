import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates
from starlette.exceptions import HTTPException as StarletteHTTPException

from common import history
from common.config import JOB_MAX_AGE_HOURS, JOB_SWEEP_INTERVAL_SECONDS
from common.job_schema import RemoteJobType, RemoteStatus, StatusResponse
from common.job_store import JobStore, sweep_periodically
from common.log import configure_logging
from common.prompt_modifiers import parse
from common.remote_client import RemoteGenerationClient, RemoteServiceError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    # tests may install their own client/store before startup
    if not hasattr(app.state, "remote"):
        app.state.remote = RemoteGenerationClient()
    if not hasattr(app.state, "job_store"):
        app.state.job_store = JobStore(max_age_hours=JOB_MAX_AGE_HOURS)
    sweeper = asyncio.create_task(
        sweep_periodically(app.state.job_store, JOB_SWEEP_INTERVAL_SECONDS)
    )
    try:
        yield
    finally:
        sweeper.cancel()
        await app.state.remote.aclose()


app = FastAPI(title="Imagine Proxy API", lifespan=lifespan)
templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


def get_remote(request: Request) -> RemoteGenerationClient:
    return request.app.state.remote


def get_job_store(request: Request) -> JobStore:
    return request.app.state.job_store


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    # clients expect {"error": ...} rather than FastAPI's {"detail": ...}
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)


async def _read_json(request: Request) -> dict:
    body = await request.json()
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    return body


# ---------- API endpoints ----------

@app.post("/api/generate")
async def generate(
    request: Request,
    remote: RemoteGenerationClient = Depends(get_remote),
    store: JobStore = Depends(get_job_store),
):
    try:
        body = await _read_json(request)
        prompt = body.get("prompt")
        if not prompt:
            raise HTTPException(status_code=400, detail="Prompt is required")

        ar = parse(prompt).command("ar")
        result = await remote.imagine(prompt, aspect_ratio=ar.value if ar else "1:1")
        store.add_job(result["hash"], prompt, RemoteJobType.IMAGINE)
        return result
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error in generate route")
        message = str(e) if isinstance(e, RemoteServiceError) else "Failed to generate image"
        return JSONResponse({"error": message}, status_code=500)


@app.get("/api/status", response_model=StatusResponse)
async def status(
    hash: str | None = None,
    remote: RemoteGenerationClient = Depends(get_remote),
    store: JobStore = Depends(get_job_store),
):
    if not hash:
        raise HTTPException(status_code=400, detail="Hash parameter is required")
    try:
        result = await remote.status(hash)
    except Exception as e:
        logger.exception("Error in status route")
        message = str(e) if isinstance(e, RemoteServiceError) else "Failed to check status"
        return JSONResponse({"error": message}, status_code=500)

    await _track_status(store, hash, result)
    return result


async def _track_status(store: JobStore, hash: str, result: StatusResponse) -> None:
    try:
        remote_status = RemoteStatus(result.status)
    except ValueError:
        logger.warning("Unrecognized status %r for %s", result.status, hash)
        return

    updates = {
        "status": remote_status,
        "progress": min(max(round(result.progress), 0), 100),
    }
    if remote_status == RemoteStatus.DONE and result.result:
        url = result.result.get("url")
        updates["result_url"] = url if isinstance(url, str) else None
        updates["progress"] = 100
    if remote_status == RemoteStatus.ERROR:
        updates["error_reason"] = result.status_reason or "Unknown error"
    job = store.update_job(hash, **updates)

    if remote_status.is_terminal:
        try:
            await run_in_threadpool(history.save_generation, job)
        except Exception:
            # the status answer is still valid without the history entry
            logger.exception("Failed to save %s to history", hash)


async def _follow_up(request: Request, action: str, remote: RemoteGenerationClient, store: JobStore):
    try:
        body = await _read_json(request)
        hash, choice = body.get("hash"), body.get("choice")
        if not hash or not choice:
            raise HTTPException(status_code=400, detail="Hash and choice are required")

        status_code, data = await getattr(remote, action)(hash, choice)
        if isinstance(data, dict) and data.get("hash"):
            parent = store.get_job(hash)
            store.add_job(
                data["hash"],
                parent.prompt if parent else "",
                RemoteJobType(action),
                parent_hash=hash,
            )
        return JSONResponse(data, status_code=status_code)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Error in %s route", action)
        return JSONResponse(
            {"error": f"Failed to process {action} request"}, status_code=500
        )


@app.post("/api/upscale")
async def upscale(
    request: Request,
    remote: RemoteGenerationClient = Depends(get_remote),
    store: JobStore = Depends(get_job_store),
):
    return await _follow_up(request, "upscale", remote, store)


@app.post("/api/variation")
async def variation(
    request: Request,
    remote: RemoteGenerationClient = Depends(get_remote),
    store: JobStore = Depends(get_job_store),
):
    return await _follow_up(request, "variation", remote, store)


@app.get("/api/history")
def read_history():
    try:
        return [r.model_dump(mode="json") for r in history.list_history()]
    except Exception:
        logger.exception("Error fetching history")
        return JSONResponse({"error": "Failed to fetch history"}, status_code=500)


# ---------- Web UI endpoints ----------

@app.get("/", response_class=HTMLResponse)
def home(request: Request):
    return templates.TemplateResponse(
        request,
        "index.html",
        {"generations": history.list_history()},
    )
