"""
Field Capture API Server
FastAPI backend for field test sessions, test records and video storage.
"""
import asyncio
import logging
import tempfile
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import httpx
from fastapi import FastAPI, UploadFile, File, Form, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import ip_location
import record_store
from auth import require_client
from config import settings
from database import engine, Base, get_db
from minio_client import get_minio_client, ensure_bucket_exists
from record_store import InvalidPayloadError, RecordNotFound, StorageError
from schemas import SessionCreate, RecordPayload, MetadataUpdate

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CHUNK_SIZE = 8 * 1024 * 1024  # 8 MB


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and the private video bucket on startup"""
    Base.metadata.create_all(bind=engine)
    minio_client = get_minio_client()
    await asyncio.to_thread(ensure_bucket_exists, minio_client, settings.MINIO_BUCKET)
    logger.info("Field Capture API Server started successfully")
    yield


app = FastAPI(
    title="Field Capture API",
    description="Field test data collection: sessions, test records and videos",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    expose_headers=["Content-Length"],
    max_age=600,
)


@app.get("/")
async def root():
    return {
        "service": "Field Capture API",
        "version": "1.0.0",
        "status": "operational"
    }


@app.get("/health")
async def health_check():
    """Liveness probe"""
    return {"status": "ok", "timestamp": datetime.utcnow().isoformat()}


@app.get("/debug")
async def debug_check():
    """Connectivity probe for storage, used when diagnosing a field setup"""
    try:
        minio_client = get_minio_client()
        available = await asyncio.to_thread(minio_client.bucket_exists, settings.MINIO_BUCKET)
        storage = "available" if available else "bucket missing"
    except Exception as e:
        logger.warning(f"Storage probe failed: {e}")
        storage = "unreachable"
    return {
        "message": "Debug endpoint working",
        "timestamp": datetime.utcnow().isoformat(),
        "storage": storage,
    }


@app.get("/location/ip")
async def location_from_ip(_role: str = Depends(require_client)):
    """Approximate city/state for the caller's network, fetched server-side"""
    try:
        async with httpx.AsyncClient(headers={"User-Agent": "FieldCapture/1.0"}) as client:
            result = await ip_location.lookup(client, timeout=settings.IP_LOOKUP_TIMEOUT_SECONDS)
    except ip_location.IPLocationUnavailable:
        return JSONResponse(
            status_code=500,
            content={"success": False, "city": "Unknown", "state": "Unknown"},
        )
    return {"success": True, "city": result["city"], "state": result["state"], "ip": result["ip"]}


# --- Sessions ---

@app.post("/session")
async def create_session(
    body: SessionCreate,
    _role: str = Depends(require_client),
    db: Session = Depends(get_db),
):
    """Store the tester chosen for a device session"""
    if not body.session_id or not body.user_name or not body.email:
        raise HTTPException(status_code=400, detail="sessionId, userName, and email are required")

    try:
        record_store.save_session(db, body.session_id, body.user_name, body.email)
    except Exception as e:
        logger.error(f"Error storing session: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to store session: {e}")
    return {"success": True}


@app.get("/session/{session_id}")
async def get_session(
    session_id: str,
    _role: str = Depends(require_client),
    db: Session = Depends(get_db),
):
    try:
        return record_store.get_session(db, session_id)
    except RecordNotFound:
        raise HTTPException(status_code=404, detail="Session not found")


# --- Tests ---

@app.post("/tests")
async def create_or_update_test(
    body: RecordPayload,
    _role: str = Depends(require_client),
    db: Session = Depends(get_db),
):
    """Create a test, or merge into it when the testId already exists"""
    try:
        record = record_store.create_or_update_test(
            db, body.model_dump(by_alias=True, exclude_none=True)
        )
    except InvalidPayloadError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error storing test data: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to store test data: {e}")
    return {"success": True, "testId": record["testId"]}


@app.put("/tests/{test_id}")
async def update_test(
    test_id: str,
    body: MetadataUpdate,
    _role: str = Depends(require_client),
    db: Session = Depends(get_db),
):
    """Merge user, geo and metadata changes into an existing test"""
    try:
        record_store.update_test_metadata(
            db, test_id, body.model_dump(by_alias=True, exclude_none=True)
        )
    except RecordNotFound:
        raise HTTPException(status_code=404, detail="Test not found")
    except Exception as e:
        logger.error(f"Error updating test: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to update test: {e}")
    return {"success": True, "testId": test_id}


@app.get("/tests")
async def list_tests(
    _role: str = Depends(require_client),
    db: Session = Depends(get_db),
):
    """All tests, newest first"""
    return {"tests": record_store.list_tests(db)}


@app.get("/tests/{test_id}")
async def get_test(
    test_id: str,
    _role: str = Depends(require_client),
    db: Session = Depends(get_db),
):
    try:
        return record_store.get_test(db, test_id)
    except RecordNotFound:
        raise HTTPException(status_code=404, detail="Test not found")


@app.get("/tests/{test_id}/videos/{file_name}/url")
async def get_video_url(
    test_id: str,
    file_name: str,
    _role: str = Depends(require_client),
    db: Session = Depends(get_db),
):
    """Mint a fresh signed link for a stored video"""
    try:
        url = record_store.refresh_video_url(db, get_minio_client(), test_id, file_name)
    except RecordNotFound:
        raise HTTPException(status_code=404, detail="Video not found")
    except Exception as e:
        logger.error(f"Error generating signed URL: {e}")
        raise HTTPException(status_code=500, detail="Could not generate video URL")
    return {"url": url}


@app.post("/upload-video")
async def upload_video(
    file: Optional[UploadFile] = File(None),
    testId: Optional[str] = Form(None),
    _role: str = Depends(require_client),
    db: Session = Depends(get_db),
):
    """Store a video for an existing test and mark the test completed"""
    if file is None or not testId:
        raise HTTPException(status_code=400, detail="file and testId are required")

    # Spool to disk so memory stays bounded by CHUNK_SIZE
    tmp = tempfile.SpooledTemporaryFile(max_size=CHUNK_SIZE)
    try:
        size = 0
        while True:
            chunk = await file.read(CHUNK_SIZE)
            if not chunk:
                break
            tmp.write(chunk)
            size += len(chunk)
        tmp.seek(0)

        video = await asyncio.to_thread(
            record_store.upload_video,
            db,
            get_minio_client(),
            testId,
            file.filename,
            file.content_type,
            tmp,
            size,
        )
    except RecordNotFound:
        raise HTTPException(status_code=404, detail="Test not found")
    except StorageError as e:
        raise HTTPException(status_code=500, detail=f"Upload failed: {e}")
    except Exception as e:
        logger.error(f"Upload error - Unexpected: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to upload video: {e}")
    finally:
        tmp.close()

    logger.info(f"Video {video['fileName']} attached to test {testId}")
    return {"success": True, "fileName": video["fileName"], "signedUrl": video["url"]}


@app.delete("/tests/{test_id}")
async def delete_test(
    test_id: str,
    _role: str = Depends(require_client),
    db: Session = Depends(get_db),
):
    """Delete a test after removing its videos from storage"""
    try:
        await asyncio.to_thread(record_store.delete_test, db, get_minio_client(), test_id)
    except RecordNotFound:
        raise HTTPException(status_code=404, detail="Test not found")
    except Exception as e:
        logger.error(f"Error deleting test: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to delete test: {e}")
    return {"success": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
