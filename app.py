from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import asyncio
import logging
from functools import lru_cache
from typing import Optional, Dict, Any

from config import settings
from kyc.auth import AuthService, ROLE_ADMIN
from kyc.exceptions import KycError, ValidationFailed
from kyc.file_converter import convert_to_jpeg, data_url_to_bytes
from kyc.records import CustomerRepository, KycStatus, render_record
from kyc.review import ReviewService
from kyc.schemas import AdminSignupIn, CredentialsIn, ReviewIn, SessionOut, SubmitIn, VerifyIn
from kyc.storage import DocumentStorage
from kyc.supabase import SupabaseClient
from kyc.utils import run_until_disconnected
from kyc.workflow import KycWorkflow

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="KYC Capture Service",
    description="Document capture, OCR pre-fill and admin review for KYC verification",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

bearer_scheme = HTTPBearer(auto_error=False)


@app.exception_handler(KycError)
async def kyc_error_handler(request: Request, exc: KycError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# ------------------------
# Dependencies
# ------------------------
@lru_cache()
def get_supabase() -> SupabaseClient:
    return SupabaseClient()


def get_auth_service(client: SupabaseClient = Depends(get_supabase)) -> AuthService:
    return AuthService(client)


def get_storage(client: SupabaseClient = Depends(get_supabase)) -> DocumentStorage:
    return DocumentStorage(client)


def get_repository(client: SupabaseClient = Depends(get_supabase)) -> CustomerRepository:
    return CustomerRepository(client)


def get_workflow(
    repository: CustomerRepository = Depends(get_repository),
    storage: DocumentStorage = Depends(get_storage),
) -> KycWorkflow:
    return KycWorkflow(repository, storage)


def get_review_service(
    repository: CustomerRepository = Depends(get_repository),
    storage: DocumentStorage = Depends(get_storage),
) -> ReviewService:
    return ReviewService(repository, storage)


def get_access_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    return credentials.credentials if credentials else None


def get_current_user(
    access_token: Optional[str] = Depends(get_access_token),
    auth: AuthService = Depends(get_auth_service),
) -> Dict[str, Any]:
    return auth.get_current_user(access_token)


def get_admin_user(
    user: Dict[str, Any] = Depends(get_current_user),
    access_token: Optional[str] = Depends(get_access_token),
    auth: AuthService = Depends(get_auth_service),
) -> Dict[str, Any]:
    auth.require_admin(user, access_token)
    return user


def _session_out(session: Dict[str, Any], role: str) -> SessionOut:
    return SessionOut(
        access_token=session["access_token"],
        refresh_token=session.get("refresh_token"),
        user_id=session["user"]["id"],
        role=role,
    )


# ------------------------
# Auth
# ------------------------
@app.post("/auth/signup")
def signup(body: CredentialsIn, auth: AuthService = Depends(get_auth_service)):
    user = auth.sign_up(body.email, body.password)
    return {"user_id": user["id"], "message": "Account created. You can now log in with your credentials."}


@app.post("/auth/login", response_model=SessionOut)
def login(body: CredentialsIn, auth: AuthService = Depends(get_auth_service)):
    session = auth.sign_in(body.email, body.password)
    return _session_out(session, auth.get_role(session["user"]["id"], session["access_token"]))


@app.post("/auth/logout", status_code=204)
def logout(
    user: Dict[str, Any] = Depends(get_current_user),
    access_token: Optional[str] = Depends(get_access_token),
    auth: AuthService = Depends(get_auth_service),
):
    auth.sign_out(access_token)
    return Response(status_code=204)


@app.get("/auth/me")
def me(
    user: Dict[str, Any] = Depends(get_current_user),
    access_token: Optional[str] = Depends(get_access_token),
    auth: AuthService = Depends(get_auth_service),
):
    return {"user_id": user["id"], "email": user.get("email"), "role": auth.get_role(user["id"], access_token)}


@app.post("/admin/auth/login", response_model=SessionOut)
def admin_login(body: CredentialsIn, auth: AuthService = Depends(get_auth_service)):
    return _session_out(auth.admin_sign_in(body.email, body.password), ROLE_ADMIN)


@app.post("/admin/auth/signup")
def admin_signup(body: AdminSignupIn, auth: AuthService = Depends(get_auth_service)):
    user = auth.admin_sign_up(body.email, body.password, body.invite_code)
    return {"user_id": user["id"], "message": "Admin account created. You can now log in with your credentials."}


# ------------------------
# KYC Workflow
# ------------------------
@app.post("/kyc/verify")
def verify_document(
    body: VerifyIn,
    user: Dict[str, Any] = Depends(get_current_user),
    access_token: Optional[str] = Depends(get_access_token),
    workflow: KycWorkflow = Depends(get_workflow),
):
    return workflow.verify(user["id"], body.document_number, access_token)


@app.get("/kyc/instructions")
def capture_instructions(step: Optional[str] = None, workflow: KycWorkflow = Depends(get_workflow)):
    return workflow.instructions(step)


@app.get("/kyc/progress")
def capture_progress(
    doc: str,
    user: Dict[str, Any] = Depends(get_current_user),
    access_token: Optional[str] = Depends(get_access_token),
    workflow: KycWorkflow = Depends(get_workflow),
):
    return workflow.progress(user["id"], doc, access_token)


@app.post("/kyc/capture")
async def capture_document(
    document_number: str = Form(...),
    step: str = Form(...),
    image_data_url: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    user: Dict[str, Any] = Depends(get_current_user),
    access_token: Optional[str] = Depends(get_access_token),
    workflow: KycWorkflow = Depends(get_workflow),
):
    """
    Accepts one captured frame for the current step, either as a data URL
    from the camera canvas or as an uploaded JPG / PNG / HEIC / PDF.
    """
    if file and file.filename:
        content = await file.read()
        image = await run_in_threadpool(convert_to_jpeg, content, file.filename)
    elif image_data_url:
        image, _ = data_url_to_bytes(image_data_url)
    else:
        raise ValidationFailed("No image provided")

    return await run_in_threadpool(
        workflow.capture, user["id"], document_number, step, image, access_token
    )


@app.get("/kyc/preview")
async def preview(
    doc: str,
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
    access_token: Optional[str] = Depends(get_access_token),
    workflow: KycWorkflow = Depends(get_workflow),
):
    try:
        return await run_until_disconnected(
            workflow.preview(user["id"], doc, access_token),
            request.is_disconnected,
        )
    except asyncio.CancelledError:
        logger.info("Preview for %s abandoned by client", doc)
        # Nobody is listening any more
        return Response(status_code=499)


@app.post("/kyc/submit")
def submit(
    body: SubmitIn,
    user: Dict[str, Any] = Depends(get_current_user),
    access_token: Optional[str] = Depends(get_access_token),
    workflow: KycWorkflow = Depends(get_workflow),
):
    return workflow.submit(user["id"], body.document_number, body.address, body.confirmed, access_token)


@app.get("/kyc/result")
def result(
    doc: str,
    user: Dict[str, Any] = Depends(get_current_user),
    access_token: Optional[str] = Depends(get_access_token),
    workflow: KycWorkflow = Depends(get_workflow),
):
    return workflow.result(user["id"], doc, access_token)


# ------------------------
# Admin Dashboard
# ------------------------
@app.get("/admin/records")
def list_records(
    status: Optional[KycStatus] = None,
    search: Optional[str] = None,
    admin: Dict[str, Any] = Depends(get_admin_user),
    access_token: Optional[str] = Depends(get_access_token),
    reviews: ReviewService = Depends(get_review_service),
):
    return reviews.list_records(status, search, access_token)


@app.get("/admin/records/{record_id}")
def record_detail(
    record_id: str,
    admin: Dict[str, Any] = Depends(get_admin_user),
    access_token: Optional[str] = Depends(get_access_token),
    reviews: ReviewService = Depends(get_review_service),
):
    return reviews.record_detail(record_id, access_token)


@app.post("/admin/records/{record_id}/review")
def review_record(
    record_id: str,
    body: ReviewIn,
    admin: Dict[str, Any] = Depends(get_admin_user),
    access_token: Optional[str] = Depends(get_access_token),
    reviews: ReviewService = Depends(get_review_service),
):
    updated = reviews.review(
        record_id, body.status, admin["id"],
        admin_notes=body.admin_notes,
        failure_reason=body.failure_reason,
        access_token=access_token,
    )
    return {"record": render_record(updated), "message": "KYC record updated successfully"}


@app.delete("/admin/records/{record_id}/documents/{document_type}")
def delete_record_document(
    record_id: str,
    document_type: str,
    admin: Dict[str, Any] = Depends(get_admin_user),
    access_token: Optional[str] = Depends(get_access_token),
    reviews: ReviewService = Depends(get_review_service),
):
    return {"record": reviews.delete_document(record_id, document_type, access_token)}


# ------------------------
# Health Check
# ------------------------
@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": "kyc-capture"
    }


# ------------------------
# Local Dev Entry
# ------------------------
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
