import time
import logging
from urllib.parse import quote
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import FastAPI, Depends, File, Form, Header, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from datachain.auth import AuthManager
from datachain.catalog import dataset_card, dataset_detail
from datachain.chain import create_chain_service
from datachain.errors import (
    AccessDenied, DataChainError, ExternalServiceError, IntegrityError, InternalError, InvalidInput, NotFound
)
from datachain.helpers import clean_cid, short_address
from datachain.ipfs_helper import create_blob_store, is_image_file
from datachain.models import AuthChallengeRequest, AuthVerifyRequest, DownloadedFile, RegisterDatasetRequest
from datachain.registry import RegistryService
from datachain.service import MarketplaceService

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Checked in order; the first matching class decides the status code
ERROR_STATUS = [
    (InvalidInput, 400),
    (AccessDenied, 403),
    (IntegrityError, 403),
    (NotFound, 404),
    (ExternalServiceError, 502),
    (InternalError, 500),
]


# Standard API response helpers
def success_response(data=None, message=None):
    """
    Create a standardized success response.

    Args:
        data: Optional data to include in the response
        message: Optional message to include in the response

    Returns:
        dict: A standardized success response
    """
    response = {"status": "success"}

    if data is not None:
        response["data"] = data

    if message is not None:
        response["message"] = message

    return response


def error_response(exc: DataChainError):
    """Translate a DataChain error into a JSON error response"""
    status_code = 500
    for error_class, code in ERROR_STATUS:
        if isinstance(exc, error_class):
            status_code = code
            break

    # Failed decryption is reported as a plain access refusal
    kind = AccessDenied.kind if isinstance(exc, IntegrityError) else exc.kind
    message = exc.message or kind
    if status_code >= 500:
        logger.error(f"{type(exc).__name__}: {message}")

    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "error": kind, "message": message},
    )


def bearer_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    """Extract the session token from an Authorization: Bearer header"""
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[len("bearer "):].strip() or None
    return None


def file_response(downloaded: DownloadedFile) -> Response:
    filename = downloaded.filename
    disposition = "inline" if is_image_file(filename) else "attachment"
    # Header values are latin-1; non-ASCII names go in the RFC 5987 filename* parameter
    fallback = "".join(c for c in filename if 32 <= ord(c) < 127 and c not in '"\\').strip() or "download"
    return Response(
        content=downloaded.content,
        media_type=downloaded.content_type,
        headers={
            "Content-Disposition": f"{disposition}; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}",
            # Don't cache decrypted files
            "Cache-Control": "private, no-cache",
            "X-File-Encrypted": "true" if downloaded.encrypted else "false",
            "X-File-Verified": "true" if downloaded.verified else "false",
        },
    )


def create_app(service: Optional[MarketplaceService] = None, auth: Optional[AuthManager] = None) -> FastAPI:
    """
    Build the marketplace API.

    Args:
        service: Marketplace service; built from the environment when omitted
        auth: Authentication manager; a fresh one when omitted

    Returns:
        FastAPI: The application
    """
    if service is None:
        service = MarketplaceService(
            registry=RegistryService(),
            blob_store=create_blob_store(),
            chain=create_chain_service(),
        )
    if auth is None:
        auth = AuthManager()

    app = FastAPI(title="DataChain Dataset Marketplace API")
    app.state.service = service
    app.state.auth = auth

    # Enable CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DataChainError)
    async def handle_datachain_error(request: Request, exc: DataChainError):
        return error_response(exc)

    def current_wallet(token: Optional[str] = Depends(bearer_token)) -> str:
        return auth.authenticate(token)

    def optional_wallet(token: Optional[str] = Depends(bearer_token)) -> Optional[str]:
        if token is None:
            return None
        return auth.authenticate(token)

    # Health check endpoint
    @app.get("/health")
    @app.get("/api/health")
    async def health_check():
        """Health check endpoint for Docker healthcheck"""
        return success_response(
            data={
                "timestamp": int(time.time()),
                "blob_store": service.blob_store.name,
                "chain_configured": service.chain.is_configured(),
            },
            message="Service is healthy"
        )

    # Authentication endpoints
    @app.post("/api/auth/challenge")
    def get_auth_challenge(body: AuthChallengeRequest):
        """Generate an authentication challenge for a wallet address"""
        challenge = auth.generate_challenge(body.wallet_address)
        return success_response(data={
            "challenge": challenge,
            "wallet_address": body.wallet_address,
        })

    @app.post("/api/auth/verify")
    def verify_auth(body: AuthVerifyRequest):
        """Verify a signed challenge and open a session"""
        token = auth.verify_signature(body.wallet_address, body.signature)
        return success_response(
            data={
                "session_token": token,
                "wallet_address": body.wallet_address.lower(),
                "expires_in": auth.session_expiration,
            },
            message="Authentication successful"
        )

    @app.post("/api/auth/logout")
    def logout_user(token: Optional[str] = Depends(bearer_token)):
        logged_out = auth.logout(token)
        return success_response(data={"logged_out": logged_out})

    @app.get("/api/auth/status")
    def auth_status(token: Optional[str] = Depends(bearer_token)):
        try:
            wallet_address = auth.authenticate(token)
        except AccessDenied:
            return success_response(data={"authenticated": False, "wallet_address": None})
        return success_response(data={"authenticated": True, "wallet_address": wallet_address})

    # Upload and registration
    @app.post("/api/upload")
    def upload_dataset(
        file: UploadFile = File(...),
        name: Optional[str] = Form(None),
        description: str = Form(""),
        license: str = Form("MIT"),
        category: str = Form("Other"),
        tags: str = Form(""),
        access_status: str = Form("Public"),
        price: int = Form(0),
        encrypt: bool = Form(False),
        wallet_address: str = Depends(current_wallet),
    ):
        """Upload a file to the blob store and register it in the local registry"""
        data = file.file.read()
        logger.info(f"Upload of {file.filename} ({len(data)} bytes) by {short_address(wallet_address)}")
        result = service.upload(
            data,
            file.filename or "upload",
            wallet_address,
            name=name,
            description=description,
            license=license,
            category=category,
            tags=tags,
            access_status=access_status,
            price=price,
            encrypt=encrypt,
            content_type=file.content_type,
        )
        return success_response(
            data={
                "datasetId": result.dataset.id,
                "cid": result.content_id,
                "hash": result.hash,
                "originalHash": result.original_hash,
                "size": result.dataset.size_bytes,
                "name": result.dataset.name,
                "encrypted": result.encrypted,
                "dataset": dataset_detail(result.dataset),
            },
            message="File uploaded successfully"
        )

    @app.post("/api/register-dataset")
    def register_dataset(body: RegisterDatasetRequest, wallet_address: str = Depends(current_wallet)):
        """Publish an uploaded dataset to the registry contract"""
        tx_hash, record = service.register_on_chain(body.dataset_id, wallet_address)
        return success_response(
            data={
                "txHash": tx_hash,
                "datasetInfo": {
                    **dataset_detail(record),
                    "registeredAt": datetime.now(timezone.utc).isoformat(),
                },
            },
            message="Dataset registered on chain"
        )

    # Browsing
    @app.get("/api/datasets")
    def list_datasets(
        creator: Optional[str] = None,
        search: Optional[str] = None,
        tags: Optional[str] = None,
        sort_by: str = Query("downloads", alias="sortBy"),
        limit: int = Query(50, ge=0),
        offset: int = Query(0, ge=0),
    ):
        result = service.list_datasets(creator=creator, search=search, tags=tags,
                                       sort_by=sort_by, limit=limit, offset=offset)
        return success_response(data={
            "datasets": [dataset_card(d) for d in result["datasets"]],
            "source": result["source"],
            "pagination": {
                "total": result["total"],
                "limit": limit,
                "offset": offset,
                "hasMore": offset + limit < result["total"],
            },
            "stats": result["stats"].model_dump(),
        })

    @app.get("/api/stats")
    def registry_stats():
        return success_response(data=service.registry.stats().model_dump())

    @app.get("/api/dataset/{owner}/{dataset_id}")
    def get_dataset(owner: str, dataset_id: str):
        record = service.get_dataset(owner, dataset_id)
        return success_response(data={
            "dataset": dataset_detail(record),
            "source": record.source,
        })

    @app.get("/api/dataset/{owner}/{dataset_id}/file")
    def download_dataset_file(owner: str, dataset_id: str,
                              wallet_address: Optional[str] = Depends(optional_wallet)):
        """Serve a dataset file, decrypting it for its owner when it is encrypted"""
        return file_response(service.download(owner, dataset_id, wallet_address))

    @app.get("/api/dataset/{owner}/{dataset_id}/access-token")
    def get_access_token(owner: str, dataset_id: str, wallet_address: str = Depends(current_wallet)):
        token, ttl = service.issue_access_token(owner, dataset_id, wallet_address)
        return success_response(data={
            "token": token,
            "expiresAt": (datetime.now(timezone.utc) + timedelta(seconds=ttl)).isoformat(),
        })

    @app.get("/api/download")
    def download_with_token(token: str):
        return file_response(service.redeem_access_token(token))

    # Purchase
    @app.post("/api/purchase/{owner}/{dataset_id}")
    def purchase_dataset(owner: str, dataset_id: str, wallet_address: str = Depends(current_wallet)):
        receipt = service.purchase(owner, dataset_id, wallet_address)
        return success_response(
            data={
                "txHash": receipt.transaction_hash,
                "accessGranted": True,
                "purchaseInfo": {
                    "buyer": receipt.buyer,
                    "dataset": receipt.dataset_id,
                    "owner": receipt.owner,
                    "price": receipt.price,
                    "purchasedAt": receipt.purchased_at.isoformat(),
                    "transactionHash": receipt.transaction_hash,
                },
            },
            message="Access granted"
        )

    # Raw files
    @app.get("/api/files/{cid}")
    def get_file(cid: str, download: bool = False):
        cid = clean_cid(cid)
        content = service.fetch_public_file(cid)
        headers = {
            "Cache-Control": "public, max-age=31536000",
            "X-IPFS-CID": cid,
        }
        if download:
            headers["Content-Disposition"] = f'attachment; filename="{cid}"'
        return Response(content=content, media_type="application/octet-stream", headers=headers)

    @app.get("/api/files/{cid}/signed-url")
    def get_signed_url(cid: str, expires: int = Query(3600, gt=0)):
        cid = clean_cid(cid)
        signed_url = service.signed_url(cid, expires)
        return success_response(data={
            "signedUrl": signed_url,
            "cid": cid,
            "expires": expires,
            "expiresAt": (datetime.now(timezone.utc) + timedelta(seconds=expires)).isoformat(),
        })

    return app


app = create_app()
