import io
import json
import logging
import os
import posixpath
import re
import uuid
import zipfile
import zlib
from typing import Dict, List, Mapping, Optional, Tuple

import azure.functions as func
from azure.identity import DefaultAzureCredential
from azure.storage.blob import BlobServiceClient, ContainerClient, ContentSettings

from face_redactor.archive import (
    archive_entries,
    archive_names,
    archive_filename,
    base_name,
    build_zip,
    download_one,
    entry_name_for,
)
from face_redactor.batch import BatchRunner
from face_redactor.detector import DetrDetector
from face_redactor.errors import ConfigurationError, DecodeError
from face_redactor.pipeline import RedactionPipeline, failure_from_error
from face_redactor.redaction_types import ItemFailure, ProcessedResult
from face_redactor.settings import settings_from_env, settings_from_params

app = func.FunctionApp()

# Define container names from environment variables with defaults
INPUT_CONTAINER_NAME = os.environ.get("INPUT_CONTAINER_NAME", "input")
PROCESSED_CONTAINER_NAME = os.environ.get("PROCESSED_CONTAINER_NAME", "processed")
STORAGE_AUTH_MODE = (
    os.environ.get("STORAGE_AUTH_MODE", "connection_string").strip().lower()
)
STORAGE_ACCOUNT_URL = os.environ.get("STORAGE_ACCOUNT_URL")
MAX_BATCH_ITEMS = int(os.environ.get("MAX_BATCH_ITEMS", "50"))

REDACTION_NOTICE = (
    "Face detection is automatic and can miss faces. "
    "Check every output before publishing it."
)

# Invalid REDACT_* settings stop the app at startup rather than per request.
REDACTION_SETTINGS = settings_from_env()
DETECTOR = DetrDetector(
    REDACTION_SETTINGS.detector_model_id,
    threshold=REDACTION_SETTINGS.detection_threshold,
)


def _resolve_auth_level(value: Optional[str], default: func.AuthLevel) -> func.AuthLevel:
    if not value:
        return default
    normalized = value.strip().upper()
    if normalized in {"ANONYMOUS", "FUNCTION", "ADMIN"}:
        return getattr(func.AuthLevel, normalized)
    logging.warning("Unknown auth level '%s'; defaulting to %s", value, default)
    return default


DEFAULT_AUTH_LEVEL = _resolve_auth_level(
    os.environ.get("HTTP_AUTH_LEVEL"), func.AuthLevel.FUNCTION
)
HEALTH_AUTH_LEVEL = _resolve_auth_level(
    os.environ.get("HEALTH_AUTH_LEVEL"), DEFAULT_AUTH_LEVEL
)

_STATUS_BY_KIND = {
    "DecodeError": 400,
    "DetectionError": 503,
}


def _get_storage_service_client() -> Optional[BlobServiceClient]:
    if STORAGE_AUTH_MODE in {"managed_identity", "aad"}:
        if not STORAGE_ACCOUNT_URL:
            logging.error(
                "STORAGE_ACCOUNT_URL is required for managed identity storage access"
            )
            return None
        try:
            credential = DefaultAzureCredential()
            return BlobServiceClient(
                account_url=STORAGE_ACCOUNT_URL, credential=credential
            )
        except Exception as exc:
            logging.error(
                "Failed to create blob service client with managed identity: %s", exc
            )
            return None

    connection = os.environ.get("AzureWebJobsStorage")
    if not connection:
        logging.error("AzureWebJobsStorage connection string not found in environment")
        return None

    try:
        return BlobServiceClient.from_connection_string(connection)
    except Exception as exc:
        logging.error("Failed to create blob service client: %s", exc)
        return None


def _get_processed_container() -> Optional[ContainerClient]:
    """Return the processed container client if storage is configured."""
    service_client = _get_storage_service_client()
    if not service_client:
        return None

    try:
        return service_client.get_container_client(PROCESSED_CONTAINER_NAME)
    except Exception as exc:
        logging.error(
            "Failed to create blob container client for %s: %s",
            PROCESSED_CONTAINER_NAME,
            exc,
        )
        return None


def _build_pipeline(params: Mapping[str, str]) -> RedactionPipeline:
    settings = settings_from_params(params, base=REDACTION_SETTINGS)
    return RedactionPipeline(DETECTOR, settings)


def _status_for_failure(failure: ItemFailure) -> int:
    return _STATUS_BY_KIND.get(failure.kind, 500)


def _sanitize_header_filename(value: str) -> str:
    safe = re.sub(r"[^A-Za-z0-9._ -]+", "_", value).strip("_ ")
    return safe or "image"


def _json_response(payload: Dict[str, object], status_code: int = 200) -> func.HttpResponse:
    return func.HttpResponse(
        body=json.dumps(payload),
        status_code=status_code,
        mimetype="application/json",
    )


def _result_payload(
    result: ProcessedResult, archive_name: Optional[str] = None
) -> Dict[str, object]:
    payload = result.to_dict()
    payload["archive_name"] = archive_name or entry_name_for(result.source_name)
    return payload


def _processed_blob_name(blob_path: str) -> str:
    """Map ``input/2020/a.jpg`` to ``2020/processed_a.jpg``, keeping the folder."""
    path = blob_path.replace("\\", "/").lstrip("/")
    container_prefix = f"{INPUT_CONTAINER_NAME}/"
    if path.startswith(container_prefix):
        path = path[len(container_prefix) :]
    folder = posixpath.dirname(path)
    name = entry_name_for(path)
    return posixpath.join(folder, name) if folder else name


def _upload_processed_result(
    processed_container: ContainerClient,
    result: ProcessedResult,
    blob_name: Optional[str] = None,
) -> Optional[str]:
    """Upload one redacted image (default ``processed_<name>``); return the blob name."""
    blob_name = blob_name or entry_name_for(result.source_name)
    try:
        processed_container.upload_blob(
            name=blob_name,
            data=result.data,
            overwrite=True,
            content_settings=ContentSettings(content_type=result.mime_type),
        )
    except Exception as exc:
        logging.error("Failed to upload processed image %s: %s", blob_name, exc)
        return None
    logging.info(
        "Uploaded %s with %d redacted region(s)", blob_name, result.faces_detected
    )
    return blob_name


def _process_blob_bytes(
    source_name: str,
    blob_bytes: bytes,
    processed_container: ContainerClient,
    pipeline: Optional[RedactionPipeline] = None,
) -> Optional[str]:
    """Redact a blob and upload the result."""
    pipeline = pipeline or RedactionPipeline(DETECTOR, REDACTION_SETTINGS)
    outcome = pipeline.process_one(blob_bytes, base_name(source_name))
    if isinstance(outcome, ItemFailure):
        logging.error(
            "Skipping %s: %s during %s: %s",
            source_name,
            outcome.kind,
            outcome.stage.value,
            outcome.message,
        )
        return None
    return _upload_processed_result(
        processed_container, outcome, _processed_blob_name(source_name)
    )


@app.function_name(name="RedactBlob")
@app.blob_trigger(
    arg_name="inputBlob",
    path=f"{INPUT_CONTAINER_NAME}/{{name}}",
    connection="AzureWebJobsStorage",
)
def redact_blob(inputBlob: func.InputStream) -> None:
    """Blob trigger that redacts photos uploaded to the input container."""
    if not inputBlob.name:
        logging.error("Blob name is missing, cannot process.")
        return

    logging.info("Processing blob: %s", inputBlob.name)

    processed_container = _get_processed_container()
    if not processed_container:
        logging.critical(
            "Exiting: Processed container client could not be initialized. "
            "Check storage connection string."
        )
        return

    try:
        blob_bytes = inputBlob.read()
    except Exception as exc:
        logging.error("Failed to read blob %s: %s", inputBlob.name, exc)
        return

    _process_blob_bytes(inputBlob.name, blob_bytes, processed_container)


@app.function_name(name="Health")
@app.route(route="health", methods=["GET"], auth_level=HEALTH_AUTH_LEVEL)
def health(req: func.HttpRequest) -> func.HttpResponse:
    """Simple health endpoint for Postman/smoke tests."""
    return func.HttpResponse("OK", status_code=200)


@app.function_name(name="RedactImage")
@app.route(route="redact", methods=["POST"], auth_level=DEFAULT_AUTH_LEVEL)
def redact_image(req: func.HttpRequest) -> func.HttpResponse:
    """Redact faces in one uploaded image and return the processed image.

    Send the image bytes as the raw request body.

    Query params:
      - name: original file name (or the ``x-file-name`` header)
      - output=image|json (default: image)
      - mode, block_size, blur_radius, face_fraction, target_ppi, source_ppi,
        threshold, labels, quality, format: per-request setting overrides
    """
    image_bytes = req.get_body() or b""
    if not image_bytes:
        return func.HttpResponse(
            "Provide image bytes in the request body.", status_code=400
        )

    output_mode = (req.params.get("output") or "image").strip().lower()
    if output_mode not in {"image", "json"}:
        return func.HttpResponse(
            "Unsupported output. Use 'image' or 'json'.", status_code=400
        )

    try:
        pipeline = _build_pipeline(req.params)
    except ConfigurationError as exc:
        return func.HttpResponse(str(exc), status_code=400)

    source_name = (
        (req.params.get("name") or "").strip()
        or req.headers.get("x-file-name")
        or f"upload_{uuid.uuid4().hex}.jpg"
    )
    outcome = pipeline.process_one(image_bytes, source_name)

    if isinstance(outcome, ItemFailure):
        payload = outcome.to_dict()
        payload["notice"] = REDACTION_NOTICE
        return _json_response(payload, status_code=_status_for_failure(outcome))

    if output_mode == "json":
        payload = _result_payload(outcome)
        payload["notice"] = REDACTION_NOTICE
        return _json_response(payload)

    filename = _sanitize_header_filename(entry_name_for(source_name))
    headers = {
        "Content-Disposition": f'attachment; filename="{filename}"',
        "X-Faces-Detected": str(outcome.faces_detected),
        "X-Image-Width": str(outcome.width),
        "X-Image-Height": str(outcome.height),
        "X-Redaction-Notice": REDACTION_NOTICE,
    }
    return func.HttpResponse(
        body=download_one(outcome),
        status_code=200,
        mimetype=outcome.mime_type,
        headers=headers,
    )


_UNREADABLE_ENTRY_ERRORS = (
    zipfile.BadZipFile,
    RuntimeError,
    NotImplementedError,
    zlib.error,
    OSError,
)


def _read_zip_inputs(
    archive_bytes: bytes,
) -> Tuple[List[Tuple[str, bytes]], List[ItemFailure]]:
    """Split an uploaded zip archive into readable files and unreadable entries.

    Only a body that is not a zip archive raises ``zipfile.BadZipFile``; a
    corrupt, encrypted or unsupported entry becomes a decoding failure.
    """
    files: List[Tuple[str, bytes]] = []
    unreadable: List[ItemFailure] = []
    with zipfile.ZipFile(io.BytesIO(archive_bytes)) as zf:
        for info in zf.infolist():
            if info.is_dir():
                continue
            name = base_name(info.filename)
            # Finder resource forks are not images.
            if info.filename.startswith("__MACOSX/") or name.startswith("._"):
                continue
            try:
                data = zf.read(info)
            except _UNREADABLE_ENTRY_ERRORS as exc:
                logging.warning("Cannot read %s from archive: %s", info.filename, exc)
                error = DecodeError(f"Unreadable archive entry: {exc}")
                unreadable.append(failure_from_error(name, error))
                continue
            files.append((name, data))
    return files, unreadable


@app.function_name(name="RedactBatch")
@app.route(route="redact/batch", methods=["POST"], auth_level=DEFAULT_AUTH_LEVEL)
def redact_batch(req: func.HttpRequest) -> func.HttpResponse:
    """Redact every image in an uploaded zip archive.

    Send a zip archive of images as the raw request body.

    Query params:
      - output_format=zip|json (default: zip)
      - the same setting overrides as ``/api/redact`` (``format`` is the
        image format inside the archive)

    Responds 200 when every image succeeded and 207 when some failed.
    """
    archive_bytes = req.get_body() or b""
    if not archive_bytes:
        return func.HttpResponse(
            "Provide a zip archive of images in the request body.", status_code=400
        )

    output_format = (req.params.get("output_format") or "zip").strip().lower()
    if output_format not in {"zip", "json"}:
        return func.HttpResponse(
            "Unsupported output_format. Use 'zip' or 'json'.", status_code=400
        )

    try:
        pipeline = _build_pipeline(req.params)
    except ConfigurationError as exc:
        return func.HttpResponse(str(exc), status_code=400)

    try:
        files, unreadable = _read_zip_inputs(archive_bytes)
    except zipfile.BadZipFile:
        return func.HttpResponse(
            "Request body must be a zip archive of images.", status_code=400
        )

    total = len(files) + len(unreadable)
    if not total:
        return func.HttpResponse("The archive contains no files.", status_code=400)
    if total > MAX_BATCH_ITEMS:
        return func.HttpResponse(
            f"Too many files; the limit is {MAX_BATCH_ITEMS} per request.",
            status_code=413,
        )

    batch = BatchRunner(pipeline).run(files)
    failures = batch.failures + unreadable
    status_code = 200 if not failures else 207

    if output_format == "json":
        results = batch.results
        payload = {
            "processed": batch.succeeded,
            "failed": len(failures),
            "results": [
                _result_payload(result, name)
                for result, name in zip(results, archive_names(results))
            ],
            "failures": [failure.to_dict() for failure in failures],
            "notice": REDACTION_NOTICE,
        }
        return _json_response(payload, status_code=status_code)

    headers = {
        "Content-Disposition": f"attachment; filename={archive_filename()}",
        "X-Processed-Count": str(batch.succeeded),
        "X-Failed-Count": str(len(failures)),
        "X-Failures": json.dumps(
            [
                {"name": f.source_name, "stage": f.stage.value, "kind": f.kind}
                for f in failures
            ]
        ),
        "X-Redaction-Notice": REDACTION_NOTICE,
    }
    return func.HttpResponse(
        body=build_zip(archive_entries(batch.results)),
        status_code=status_code,
        mimetype="application/zip",
        headers=headers,
    )
