import json
import logging
import os
import tempfile
import threading
from typing import List

# STORAGE_BACKEND determines which logic branch (local/gcp/azure) runs.
from common import config
from common.job_schema import RemoteJob

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------------------
# CONDITIONAL IMPORTS
# Cloud SDKs are only needed for their backend; a local install can skip them.
# ------------------------------------------------------------------------------

try:
    from google.cloud import storage as gcs
except ImportError:
    gcs = None

try:
    from azure.storage.blob import BlobServiceClient
except ImportError:
    BlobServiceClient = None

HISTORY_OBJECT = "history/history.json"  # object acting as our "database"

# save_generation is read-modify-write; status requests run it from worker threads.
_history_lock = threading.Lock()


def _dump(records: List[RemoteJob]) -> str:
    return json.dumps([r.model_dump(mode="json") for r in records], indent=2)


def _load(content: str) -> List[RemoteJob]:
    if not content.strip():
        return []
    return [RemoteJob(**x) for x in json.loads(content)]


# ------------------------------------------------------------------------------
# LOCAL FILESYSTEM
# ------------------------------------------------------------------------------

def _read_local_history() -> List[RemoteJob]:
    path = config.LOCAL_HISTORY_FILE
    return _load(path.read_text() if path.exists() else "[]")


def _write_local_history(records: List[RemoteJob]) -> None:
    path = config.LOCAL_HISTORY_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    # write beside the target and swap it in so readers never see a partial file
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=path.name, suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(_dump(records))
        os.replace(tmp_name, path)
    except BaseException:
        os.unlink(tmp_name)
        raise


# ------------------------------------------------------------------------------
# GOOGLE CLOUD STORAGE
# ------------------------------------------------------------------------------

def _get_gcs_blob():
    if not gcs:
        raise RuntimeError("google-cloud-storage library is not installed.")
    if not config.GCS_BUCKET:
        raise ValueError("GCS_BUCKET env var is required for GCP backend")
    return gcs.Client().bucket(config.GCS_BUCKET).blob(HISTORY_OBJECT)


def _read_gcs_history() -> List[RemoteJob]:
    blob = _get_gcs_blob()
    if not blob.exists():
        return []
    return _load(blob.download_as_text())


def _write_gcs_history(records: List[RemoteJob]) -> None:
    _get_gcs_blob().upload_from_string(_dump(records), content_type="application/json")


# ------------------------------------------------------------------------------
# AZURE BLOB STORAGE
# ------------------------------------------------------------------------------

def _get_azure_blob():
    if not BlobServiceClient:
        raise RuntimeError("azure-storage-blob library is not installed.")
    if not config.AZURE_CONN_STR:
        raise ValueError("AZURE_STORAGE_CONNECTION_STRING env var is missing.")
    if not config.AZURE_CONTAINER:
        raise ValueError("AZURE_CONTAINER env var is required for Azure backend")
    client = BlobServiceClient.from_connection_string(config.AZURE_CONN_STR)
    container_client = client.get_container_client(config.AZURE_CONTAINER)
    if not container_client.exists():
        container_client.create_container()
    return container_client.get_blob_client(HISTORY_OBJECT)


def _read_azure_history() -> List[RemoteJob]:
    blob_client = _get_azure_blob()
    if not blob_client.exists():
        return []
    return _load(blob_client.download_blob().readall().decode("utf-8"))


def _write_azure_history(records: List[RemoteJob]) -> None:
    _get_azure_blob().upload_blob(_dump(records), overwrite=True)


# ------------------------------------------------------------------------------
# PUBLIC API
# ------------------------------------------------------------------------------

def _read_history() -> List[RemoteJob]:
    if config.STORAGE_BACKEND == "local":
        return _read_local_history()
    elif config.STORAGE_BACKEND == "gcp":
        return _read_gcs_history()
    elif config.STORAGE_BACKEND == "azure":
        return _read_azure_history()
    raise RuntimeError(f"Unsupported STORAGE_BACKEND: {config.STORAGE_BACKEND}")


def _write_history(records: List[RemoteJob]) -> None:
    if config.STORAGE_BACKEND == "local":
        _write_local_history(records)
    elif config.STORAGE_BACKEND == "gcp":
        _write_gcs_history(records)
    elif config.STORAGE_BACKEND == "azure":
        _write_azure_history(records)
    else:
        raise RuntimeError(f"Unsupported STORAGE_BACKEND: {config.STORAGE_BACKEND}")


def save_generation(job: RemoteJob) -> None:
    """Inserts the job into the history, replacing any record with the same hash."""
    with _history_lock:
        records = _read_history()
        for i, record in enumerate(records):
            if record.hash == job.hash:
                records[i] = job.model_copy(update={"created_at": record.created_at})
                break
        else:
            records.append(job)
        _write_history(records)
    logger.info("Saved generation %s (%s) to history", job.hash, job.status.value)


def list_history() -> List[RemoteJob]:
    """Returns every stored generation, newest first."""
    return sorted(_read_history(), key=lambda r: r.created_at, reverse=True)
