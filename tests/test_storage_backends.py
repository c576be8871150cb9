"""Tests for object store backends."""

from unittest.mock import MagicMock, patch

import pytest
from google.api_core.exceptions import GoogleAPIError, NotFound

from imagepipe.core.config import Settings
from imagepipe.core.exceptions import ObjectNotFoundError, TransientError
from imagepipe.storage import LocalObjectStore, get_object_store
from imagepipe.storage.gcs import GCSObjectStore


class TestLocalObjectStore:
    """Tests for the local filesystem object store."""

    @pytest.mark.asyncio
    async def test_fetch_existing_object(self, tmp_path):
        (tmp_path / "images" / "2024").mkdir(parents=True)
        (tmp_path / "images" / "2024" / "holiday photo.jpeg").write_bytes(b"jpeg-bytes")
        store = LocalObjectStore(tmp_path)

        content = await store.fetch("images", "2024/holiday photo.jpeg")

        assert content == b"jpeg-bytes"

    @pytest.mark.asyncio
    async def test_fetch_missing_object(self, tmp_path):
        store = LocalObjectStore(tmp_path)

        with pytest.raises(ObjectNotFoundError):
            await store.fetch("images", "missing.png")

    @pytest.mark.asyncio
    async def test_fetch_directory_is_not_found(self, tmp_path):
        (tmp_path / "images" / "folder.png").mkdir(parents=True)
        store = LocalObjectStore(tmp_path)

        with pytest.raises(ObjectNotFoundError):
            await store.fetch("images", "folder.png")

    @pytest.mark.asyncio
    async def test_key_escaping_bucket_is_refused(self, tmp_path):
        (tmp_path / "secret.png").write_bytes(b"secret")
        (tmp_path / "images").mkdir()
        store = LocalObjectStore(tmp_path)

        with pytest.raises(ObjectNotFoundError, match="escapes bucket"):
            await store.fetch("images", "../secret.png")


@pytest.fixture
def mock_storage_client():
    """Mock Google Cloud Storage client."""
    with patch("imagepipe.storage.gcs.storage.Client") as mock_client:
        yield mock_client


class TestGCSObjectStore:
    """Tests for the Cloud Storage object store."""

    def test_client_uses_endpoint_override(self, mock_storage_client):
        GCSObjectStore(project_id="proj", endpoint="http://localhost:4443")

        mock_storage_client.assert_called_once_with(
            project="proj", client_options={"api_endpoint": "http://localhost:4443"}
        )

    @pytest.mark.asyncio
    async def test_fetch_success(self, mock_storage_client):
        store = GCSObjectStore(project_id="proj")
        blob = store.client.bucket.return_value.blob.return_value
        blob.download_as_bytes.return_value = b"png-bytes"

        content = await store.fetch("images", "photo.png")

        assert content == b"png-bytes"
        store.client.bucket.assert_called_with("images")
        store.client.bucket.return_value.blob.assert_called_with("photo.png")

    def test_not_found_is_not_retried(self, mock_storage_client):
        store = GCSObjectStore()
        blob = store.client.bucket.return_value.blob.return_value
        blob.download_as_bytes.side_effect = NotFound("Object not found")

        with pytest.raises(ObjectNotFoundError):
            store._download("images", "missing.png")

        assert blob.download_as_bytes.call_count == 1

    def test_api_error_is_retried_then_raised_as_transient(self, mock_storage_client):
        store = GCSObjectStore()
        blob = store.client.bucket.return_value.blob.return_value
        blob.download_as_bytes.side_effect = GoogleAPIError("API error")

        with patch("time.sleep"):
            with pytest.raises(TransientError):
                store._download("images", "photo.png")

        assert blob.download_as_bytes.call_count == 3

    def test_api_error_then_success(self, mock_storage_client):
        store = GCSObjectStore()
        blob = store.client.bucket.return_value.blob.return_value
        blob.download_as_bytes.side_effect = [GoogleAPIError("API error"), b"png-bytes"]

        with patch("time.sleep"):
            assert store._download("images", "photo.png") == b"png-bytes"


class TestGetObjectStore:
    """Tests for backend selection."""

    def test_local_backend(self, tmp_path):
        store = get_object_store(Settings(OBJECT_STORE_BACKEND="local", OBJECT_STORE_PATH=str(tmp_path)))

        assert isinstance(store, LocalObjectStore)
        assert store.base_path == tmp_path

    def test_gcs_backend(self, mock_storage_client):
        store = get_object_store(Settings(OBJECT_STORE_BACKEND="gcs", GCP_PROJECT_ID="proj"))

        assert isinstance(store, GCSObjectStore)
        mock_storage_client.assert_called_once_with(project="proj", client_options=None)

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown OBJECT_STORE_BACKEND"):
            get_object_store(Settings(OBJECT_STORE_BACKEND="ftp"))
