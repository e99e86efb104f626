"""Provider test fixtures, parameterized for conformance testing."""

from __future__ import annotations

import dataclasses
import socket
import uuid
from typing import TYPE_CHECKING

import pytest

from commander_store._uri import from_local_path, join_uri
from commander_store.providers._file import FileProvider

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from commander_store._provider import ObjectStore
    from tests.providers.aifs_server import InMemoryAifsServicer

REGION = "us-east-1"
AIFS_TOKEN = "test-token"


def _s3_available() -> bool:
    try:
        import boto3  # noqa: F401
        import moto  # noqa: F401
        import s3fs  # noqa: F401

        return True
    except ImportError:
        return False


def _free_port() -> int:
    with socket.socket() as s:
        s.bind(("", 0))
        return s.getsockname()[1]


@dataclasses.dataclass
class StoreUnderTest:
    """A provider plus the directory URI a test may use freely."""

    provider: ObjectStore
    root: str
    local: Path

    def uri(self, *names: str) -> str:
        return join_uri(self.root, *names)

    def source(self, data: bytes, name: str = "src.bin") -> Path:
        """Write ``data`` to a local file suitable as a ``put`` source."""
        path = self.local / name
        path.write_bytes(data)
        return path

    def add(self, name: str, data: bytes = b"data") -> str:
        uri = self.uri(name)
        self.provider.put(self.source(data, f"seed-{uuid.uuid4().hex}"), uri)
        return uri


@pytest.fixture(scope="session")
def moto_server() -> Iterator[str | None]:
    """Start a moto HTTP server for the test session.

    Uses server mode instead of mock_aws() because s3fs talks to S3 through
    aiobotocore, which the in-process mock does not patch.
    """
    if not _s3_available():
        yield None
        return
    from moto.moto_server.threaded_moto_server import ThreadedMotoServer

    port = _free_port()
    server = ThreadedMotoServer(port=port, verbose=False)
    server.start()
    yield f"http://127.0.0.1:{port}"
    server.stop()


@pytest.fixture(scope="session")
def aifs_server() -> Iterator[tuple[InMemoryAifsServicer, str]]:
    """Start an in-process AIFS gRPC server that requires a bearer token."""
    from tests.providers.aifs_server import start_aifs_server

    server, servicer, endpoint = start_aifs_server(token=AIFS_TOKEN)
    yield servicer, endpoint
    server.stop(grace=None)


def make_bucket(moto_server: str, prefix: str = "test") -> str:
    import boto3

    bucket = f"{prefix}-{uuid.uuid4().hex[:8]}"
    client = boto3.client(
        "s3",
        endpoint_url=moto_server,
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        region_name=REGION,
    )
    client.create_bucket(Bucket=bucket)
    return bucket


def make_s3_provider(moto_server: str) -> ObjectStore:
    from commander_store.providers._s3 import S3Provider

    return S3Provider(endpoint_url=moto_server, key="testing", secret="testing", region_name=REGION)


_s3_param = pytest.param(
    "s3",
    marks=pytest.mark.skipif(not _s3_available(), reason="moto/s3fs/boto3 not installed"),
)


@pytest.fixture(params=["file", _s3_param, "gcs", "az", "aifs"])
def store(
    request: pytest.FixtureRequest,
    tmp_path: Path,
    moto_server: str | None,
    aifs_server: tuple[InMemoryAifsServicer, str],
) -> Iterator[StoreUnderTest]:
    """Parameterized provider fixture. Add new providers here."""
    local = tmp_path / "local"
    local.mkdir()
    if request.param == "file":
        root_dir = tmp_path / "root"
        root_dir.mkdir()
        provider: ObjectStore = FileProvider()
        root = from_local_path(str(root_dir), directory=True)
    elif request.param == "s3":
        assert moto_server is not None
        provider = make_s3_provider(moto_server)
        root = f"s3://{make_bucket(moto_server, 'conformance')}/"
    elif request.param == "gcs":
        from commander_store.providers._gcs import GCSProvider
        from tests.providers.fakes import FakeGCSClient

        provider = GCSProvider(client=FakeGCSClient(buckets=("conformance",)))
        root = "gcs://conformance/"
    elif request.param == "az":
        from commander_store.providers._azure import AzureProvider
        from tests.providers.fakes import FakeBlobServiceClient

        provider = AzureProvider(client=FakeBlobServiceClient(containers=("conformance",)), copy_poll_interval=0)
        root = "az://conformance/"
    elif request.param == "aifs":
        from commander_store.providers._aifs import AifsProvider

        _, endpoint = aifs_server
        provider = AifsProvider(endpoint=endpoint, api_key=AIFS_TOKEN)
        root = f"aifs://ns-{uuid.uuid4().hex[:8]}/"
    else:
        pytest.skip(f"Unknown provider: {request.param}")
    yield StoreUnderTest(provider=provider, root=root, local=local)
    provider.close()
