"""Shared fixtures: sample documents, a CollecTor index builder and fake HTTP clients."""

from datetime import datetime, timezone
from typing import Any, Callable

import httpx
import pytest

from bridge_ingestion.domain import RawDocument

FP1 = "005fd4d7decbb250055b861579e6fdc79ad17bee"
FP2 = "01ea4fb2da2086e71e7ca84c683fcadd2aa9036b"
FP3 = "0B2C3D4E5F60718293A4B5C6D7E8F90A1B2C3D4E"

BASE_URL = "https://collector.example.org/"
POOL_DIR = "recent/bridge-pool-assignments"


def make_document(content: str | bytes, path: str = f"{POOL_DIR}/2022-04-09-00-29-37") -> RawDocument:
    if isinstance(content, str):
        content = content.encode("utf-8")
    return RawDocument(
        path=path,
        last_modified=datetime(2022, 4, 9, 0, 32, tzinfo=timezone.utc),
        content=content,
    )


@pytest.fixture
def sample_text() -> str:
    return (
        "bridge-pool-assignment 2022-04-09 00:29:37\n"
        f"{FP1} email transport=obfs4\n"
        f"{FP2} https ip=4 blocklist=ru state=functional bandwidth=high ratio=0.5 distributed=true\n"
        f"{FP3} moat\n"
    )


@pytest.fixture
def sample_document(sample_text: str) -> RawDocument:
    return make_document(sample_text)


@pytest.fixture
def document_factory() -> Callable[..., RawDocument]:
    return make_document


@pytest.fixture
def index_factory() -> Callable[[dict[str, str]], dict[str, Any]]:
    """Build a CollecTor index.json payload from {file name: last_modified} under recent/bridge-pool-assignments."""

    def build(files: dict[str, str]) -> dict[str, Any]:
        return {
            "index_created": "2022-04-09 01:00",
            "path": BASE_URL.rstrip("/"),
            "directories": [
                {
                    "path": "recent",
                    "directories": [
                        {
                            "path": "bridge-pool-assignments",
                            "files": [
                                {"path": name, "size": 100, "last_modified": modified}
                                for name, modified in files.items()
                            ],
                        },
                        {
                            "path": "relay-descriptors",
                            "directories": [
                                {
                                    "path": "consensuses",
                                    "files": [{"path": "2022-04-09-00-00-00-consensus", "size": 1, "last_modified": "2022-04-09 00:05"}],
                                }
                            ],
                        },
                    ],
                }
            ],
        }

    return build


@pytest.fixture
def mock_client_factory() -> Callable[[Callable[[httpx.Request], Any]], httpx.AsyncClient]:
    def build(handler: Callable[[httpx.Request], Any]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return build
