import asyncio
import shutil
import subprocess
from pathlib import Path

import jwt
import pytest
from fastapi.testclient import TestClient

from tubely.api import deps
from tubely.core.config import get_settings
from tubely.core.db import Base, create_engine, create_schema
from tubely.core.errors import RewriteError
from tubely.media.faststart import ContainerRewriter, faststart_output_path
from tubely.media.probe import Classification, MediaInspector
from tubely.main import create_app

TEST_SECRET = "test-secret"
TEST_ISSUER = "tubely-test"
TEST_AUDIENCE = "tubely"


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "no_default_env: disable the default Tubely environment bootstrap fixture for tests that manage their own .env",
    )


@pytest.fixture()
def staging_root(tmp_path) -> Path:
    return tmp_path / "staging"


@pytest.fixture()
def objects_root(tmp_path) -> Path:
    return tmp_path / "objects"


@pytest.fixture(autouse=True)
def configure_environment(request, monkeypatch, tmp_path):
    if request.node.get_closest_marker("no_default_env"):
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()
        return
    db_path = tmp_path / "tubely_test.db"

    monkeypatch.setenv("TUBELY_ENVIRONMENT", "test")
    monkeypatch.setenv("TUBELY_LOG_LEVEL", "debug")
    monkeypatch.setenv("TUBELY_DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("TUBELY_STORAGE_BACKEND", "local")
    monkeypatch.setenv("TUBELY_LOCAL_STORAGE_BASE_PATH", str(tmp_path / "objects"))
    monkeypatch.setenv("TUBELY_PUBLIC_BASE_URL", "http://testserver")
    monkeypatch.setenv("TUBELY_STAGING_ROOT", str(tmp_path / "staging"))
    monkeypatch.setenv("TUBELY_ASSETS_ROOT", str(tmp_path / "assets"))
    monkeypatch.setenv("TUBELY_JWT_SECRET", TEST_SECRET)
    monkeypatch.setenv("TUBELY_JWT_ISSUER", TEST_ISSUER)
    monkeypatch.setenv("TUBELY_JWT_AUDIENCE", TEST_AUDIENCE)

    get_settings.cache_clear()
    settings = get_settings()
    engine = create_engine(settings)

    async def _setup() -> None:
        await create_schema(engine)

    asyncio.run(_setup())

    yield

    async def _teardown() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()

    asyncio.run(_teardown())
    get_settings.cache_clear()


def build_token(user_id: str, *, scopes: list[str] | None = None, secret: str = TEST_SECRET) -> str:
    payload: dict[str, object] = {"sub": user_id, "iss": TEST_ISSUER, "aud": TEST_AUDIENCE}
    if scopes:
        payload["scopes"] = scopes
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(user_id: str, *, scopes: list[str] | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token(user_id, scopes=scopes)}"}


class FakeInspector(MediaInspector):
    """Returns a canned classification (or raises) without spawning ffprobe."""

    def __init__(self, result: Classification | Exception = Classification.landscape):
        self.result = result
        self.calls: list[Path] = []

    async def inspect(self, path: Path) -> Classification:
        self.calls.append(path)
        assert path.exists(), "inspector should see the staged file"
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class FakeRewriter(ContainerRewriter):
    """Copies the staged file to the ``.processing`` path, or fails like ffmpeg would."""

    def __init__(self, *, fail: bool = False, remove_output: bool = False):
        self.fail = fail
        self.remove_output = remove_output
        self.calls: list[Path] = []

    async def rewrite(self, input_path: Path) -> Path:
        self.calls.append(input_path)
        if self.fail:
            raise RewriteError("Unable to process video for fast start: ffmpeg exited with status 1")
        output = faststart_output_path(input_path)
        shutil.copyfile(input_path, output)
        if self.remove_output:
            output.unlink()
        return output


@pytest.fixture()
def fake_inspector() -> FakeInspector:
    return FakeInspector()


@pytest.fixture()
def fake_rewriter() -> FakeRewriter:
    return FakeRewriter()


@pytest.fixture()
def app(configure_environment, fake_inspector, fake_rewriter):
    application = create_app()
    application.dependency_overrides[deps.get_inspector] = lambda: fake_inspector
    application.dependency_overrides[deps.get_rewriter] = lambda: fake_rewriter
    return application


@pytest.fixture()
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def owner_headers() -> dict[str, str]:
    return auth_headers("user-a")


@pytest.fixture()
def other_headers() -> dict[str, str]:
    return auth_headers("user-b")


@pytest.fixture()
def create_video(client, owner_headers):
    def _create(title: str = "Boots", headers: dict[str, str] | None = None) -> dict:
        resp = client.post("/v1/videos", json={"title": title}, headers=headers or owner_headers)
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _create


def staged_files(root: Path) -> list[Path]:
    if not root.exists():
        return []
    return [path for path in root.iterdir()]


requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg/ffprobe not installed",
)


def _generate_video(path: Path, size: str) -> Path:
    command = [
        "ffmpeg",
        "-v", "error",
        "-f", "lavfi",
        "-i", f"color=c=black:s={size}:r=30",
        "-t", "1",
        "-pix_fmt", "yuv420p",
        "-y",
        str(path),
    ]
    subprocess.run(command, check=True, capture_output=True)
    return path


@pytest.fixture(scope="session")
def generated_video_file(tmp_path_factory) -> Path:
    """A small 16:9 MP4 produced by ffmpeg; skips when ffmpeg is unavailable."""
    if shutil.which("ffmpeg") is None:
        pytest.skip("ffmpeg not installed")
    return _generate_video(tmp_path_factory.mktemp("data") / "landscape.mp4", "128x72")


@pytest.fixture(scope="session")
def generated_portrait_file(tmp_path_factory) -> Path:
    if shutil.which("ffmpeg") is None:
        pytest.skip("ffmpeg not installed")
    return _generate_video(tmp_path_factory.mktemp("data") / "portrait.mp4", "72x128")
