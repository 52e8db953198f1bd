from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from helpers import FakeGradioClient
from vton_proxy.app.engines import EngineConfig, IdmVtonEngine
from vton_proxy.app.main import app, get_remote_client, get_tryon_pipeline
from vton_proxy.app.remote import RemoteClientProvider
from vton_proxy.app.tryon_pipeline import TryOnPipeline


class ApiHarness:
    def __init__(self, tmp_path: Path) -> None:
        self.staging_dir = tmp_path / "staging"
        self.output_dir = tmp_path / "outputs"
        self.staging_dir.mkdir()
        self.output_dir.mkdir()
        self.fake: Optional[FakeGradioClient] = None
        self.remote: Optional[RemoteClientProvider] = None

    def build(
        self,
        responder=None,
        *,
        hang: bool = False,
        timeout_s: float = 5.0,
        retry_attempts: int = 2,
        factory=None,
        transport=None,
    ) -> TestClient:
        self.fake = FakeGradioClient(responder, hang=hang)
        self.remote = RemoteClientProvider(
            space_id="test/idm-vton",
            token="hf_test",
            factory=factory or (lambda space_id, token: self.fake),
        )
        engine = IdmVtonEngine(self.remote, EngineConfig(timeout_s=timeout_s), transport=transport)
        pipeline = TryOnPipeline(
            engine,
            retry_attempts=retry_attempts,
            retry_base_delay_s=0.0,
            temp_dir=self.staging_dir,
        )
        app.dependency_overrides[get_tryon_pipeline] = lambda: pipeline
        app.dependency_overrides[get_remote_client] = lambda: self.remote
        return TestClient(app)

    def staged_files(self) -> List[Path]:
        return list(self.staging_dir.iterdir())


@pytest.fixture
def harness(tmp_path):
    yield ApiHarness(tmp_path)
    app.dependency_overrides.clear()
