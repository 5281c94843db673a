"""Tests for shipstack.services.pipeline module."""

from __future__ import annotations

import json
from pathlib import Path

from shipstack.core.config import AppConfig, Config
from shipstack.core.result import Err, Ok
from shipstack.core.workload import ManifestError
from shipstack.core.workspace import MARKER_NAME, Workspace
from shipstack.output.console import MockConsole
from shipstack.services.compose import ADDONS_STACK_ID, ADDONS_TEMPLATE_URL_PARAM
from shipstack.services.overrides import ProtectedFieldError
from shipstack.services.pipeline import (
    ArtifactStoreRequired,
    PackageWriteError,
    Synthesis,
    synthesize,
    write_package,
)
from shipstack.services.release.model import RollbackPolicy

from .test_assets import FakeStore

MANIFEST = """\
name: api
image:
  location: registry.example.com/api:1.2.3
  port: 8080
cpu: 256
memory: 512
count: 1
"""

QUEUE_ADDON = """\
Parameters:
  App: {Type: String}
  Env: {Type: String}
  Name: {Type: String}
Resources:
  JobsQueue:
    Type: AWS::SQS::Queue
Outputs:
  JobsQueueUrl:
    Value: !Ref JobsQueue
"""

WORKER_PATCH = """\
- op: add
  path: /Resources/Service/Properties/DesiredCount
  value: 3
- op: add
  path: /Resources/Worker
  value:
    Type: AWS::Lambda::Function
    Properties:
      Handler: index.h
      Code: lambdas/worker
"""

CONFIG = Config(app=AppConfig(name="shop"))


def _workspace(
    tmp_path: Path,
    *,
    addons: str | None = None,
    patches: str | None = None,
) -> Workspace:
    tmp_path.mkdir(parents=True, exist_ok=True)
    (tmp_path / MARKER_NAME).touch()
    workload = tmp_path / "api"
    workload.mkdir()
    (workload / "manifest.yml").write_text(MANIFEST, encoding="utf-8")
    if addons is not None:
        (workload / "addons").mkdir()
        (workload / "addons" / "queue.yml").write_text(addons, encoding="utf-8")
    if patches is not None:
        (workload / "overrides").mkdir()
        (workload / "overrides" / "cfn.patches.yml").write_text(patches, encoding="utf-8")
    worker = workload / "lambdas" / "worker"
    worker.mkdir(parents=True)
    (worker / "index.py").write_text("def h(event, ctx):\n    return 1\n", encoding="utf-8")
    return Workspace(tmp_path)


def _synthesize(
    workspace: Workspace,
    *,
    store: FakeStore | None = None,
    rollback: RollbackPolicy = "auto",
) -> Synthesis:
    result = synthesize(
        workspace,
        "api",
        env="test",
        config=CONFIG,
        console=MockConsole(),
        store=store,
        rollback=rollback,
    )
    assert isinstance(result, Ok), result
    return result.value


class TestSynthesize:
    def test_plain_workload(self, tmp_path: Path) -> None:
        synthesis = _synthesize(_workspace(tmp_path))

        request = synthesis.request
        assert request.stack_name == "shop-test-api"
        assert request.rollback == "auto"
        assert request.parameters["ContainerImage"] == "registry.example.com/api:1.2.3"
        assert ADDONS_TEMPLATE_URL_PARAM not in request.parameters
        assert ADDONS_STACK_ID not in request.template.resources
        assert request.tags == {
            "shipstack-application": "shop",
            "shipstack-environment": "test",
            "shipstack-workload": "api",
        }
        assert synthesis.addons_template is None
        assert synthesis.bundle.is_empty

    def test_rollback_policy_is_carried(self, tmp_path: Path) -> None:
        synthesis = _synthesize(_workspace(tmp_path), rollback="disabled")
        assert synthesis.request.rollback == "disabled"

    def test_addons_are_hosted_in_the_store(self, tmp_path: Path) -> None:
        store = FakeStore()
        synthesis = _synthesize(_workspace(tmp_path, addons=QUEUE_ADDON), store=store)

        url = synthesis.request.parameters[ADDONS_TEMPLATE_URL_PARAM]
        assert url.startswith("https://artifacts.s3.amazonaws.com/manual/assets/api/")
        assert url.endswith(".addons.yml")
        [key] = store.puts
        assert url.endswith(key)
        assert synthesis.addons_template is not None
        assert store.objects[key].decode("utf-8") == synthesis.addons_template.dump_yaml()
        assert ADDONS_STACK_ID in synthesis.request.template.resources

    def test_addons_without_store(self, tmp_path: Path) -> None:
        synthesis = _synthesize(_workspace(tmp_path, addons=QUEUE_ADDON))

        assert synthesis.addons_template is not None
        assert "JobsQueue" in synthesis.addons_template.resources
        assert ADDONS_TEMPLATE_URL_PARAM not in synthesis.request.parameters

    def test_patches_and_assets(self, tmp_path: Path) -> None:
        store = FakeStore()
        console = MockConsole()
        result = synthesize(
            _workspace(tmp_path, patches=WORKER_PATCH),
            "api",
            env="test",
            config=CONFIG,
            console=console,
            store=store,
        )

        assert isinstance(result, Ok)
        plain = result.value.request.template.to_plain()
        resources = plain["Resources"]
        assert resources["Service"]["Properties"]["DesiredCount"] == 3
        code = resources["Worker"]["Properties"]["Code"]
        assert code["S3Bucket"] == "artifacts"
        assert code["S3Key"].startswith("manual/assets/api/")
        assert store.puts == [code["S3Key"]]
        assert console.find("Applied 2 patch rule(s)")

    def test_local_paths_are_kept_without_store(self, tmp_path: Path) -> None:
        synthesis = _synthesize(_workspace(tmp_path, patches=WORKER_PATCH))

        plain = synthesis.request.template.to_plain()
        assert plain["Resources"]["Worker"]["Properties"]["Code"] == "lambdas/worker"

    def test_required_store_for_assets(self, tmp_path: Path) -> None:
        result = synthesize(
            _workspace(tmp_path, patches=WORKER_PATCH),
            "api",
            env="test",
            config=CONFIG,
            console=MockConsole(),
            require_store=True,
        )

        assert result == Err(ArtifactStoreRequired("api", "stack resources reference local files"))

    def test_required_store_for_addons(self, tmp_path: Path) -> None:
        result = synthesize(
            _workspace(tmp_path, addons=QUEUE_ADDON),
            "api",
            env="test",
            config=CONFIG,
            console=MockConsole(),
            require_store=True,
        )

        assert result == Err(ArtifactStoreRequired("api", "the addons template must be hosted"))

    def test_missing_manifest(self, tmp_path: Path) -> None:
        workspace = _workspace(tmp_path)
        result = synthesize(
            workspace, "web", env="test", config=CONFIG, console=MockConsole()
        )

        assert isinstance(result, Err)
        assert isinstance(result.error, ManifestError)

    def test_protected_patch_stops_before_publishing(self, tmp_path: Path) -> None:
        store = FakeStore()
        patches = WORKER_PATCH + (
            "- op: replace\n"
            "  path: /Resources/TaskDefinition/Properties/Family\n"
            "  value: other\n"
        )
        result = synthesize(
            _workspace(tmp_path, patches=patches),
            "api",
            env="test",
            config=CONFIG,
            console=MockConsole(),
            store=store,
        )

        assert isinstance(result, Err)
        assert isinstance(result.error, ProtectedFieldError)
        assert store.puts == []


class TestWritePackage:
    def test_writes_template_and_parameters(self, tmp_path: Path) -> None:
        synthesis = _synthesize(_workspace(tmp_path / "ws"))
        out = tmp_path / "infrastructure"

        result = write_package(synthesis, out)

        assert isinstance(result, Ok)
        artifacts = result.value
        assert artifacts.template_path == out / "api-test.stack.yml"
        assert artifacts.addons_path is None
        assert artifacts.template_path.read_text(encoding="utf-8") == (
            synthesis.request.template.dump_yaml()
        )
        doc = json.loads(artifacts.parameters_path.read_text(encoding="utf-8"))
        assert doc["Parameters"]["WorkloadName"] == "api"
        assert list(doc["Parameters"]) == sorted(doc["Parameters"])
        assert doc["Tags"]["shipstack-workload"] == "api"

    def test_addons_file_is_referenced_by_name(self, tmp_path: Path) -> None:
        synthesis = _synthesize(_workspace(tmp_path / "ws", addons=QUEUE_ADDON))
        out = tmp_path / "infrastructure"

        result = write_package(synthesis, out)

        assert isinstance(result, Ok)
        assert result.value.addons_path == out / "api-test.addons.stack.yml"
        assert result.value.addons_path.is_file()
        doc = json.loads(result.value.parameters_path.read_text(encoding="utf-8"))
        assert doc["Parameters"][ADDONS_TEMPLATE_URL_PARAM] == "api-test.addons.stack.yml"

    def test_hosted_addons_url_is_kept(self, tmp_path: Path) -> None:
        synthesis = _synthesize(_workspace(tmp_path / "ws", addons=QUEUE_ADDON), store=FakeStore())

        result = write_package(synthesis, tmp_path / "out")

        assert isinstance(result, Ok)
        doc = json.loads(result.value.parameters_path.read_text(encoding="utf-8"))
        assert doc["Parameters"][ADDONS_TEMPLATE_URL_PARAM].startswith("https://")

    def test_unwritable_output(self, tmp_path: Path) -> None:
        synthesis = _synthesize(_workspace(tmp_path / "ws"))
        blocker = tmp_path / "infrastructure"
        blocker.write_text("not a directory", encoding="utf-8")

        result = write_package(synthesis, blocker)

        assert isinstance(result, Err)
        assert isinstance(result.error, PackageWriteError)
        assert result.error.path == blocker
