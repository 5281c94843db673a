"""Local asset publishing.

Some resource properties accept a location in the object store (function
code, state machine definitions, Glue scripts...). In a template they may
instead name a local file or directory, relative to the workload directory:

    Resources:
      Handler:
        Type: AWS::Lambda::Function
        Properties:
          Code: lambdas/handler

``publish_assets`` uploads such paths under a content-addressed key and
rewrites the property to the uploaded location:

    Code:
      S3Bucket: my-artifacts
      S3Key: manual/assets/api/4f1c...

Directories are always zipped. Zipped assets are hashed over each file's
relative name, mode and content, so re-zipping unchanged content yields the
same key and the upload is skipped by the store.
"""

from __future__ import annotations

import hashlib
import io
import stat
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from zipfile import ZIP_DEFLATED, ZipFile, ZipInfo

from shipstack.core.config import (
    DEFAULT_ASSET_KEY_PREFIX,
    DEFAULT_UPLOAD_CONCURRENCY,
    UploadRuleConfig,
)
from shipstack.core.result import Err, Ok, Result
from shipstack.output.console import ConsoleProtocol, Style
from shipstack.template.document import StackTemplate
from shipstack.template.tree import MapNode, Node, ScalarNode, from_plain

__all__ = [
    "UploadRule",
    "DEFAULT_UPLOAD_RULES",
    "rules_from_config",
    "AssetReference",
    "ObjectLocator",
    "RemoteObjectStore",
    "StoreError",
    "AssetNotFoundError",
    "PublishError",
    "AssetError",
    "is_local_path",
    "find_asset_references",
    "publish_assets",
    "publish_bytes",
]


@dataclass(frozen=True, slots=True)
class UploadRule:
    """A resource property that may name a local path.

    Without ``bucket_property``/``key_property`` the property is rewritten
    to an ``s3://bucket/key`` string; with them, to a two-key mapping.
    """

    resource_type: str
    property_path: tuple[str, ...]
    bucket_property: str | None = None
    key_property: str | None = None
    force_zip: bool = False


DEFAULT_UPLOAD_RULES: tuple[UploadRule, ...] = (
    UploadRule("AWS::ApiGateway::RestApi", ("BodyS3Location",), "Bucket", "Key"),
    UploadRule("AWS::AppSync::FunctionConfiguration", ("RequestMappingTemplateS3Location",)),
    UploadRule("AWS::AppSync::FunctionConfiguration", ("ResponseMappingTemplateS3Location",)),
    UploadRule("AWS::AppSync::GraphQLSchema", ("DefinitionS3Location",)),
    UploadRule("AWS::AppSync::Resolver", ("RequestMappingTemplateS3Location",)),
    UploadRule("AWS::AppSync::Resolver", ("ResponseMappingTemplateS3Location",)),
    UploadRule("AWS::CodeCommit::Repository", ("Code", "S3"), "Bucket", "Key", force_zip=True),
    UploadRule(
        "AWS::ElasticBeanstalk::ApplicationVersion", ("SourceBundle",), "S3Bucket", "S3Key"
    ),
    UploadRule("AWS::Glue::Job", ("Command", "ScriptLocation")),
    UploadRule("AWS::Lambda::Function", ("Code",), "S3Bucket", "S3Key", force_zip=True),
    UploadRule("AWS::Lambda::LayerVersion", ("Content",), "S3Bucket", "S3Key", force_zip=True),
    UploadRule("AWS::StepFunctions::StateMachine", ("DefinitionS3Location",), "Bucket", "Key"),
)


def rules_from_config(extra: Iterable[UploadRuleConfig]) -> tuple[UploadRule, ...]:
    """Default rules followed by the ones declared in config.toml."""
    return DEFAULT_UPLOAD_RULES + tuple(
        UploadRule(
            resource_type=r.resource_type,
            property_path=tuple(r.property.split(".")),
            bucket_property=r.bucket_property,
            key_property=r.key_property,
            force_zip=r.force_zip,
        )
        for r in extra
    )


@dataclass(frozen=True, slots=True)
class AssetReference:
    logical_id: str
    property_path: tuple[str, ...]
    local_path: str
    rule: UploadRule

    @property
    def property_name(self) -> str:
        return ".".join(self.property_path)


@dataclass(frozen=True, slots=True)
class ObjectLocator:
    bucket: str
    key: str

    @property
    def s3_uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"

    def https_url(self, region: str | None = None) -> str:
        endpoint = f"s3.{region}.amazonaws.com" if region else "s3.amazonaws.com"
        return f"https://{self.bucket}.{endpoint}/{self.key}"


class StoreError(Exception):
    """Transport failure raised by a RemoteObjectStore."""


class RemoteObjectStore(Protocol):
    def put_object_if_absent(self, key: str, data: bytes) -> ObjectLocator:
        """Store data under key unless the key already exists.

        Raises:
            StoreError: If the store cannot be reached or refuses the write.
        """
        ...


@dataclass(frozen=True, slots=True)
class AssetNotFoundError:
    logical_id: str
    property: str
    path: Path

    @property
    def message(self) -> str:
        return f"{self.logical_id}.{self.property}: local path not found: {self.path}"


@dataclass(frozen=True, slots=True)
class PublishError:
    """Upload (or local read) failure. Not retried here."""

    key: str
    source: str
    message: str

    @property
    def description(self) -> str:
        return f"cannot publish {self.source} as {self.key}: {self.message}"


AssetError = AssetNotFoundError | PublishError


# -----------------------------------------------------------------------------
# Scanning
# -----------------------------------------------------------------------------


def is_local_path(value: str) -> bool:
    """Anything that is not empty and not already a remote URL."""
    if not value:
        return False
    return not value.startswith(("s3://", "http://", "https://"))


def _get_path(node: Node | None, path: Sequence[str]) -> Node | None:
    for segment in path:
        if not isinstance(node, MapNode):
            return None
        node = node.get(segment)
    return node


def _set_path(node: MapNode, path: Sequence[str], value: Node) -> MapNode:
    head = path[0]
    if len(path) == 1:
        return node.with_entry(head, value)
    return node.with_entry(head, _set_path(node.get_map(head), path[1:], value))


def find_asset_references(
    template: StackTemplate,
    rules: Sequence[UploadRule] = DEFAULT_UPLOAD_RULES,
) -> list[AssetReference]:
    """Properties of the template that currently hold a local path."""
    refs: list[AssetReference] = []
    for logical_id, resource in template.resources.items():
        resource_type = template.resource_type(logical_id)
        for rule in rules:
            if rule.resource_type != resource_type:
                continue
            value = _get_path(resource, ("Properties", *rule.property_path))
            if (
                isinstance(value, ScalarNode)
                and isinstance(value.value, str)
                and is_local_path(value.value)
            ):
                refs.append(AssetReference(logical_id, rule.property_path, value.value, rule))
    return refs


# -----------------------------------------------------------------------------
# Archiving
# -----------------------------------------------------------------------------

# Fixed entry timestamp so identical content zips to identical bytes.
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


@dataclass(frozen=True, slots=True)
class _Artifact:
    data: bytes
    digest: str


def _file_artifact(path: Path) -> _Artifact:
    data = path.read_bytes()
    return _Artifact(data=data, digest=hashlib.sha256(data).hexdigest())


def _zip_artifact(root: Path) -> _Artifact:
    if root.is_dir():
        files = [(p, p.relative_to(root).as_posix()) for p in sorted(root.rglob("*")) if p.is_file()]
    else:
        files = [(root, root.name)]

    h = hashlib.sha256()
    buf = io.BytesIO()
    with ZipFile(buf, "w", compression=ZIP_DEFLATED) as zf:
        for path, name in files:
            mode = path.stat().st_mode
            content = path.read_bytes()
            h.update(f"{name} {stat.filemode(mode)}".encode())
            h.update(content)

            info = ZipInfo(name, date_time=_ZIP_EPOCH)
            info.compress_type = ZIP_DEFLATED
            info.external_attr = (mode & 0xFFFF) << 16
            zf.writestr(info, content)
    return _Artifact(data=buf.getvalue(), digest=h.hexdigest())


# -----------------------------------------------------------------------------
# Publishing
# -----------------------------------------------------------------------------


def _object_key(key_prefix: str, digest: str, suffix: str = "") -> str:
    prefix = key_prefix.strip("/")
    return f"{prefix}/{digest}{suffix}" if prefix else f"{digest}{suffix}"


def _rewritten(ref: AssetReference, locator: ObjectLocator) -> Node:
    rule = ref.rule
    if rule.bucket_property and rule.key_property:
        return from_plain({rule.bucket_property: locator.bucket, rule.key_property: locator.key})
    return ScalarNode(locator.s3_uri)


def publish_bytes(
    store: RemoteObjectStore,
    data: bytes,
    *,
    key_prefix: str = DEFAULT_ASSET_KEY_PREFIX,
    suffix: str = "",
) -> Result[ObjectLocator, PublishError]:
    """Publish an in-memory artifact under its content hash."""
    key = _object_key(key_prefix, hashlib.sha256(data).hexdigest(), suffix)
    try:
        return Ok(store.put_object_if_absent(key, data))
    except StoreError as e:
        return Err(PublishError(key=key, source="<memory>", message=str(e)))


def publish_assets(
    template: StackTemplate,
    store: RemoteObjectStore,
    *,
    base_dir: Path,
    rules: Sequence[UploadRule] = DEFAULT_UPLOAD_RULES,
    key_prefix: str = DEFAULT_ASSET_KEY_PREFIX,
    max_workers: int = DEFAULT_UPLOAD_CONCURRENCY,
    console: ConsoleProtocol | None = None,
) -> Result[StackTemplate, AssetError]:
    """Upload every local path the template references and rewrite it.

    Returns a new template; the input is left untouched. Each distinct
    content hash is uploaded once per call.
    """
    refs = find_asset_references(template, rules)
    if not refs:
        return Ok(template)

    keys: dict[AssetReference, str] = {}
    pending: dict[str, tuple[bytes, str]] = {}
    for ref in refs:
        path = Path(ref.local_path)
        if not path.is_absolute():
            path = base_dir / path
        if not path.exists():
            return Err(AssetNotFoundError(ref.logical_id, ref.property_name, path))
        try:
            artifact = (
                _zip_artifact(path) if path.is_dir() or ref.rule.force_zip else _file_artifact(path)
            )
        except OSError as e:
            return Err(PublishError(key="", source=str(path), message=str(e)))
        key = _object_key(key_prefix, artifact.digest)
        keys[ref] = key
        pending.setdefault(key, (artifact.data, ref.local_path))

    def upload(key: str) -> ObjectLocator:
        data, source = pending[key]
        if console is not None:
            console.print(f"  upload {source} -> {key}", Style.DIM)
        return store.put_object_if_absent(key, data)

    locators: dict[str, ObjectLocator] = {}
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        futures = {key: executor.submit(upload, key) for key in pending}
        for key, future in futures.items():
            try:
                locators[key] = future.result()
            except StoreError as e:
                return Err(PublishError(key=key, source=pending[key][1], message=str(e)))

    root = template.root
    for ref in refs:
        locator = locators[keys[ref]]
        root = _set_path(
            root,
            ("Resources", ref.logical_id, "Properties", *ref.property_path),
            _rewritten(ref, locator),
        )

    if console is not None:
        console.print(f"Published {len(pending)} asset(s) for {len(refs)} reference(s)", Style.DIM)
    return Ok(StackTemplate(root))
