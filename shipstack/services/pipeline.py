"""Workload synthesis: manifest and workspace files to a deployment request.

Stages run in order and stop at the first error, before any control plane
call:

    manifest -> addons bundle -> compose -> patch rules -> asset publishing

Publishing needs an object store. Without one (``package`` without
``--upload-assets``) local paths are left as they are and the addons
template is returned for the caller to write next to the stack template.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from shipstack.core.config import Config
from shipstack.core.result import Err, Ok, Result
from shipstack.core.workload import ManifestError, WorkloadConfig, load_workload_config
from shipstack.core.workspace import Workspace
from shipstack.output.console import ConsoleProtocol, Style
from shipstack.services.addons import (
    AddonBundle,
    AddonError,
    bundle,
    discover_fragments,
    load_parameter_values,
)
from shipstack.services.assets import (
    AssetError,
    RemoteObjectStore,
    find_asset_references,
    publish_assets,
    publish_bytes,
    rules_from_config,
)
from shipstack.services.compose import ADDONS_TEMPLATE_URL_PARAM, compose, stack_parameters
from shipstack.services.overrides import OverrideError, apply_patches, load_patch_rules
from shipstack.services.release.model import DeploymentRequest, RollbackPolicy
from shipstack.template.document import StackTemplate

__all__ = [
    "Synthesis",
    "PackageArtifacts",
    "ArtifactStoreRequired",
    "PackageWriteError",
    "PipelineError",
    "synthesize",
    "write_package",
]


@dataclass(frozen=True, slots=True)
class ArtifactStoreRequired:
    """Something must be published but no artifact bucket is configured."""

    workload: str
    reason: str


@dataclass(frozen=True, slots=True)
class PackageWriteError:
    path: Path
    message: str


PipelineError = ManifestError | AddonError | OverrideError | AssetError | ArtifactStoreRequired


@dataclass(frozen=True, slots=True)
class Synthesis:
    workload: WorkloadConfig
    bundle: AddonBundle
    request: DeploymentRequest
    # The nested addons template as published (or to be written), if any.
    addons_template: StackTemplate | None = None


@dataclass(frozen=True, slots=True)
class PackageArtifacts:
    template_path: Path
    parameters_path: Path
    addons_path: Path | None = None


def _stack_tags(workload: WorkloadConfig) -> dict[str, str]:
    return {
        "shipstack-application": workload.app,
        "shipstack-environment": workload.env,
        "shipstack-workload": workload.name,
    }


def synthesize(
    workspace: Workspace,
    workload_name: str,
    *,
    env: str,
    config: Config,
    console: ConsoleProtocol,
    store: RemoteObjectStore | None = None,
    require_store: bool = False,
    rollback: RollbackPolicy = "auto",
) -> Result[Synthesis, PipelineError]:
    """Build the deployment request for one workload in one environment.

    With ``require_store`` a missing store is an error as soon as anything
    has to be published.
    """
    manifest = load_workload_config(
        workspace.manifest_path(workload_name), app=config.app.name, env=env
    )
    if isinstance(manifest, Err):
        return manifest
    workload = manifest.value
    base_dir = workspace.workload_dir(workload_name)
    rules = rules_from_config(config.assets.rules)
    key_prefix = f"{config.assets.key_prefix.rstrip('/')}/{workload.name}"

    def publish(template: StackTemplate, what: str) -> Result[StackTemplate, PipelineError]:
        if store is None:
            if require_store and find_asset_references(template, rules):
                return Err(
                    ArtifactStoreRequired(workload.name, f"{what} reference local files")
                )
            return Ok(template)
        return publish_assets(
            template,
            store,
            base_dir=base_dir,
            rules=rules,
            key_prefix=key_prefix,
            max_workers=config.deploy.upload_concurrency,
            console=console,
        )

    # 1. addons
    addons_dir = workspace.addons_dir(workload_name)
    fragments = discover_fragments(addons_dir)
    if isinstance(fragments, Err):
        return fragments
    values = load_parameter_values(addons_dir)
    if isinstance(values, Err):
        return values
    bundled = bundle(fragments.value, parameter_values=values.value)
    if isinstance(bundled, Err):
        return bundled
    addons = bundled.value
    if not addons.is_empty:
        console.print(f"Bundled addons: {', '.join(addons.fragments)}", Style.DIM)

    addons_template: StackTemplate | None = None
    addons_url: str | None = None
    if not addons.is_empty:
        published_addons = publish(addons.template, "addons")
        if isinstance(published_addons, Err):
            return published_addons
        addons_template = published_addons.value
        if store is not None:
            hosted = publish_bytes(
                store,
                addons_template.dump_yaml().encode("utf-8"),
                key_prefix=key_prefix,
                suffix=".addons.yml",
            )
            if isinstance(hosted, Err):
                return hosted
            addons_url = hosted.value.https_url(config.deploy.region)
        elif require_store:
            return Err(
                ArtifactStoreRequired(workload.name, "the addons template must be hosted")
            )

    # 2. compose
    composed = compose(workload, addons)

    # 3. patch rules
    patch_rules = load_patch_rules(workspace.patches_path(workload_name))
    if isinstance(patch_rules, Err):
        return patch_rules
    patched = apply_patches(composed, patch_rules.value)
    if isinstance(patched, Err):
        return patched
    if patch_rules.value:
        console.print(f"Applied {len(patch_rules.value)} patch rule(s)", Style.DIM)

    # 4. assets
    final = publish(patched.value, "stack resources")
    if isinstance(final, Err):
        return final

    return Ok(
        Synthesis(
            workload=workload,
            bundle=addons,
            request=DeploymentRequest(
                stack_name=workload.stack_name,
                template=final.value,
                parameters=stack_parameters(workload, addons_template_url=addons_url),
                rollback=rollback,
                tags=_stack_tags(workload),
            ),
            addons_template=addons_template,
        )
    )


def _parameters_document(parameters: Mapping[str, str], tags: Mapping[str, str]) -> str:
    doc = {"Parameters": dict(sorted(parameters.items())), "Tags": dict(sorted(tags.items()))}
    return json.dumps(doc, indent=2) + "\n"


def write_package(
    synthesis: Synthesis, output_dir: Path
) -> Result[PackageArtifacts, PackageWriteError]:
    """Write ``<workload>-<env>.stack.yml`` and ``<workload>-<env>.params.json``.

    The addons template, when present, goes to ``<workload>-<env>.addons.stack.yml``.
    """
    workload = synthesis.workload
    stem = f"{workload.name}-{workload.env}"
    template_path = output_dir / f"{stem}.stack.yml"
    parameters_path = output_dir / f"{stem}.params.json"
    addons_path = (
        output_dir / f"{stem}.addons.stack.yml" if synthesis.addons_template is not None else None
    )

    request = synthesis.request
    parameters = dict(request.parameters)
    if addons_path is not None:
        # Without an object store the nested template is referenced by file name.
        parameters.setdefault(ADDONS_TEMPLATE_URL_PARAM, addons_path.name)
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        template_path.write_text(request.template.dump_yaml(), encoding="utf-8")
        parameters_path.write_text(
            _parameters_document(parameters, request.tags), encoding="utf-8"
        )
        if addons_path is not None and synthesis.addons_template is not None:
            addons_path.write_text(synthesis.addons_template.dump_yaml(), encoding="utf-8")
    except OSError as e:
        return Err(PackageWriteError(path=output_dir, message=str(e)))

    return Ok(
        PackageArtifacts(
            template_path=template_path,
            parameters_path=parameters_path,
            addons_path=addons_path,
        )
    )
