"""
Asset materialization.

Writes a ``ResourceGraph`` to a working directory in the layout the
template include expects::

    cloudformation-template.json
    stacks/<Stack>.json
    resolvers/<Type.field[.slot.index].req|res.vtl>
    functions/<name>.zip
    schema.graphql

Asset placeholders in the templates are rewritten to locations built from
the ``S3DeploymentBucket`` and ``S3DeploymentRootKey`` template parameters.
Rewriting a directory with the same graph produces the same bytes; files that
are unchanged are left alone and files the graph no longer produces are
removed from the managed subdirectories.
"""

import io
import json
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Union

import structlog

from .exceptions import AssetWriteError
from .resource_graph import (
    ASSET_REFERENCE,
    FunctionArtifact,
    ResourceGraph,
    function_asset_path,
    resolver_asset_path,
    stack_asset_path,
)

logger = structlog.get_logger(__name__)

ROOT_TEMPLATE_FILE = "cloudformation-template.json"
SCHEMA_FILE = "schema.graphql"
MANAGED_DIRECTORIES = ("stacks", "resolvers", "functions")

# zip entries get a fixed timestamp and mode so packages are byte-stable
ZIP_DATE_TIME = (1980, 1, 1, 0, 0, 0)
ZIP_FILE_MODE = 0o644


@dataclass
class StackAssets:
    """Where a materialized graph was written and how to include it."""

    output_directory: Path
    root_template_path: Path
    stack_template_paths: Dict[str, Path] = field(default_factory=dict)
    files: List[Path] = field(default_factory=list)
    changed: List[Path] = field(default_factory=list)
    removed: List[Path] = field(default_factory=list)
    parameters: Dict[str, str] = field(default_factory=dict)


def package_function(artifact: FunctionArtifact) -> bytes:
    """Zip a function's source with fixed metadata."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        info = zipfile.ZipInfo(artifact.file_name, date_time=ZIP_DATE_TIME)
        info.compress_type = zipfile.ZIP_DEFLATED
        info.external_attr = ZIP_FILE_MODE << 16
        archive.writestr(info, artifact.code)
    return buffer.getvalue()


def _resolve_asset(reference: Dict[str, Any], known_paths: set, template: str) -> Dict[str, Any]:
    path = reference.get("Path")
    if path not in known_paths:
        raise AssetWriteError(
            str(path), f"Template {template} references asset '{path}', which the graph does not produce"
        )
    if reference.get("Form") == "key":
        return {"Fn::Join": ["/", [{"Ref": "S3DeploymentRootKey"}, path]]}
    return {
        "Fn::Join": [
            "",
            ["s3://", {"Ref": "S3DeploymentBucket"}, "/", {"Ref": "S3DeploymentRootKey"}, "/", path],
        ]
    }


def _rewrite_assets(node: Any, known_paths: set, template: str) -> Any:
    if isinstance(node, list):
        return [_rewrite_assets(item, known_paths, template) for item in node]
    if not isinstance(node, dict):
        return node
    if ASSET_REFERENCE in node:
        return _resolve_asset(node[ASSET_REFERENCE], known_paths, template)
    return {key: _rewrite_assets(value, known_paths, template) for key, value in node.items()}


def _template_bytes(template: Dict[str, Any]) -> bytes:
    return (json.dumps(template, indent=2) + "\n").encode("utf-8")


def _write_if_changed(path: Path, data: bytes) -> bool:
    try:
        if path.is_file() and path.read_bytes() == data:
            return False
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    except OSError as e:
        raise AssetWriteError(str(path), f"Unable to write asset {path}", cause=e) from e
    return True


def _prune(output_directory: Path, keep: set) -> List[Path]:
    removed = []
    for directory in MANAGED_DIRECTORIES:
        root = output_directory / directory
        if not root.is_dir():
            continue
        try:
            for path in sorted(root.rglob("*")):
                if path.is_file() and path not in keep:
                    path.unlink()
                    removed.append(path)
        except OSError as e:
            raise AssetWriteError(str(root), f"Unable to remove stale assets from {root}", cause=e) from e
    return removed


def materialize_assets(
    graph: ResourceGraph,
    output_directory: Union[str, Path],
    bucket_name: str,
    root_key: str,
) -> StackAssets:
    """Write the graph's templates, resolvers, functions and schema to disk.

    Args:
        graph: Resource graph from the transform orchestrator
        output_directory: Working directory; created if missing
        bucket_name: Value for the ``S3DeploymentBucket`` include parameter
        root_key: Value for the ``S3DeploymentRootKey`` include parameter

    Returns:
        StackAssets describing the written files

    Raises:
        AssetWriteError: If a file cannot be written or removed, or a
            template references an asset the graph does not produce
    """
    output_directory = Path(output_directory)
    contents: Dict[str, bytes] = {SCHEMA_FILE: graph.schema.encode("utf-8")}
    for key, code in graph.resolvers.items():
        contents[resolver_asset_path(key)] = code.encode("utf-8")
    for name, artifact in graph.functions.items():
        contents[function_asset_path(name)] = package_function(artifact)

    known_paths = set(contents) | {stack_asset_path(name) for name in graph.stacks}
    for name, template in graph.stacks.items():
        contents[stack_asset_path(name)] = _template_bytes(_rewrite_assets(template, known_paths, name))
    contents[ROOT_TEMPLATE_FILE] = _template_bytes(
        _rewrite_assets(graph.root_stack, known_paths, ROOT_TEMPLATE_FILE)
    )

    assets = StackAssets(
        output_directory=output_directory,
        root_template_path=output_directory / ROOT_TEMPLATE_FILE,
        stack_template_paths={name: output_directory / stack_asset_path(name) for name in graph.stacks},
        parameters={"S3DeploymentBucket": bucket_name, "S3DeploymentRootKey": root_key},
    )
    for relative_path, data in contents.items():
        path = output_directory / relative_path
        assets.files.append(path)
        if _write_if_changed(path, data):
            assets.changed.append(path)
    assets.removed = _prune(output_directory, set(assets.files))

    logger.info(
        "assets_materialized",
        directory=str(output_directory),
        files=len(assets.files),
        changed=len(assets.changed),
        removed=len(assets.removed),
    )
    return assets
