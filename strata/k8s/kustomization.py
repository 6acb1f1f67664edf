"""Overlay loading from kustomization.yaml directories.

An overlay directory is turned into base documents plus an ordered list of
override fragments (Patches), so the resolver can check every fragment as it
is applied instead of only the final result.

Supported kustomization fields, applied in this order:

1. ``resources``: directories are built recursively into base documents;
   files become AddResource fragments
2. ``patchesStrategicMerge`` and ``patches`` (strategic merge; ``path`` or
   inline ``patch``, optional ``target`` kind/name)
3. ``images``
4. ``replicas``
5. ``namespace``
6. ``commonLabels`` and ``labels``
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from strata.core.errors import ResolutionError, UnknownEnvironmentError
from strata.core.schema.patch_dsl import Patch, PatchOp
from strata.k8s.constants import VALID_ENV_NAMES
from strata.k8s.patch_dsl import apply_k8s_patch
from strata.k8s.utils import load_documents

logger = logging.getLogger(__name__)

KUSTOMIZATION_FILENAMES = ("kustomization.yaml", "kustomization.yml", "Kustomization")


@dataclass
class Overlay:
    """A loaded overlay directory.

    Attributes:
        name: Directory name (e.g. "local")
        path: Overlay directory
        base: Documents built from the resource directories
        fragments: Override fragments, in application order
    """
    name: str
    path: Path
    base: List[dict] = field(default_factory=list)
    fragments: List[Patch] = field(default_factory=list)


def find_kustomization(path: Union[str, Path]) -> Path:
    """Return the kustomization file of a directory.

    Raises:
        ResolutionError: If the directory has no kustomization file
    """
    directory = Path(path)
    for filename in KUSTOMIZATION_FILENAMES:
        candidate = directory / filename
        if candidate.is_file():
            return candidate
    raise ResolutionError(f"No kustomization file in {directory}")


def load_overlay(path: Union[str, Path]) -> Overlay:
    """Load an overlay directory into base documents and fragments.

    Args:
        path: Directory containing a kustomization file

    Returns:
        Overlay with unapplied fragments

    Raises:
        ResolutionError: If the kustomization or a referenced file is missing
    """
    directory = Path(path)
    kustomization_file = find_kustomization(directory)
    documents = load_documents(kustomization_file.read_text(encoding="utf-8"))
    kustomization = documents[0] if documents else {}

    overlay = Overlay(name=directory.resolve().name, path=directory)

    for entry in kustomization.get("resources") or []:
        target = directory / str(entry)
        if target.is_dir():
            logger.debug(f"Building base {target}")
            overlay.base.extend(build(target))
        elif target.is_file():
            ops = [PatchOp("AddResource", {"document": doc}) for doc in _read_documents(target)]
            overlay.fragments.append(Patch(ops=ops, meta={"source": _rel(target, directory)}))
        else:
            raise ResolutionError(f"Resource {entry} not found", details=str(directory))

    for entry in kustomization.get("patchesStrategicMerge") or []:
        overlay.fragments.append(_merge_fragment(directory, {"path": entry}))
    for entry in kustomization.get("patches") or []:
        overlay.fragments.append(_merge_fragment(directory, entry))

    for image in kustomization.get("images") or []:
        args = {
            "name": image["name"],
            "new_name": image.get("newName"),
            "new_tag": str(image["newTag"]) if image.get("newTag") is not None else None,
            "digest": image.get("digest"),
        }
        overlay.fragments.append(
            Patch(ops=[PatchOp("EnsureImage", args)], meta={"source": f"images:{image['name']}"})
        )

    for replica in kustomization.get("replicas") or []:
        overlay.fragments.append(Patch(
            ops=[PatchOp("EnsureReplicas", {"name": replica["name"], "replicas": replica["count"]})],
            meta={"source": f"replicas:{replica['name']}"},
        ))

    if kustomization.get("namespace"):
        overlay.fragments.append(Patch(
            ops=[PatchOp("EnsureNamespace", {"namespace": kustomization["namespace"]})],
            meta={"source": "namespace"},
        ))

    label_ops = [
        PatchOp("EnsureLabel", {"key": k, "value": v, "scope": "all"})
        for k, v in (kustomization.get("commonLabels") or {}).items()
    ]
    for entry in kustomization.get("labels") or []:
        scope = "all" if entry.get("includeSelectors") else "metadata"
        label_ops.extend(
            PatchOp("EnsureLabel", {"key": k, "value": v, "scope": scope})
            for k, v in (entry.get("pairs") or {}).items()
        )
    if label_ops:
        overlay.fragments.append(Patch(ops=label_ops, meta={"source": "labels"}))

    return overlay


def build(path: Union[str, Path]) -> List[dict]:
    """Load an overlay and apply all of its fragments, without policy checks."""
    overlay = load_overlay(path)
    documents = overlay.base
    for fragment in overlay.fragments:
        documents = apply_k8s_patch(documents, fragment)
    return documents


def environment_for(path: Union[str, Path], environment: Optional[str] = None) -> str:
    """Map an overlay path (or an explicit tag) to an environment tag.

    Raises:
        UnknownEnvironmentError: If the tag is not a known environment
    """
    tag = environment or Path(path).resolve().name
    if tag not in VALID_ENV_NAMES:
        raise UnknownEnvironmentError(tag, list(VALID_ENV_NAMES))
    return tag


def _merge_fragment(directory: Path, entry: Union[str, dict]) -> Patch:
    if isinstance(entry, str):
        entry = {"path": entry}
    if entry.get("path"):
        source = directory / str(entry["path"])
        if not source.is_file():
            raise ResolutionError(f"Patch file {entry['path']} not found", details=str(directory))
        documents = _read_documents(source)
        label = _rel(source, directory)
    elif entry.get("patch"):
        documents = load_documents(str(entry["patch"]))
        label = "inline patch"
    else:
        raise ResolutionError("Patch entry needs a path or an inline patch", details=str(directory))

    target = entry.get("target") or {}
    ops = []
    for doc in documents:
        if target.get("kind") and not doc.get("kind"):
            doc["kind"] = target["kind"]
        if target.get("name"):
            doc.setdefault("metadata", {}).setdefault("name", target["name"])
        ops.append(PatchOp("StrategicMerge", {"patch": doc}))
    return Patch(ops=ops, meta={"source": label})


def _read_documents(path: Path) -> List[dict]:
    return load_documents(path.read_text(encoding="utf-8"))


def _rel(path: Path, directory: Path) -> str:
    try:
        return str(path.relative_to(directory))
    except ValueError:
        return str(path)
