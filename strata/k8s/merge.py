"""Field-level structured merge for K8s manifests.

Overlays patch the base field by field (strategic-merge style) rather than
replacing whole objects:

- scalars: last-applied-wins
- mappings: merged recursively; a null value deletes the key,
  ``$patch: replace`` replaces the mapping, ``$patch: delete`` removes it
- lists of named objects (containers, volumes, env, ports, ...): merged
  item by item on their merge key, see LIST_MERGE_KEYS; other lists are replaced
- probes: a patch naming a handler (exec/httpGet/tcpSocket/grpc) drops every
  other handler, so a probe never ends up with two
- strategy: switching to ``type: Recreate`` drops ``rollingUpdate``
"""

import copy
import logging
from typing import Any, List, Optional, Sequence

from strata.core.errors import PatchApplyError
from strata.k8s.constants import LIST_MERGE_KEYS, PROBE_FIELDS, PROBE_HANDLERS
from strata.k8s.utils import resource_id

logger = logging.getLogger(__name__)

PATCH_DIRECTIVE = "$patch"


class _Delete:
    """Marker returned when a patch deletes the object it targets."""


_DELETE = _Delete()


def strategic_merge(base: Any, patch: Any) -> Any:
    """Merge patch into base and return the result.

    Neither argument is modified.

    Args:
        base: Original value (mapping, list or scalar)
        patch: Patch value

    Returns:
        Merged value. If the patch is a mapping carrying ``$patch: delete``
        the result is None.
    """
    if isinstance(patch, dict):
        merged = _merge_mapping(base if isinstance(base, dict) else None, patch)
        return None if merged is _DELETE else merged
    return _clean(patch)


def _merge_mapping(base: Optional[dict], patch: dict) -> Any:
    directive = patch.get(PATCH_DIRECTIVE)
    if directive == "delete":
        return _DELETE
    if directive not in (None, "replace", "merge"):
        raise PatchApplyError(f"Unsupported {PATCH_DIRECTIVE} directive: {directive}")

    body = {k: v for k, v in patch.items() if k != PATCH_DIRECTIVE}
    if base is None or directive == "replace":
        return _clean(body)

    result = copy.deepcopy(base)
    for key, value in body.items():
        if value is None:
            result.pop(key, None)
            continue

        current = result.get(key)
        if key in PROBE_FIELDS and isinstance(value, dict) and isinstance(current, dict):
            _drop_other_handlers(current, value)
        if key == "strategy" and isinstance(value, dict) and isinstance(current, dict):
            if value.get("type") == "Recreate":
                current.pop("rollingUpdate", None)

        if isinstance(value, dict):
            merged = _merge_mapping(current if isinstance(current, dict) else None, value)
            if merged is _DELETE:
                result.pop(key, None)
            else:
                result[key] = merged
        elif isinstance(value, list) and key in LIST_MERGE_KEYS and isinstance(current, list):
            result[key] = _merge_list(current, value, LIST_MERGE_KEYS[key])
        else:
            result[key] = _clean(value)
    return result


def _drop_other_handlers(current_probe: dict, patch_probe: dict) -> None:
    named = [h for h in PROBE_HANDLERS if h in patch_probe and patch_probe[h] is not None]
    if not named:
        return
    for handler in PROBE_HANDLERS:
        if handler not in named and handler in current_probe:
            logger.debug(f"Probe handler {handler} replaced by {named[0]}")
            current_probe.pop(handler)


def _merge_list(base: list, patch: list, merge_keys: Sequence[str]) -> list:
    if not merge_keys or not all(isinstance(item, dict) for item in patch):
        return _clean(patch)

    if any(item.get(PATCH_DIRECTIVE) == "replace" and len(item) == 1 for item in patch):
        return _clean([item for item in patch if PATCH_DIRECTIVE not in item or len(item) > 1])

    result = copy.deepcopy(base)
    for item in patch:
        key = next((k for k in merge_keys if k in item), None)
        if key is None:
            result.append(_clean(item))
            continue

        index = _index_of(result, key, item[key])
        if item.get(PATCH_DIRECTIVE) == "delete":
            if index is not None:
                result.pop(index)
            continue

        if index is None:
            result.append(_clean(item))
        else:
            result[index] = _merge_mapping(result[index], item)
    return result


def _index_of(items: list, key: str, value: Any) -> Optional[int]:
    for i, existing in enumerate(items):
        if isinstance(existing, dict) and existing.get(key) == value:
            return i
    return None


def _clean(value: Any) -> Any:
    """Deep copy a patch value, dropping nulls and merge directives."""
    cleaned = copy.deepcopy(value)
    _strip_directives(cleaned)
    return cleaned


def _strip_directives(value: Any) -> None:
    if isinstance(value, dict):
        for key in list(value.keys()):
            if key == PATCH_DIRECTIVE or value[key] is None:
                del value[key]
            else:
                _strip_directives(value[key])
    elif isinstance(value, list):
        for i in reversed(range(len(value))):
            item = value[i]
            if isinstance(item, dict) and item.get(PATCH_DIRECTIVE) == "delete":
                del value[i]
            else:
                _strip_directives(item)


def apply_strategic_patch(documents: List[dict], patch_doc: dict) -> List[dict]:
    """Merge a patch document into the manifest it targets.

    The target is the document with the same ``kind`` and ``metadata.name``
    (and ``metadata.namespace`` when the patch sets one).

    Args:
        documents: Current manifest documents (not modified)
        patch_doc: Patch document identifying its target

    Returns:
        New list of documents with the patch applied

    Raises:
        PatchApplyError: If the patch has no kind/name or no document matches
    """
    kind = patch_doc.get("kind")
    metadata = patch_doc.get("metadata") or {}
    name = metadata.get("name")
    if not kind or not name:
        raise PatchApplyError("Strategic merge patch must set kind and metadata.name", document=patch_doc)
    namespace = metadata.get("namespace")

    result = list(documents)
    for i, doc in enumerate(documents):
        doc_meta = doc.get("metadata") or {}
        if doc.get("kind") != kind or doc_meta.get("name") != name:
            continue
        if namespace is not None and doc_meta.get("namespace") not in (None, namespace):
            continue

        if patch_doc.get(PATCH_DIRECTIVE) == "delete":
            logger.debug(f"Deleting {resource_id(doc)}")
            result.pop(i)
        else:
            result[i] = strategic_merge(doc, patch_doc)
        return result

    raise PatchApplyError(f"No manifest matches patch target {kind}/{name}", document=patch_doc)
