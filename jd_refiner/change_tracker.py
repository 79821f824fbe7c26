# jd_refiner/change_tracker.py
"""
Changed-path detection and change summaries for analysis documents.

Documents are plain JSON trees. Both sides are classified into one of four
node kinds (null, scalar, sequence, mapping) and walked with the *new* document
driving the traversal:

    * both null or equal          -> nothing
    * exactly one side null       -> the current path changed
    * new side is a sequence      -> the whole sequence is one unit; it changed
                                     unless the old side is a sequence with the
                                     same (order-sensitive) serialization
    * new side is a mapping       -> recurse into every key of the new side
    * otherwise (scalar)          -> changed if the values differ

Paths are dotted ("roles.0.skills"); the root path is never emitted.
"""

import json
import re
from typing import Any, NamedTuple

NULL = "null"
SCALAR = "scalar"
SEQUENCE = "sequence"
MAPPING = "mapping"


class ChangeSummary(NamedTuple):
    sections: list[str]
    summary: str


NO_CHANGES_MESSAGE = "No changes were made to the analysis."


def node_kind(value: Any) -> str:
    if value is None:
        return NULL
    if isinstance(value, (list, tuple)):
        return SEQUENCE
    if isinstance(value, dict):
        return MAPPING
    return SCALAR


def _serialize(value: Any) -> str:
    # key order matters, as it does for the documents the model sends back
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def _scalars_equal(old: Any, new: Any) -> bool:
    # JSON semantics: true is not 1 and "1" is not 1
    if isinstance(old, bool) or isinstance(new, bool):
        return isinstance(old, bool) and isinstance(new, bool) and old == new
    if isinstance(old, (int, float)) and isinstance(new, (int, float)):
        return old == new
    return type(old) is type(new) and old == new


def _join(path: str, key: Any) -> str:
    return f"{path}.{key}" if path else str(key)


def _collect_changes(old: Any, new: Any, path: str, out: list[str]) -> None:
    old_kind = node_kind(old)
    new_kind = node_kind(new)

    if old_kind == NULL or new_kind == NULL:
        if old_kind != new_kind and path:
            out.append(path)
        return

    if new_kind == SEQUENCE:
        if old_kind != SEQUENCE or _serialize(old) != _serialize(new):
            if path:
                out.append(path)
        return

    if new_kind == MAPPING:
        old_map = old if old_kind == MAPPING else {}
        for key, child in new.items():
            _collect_changes(old_map.get(key), child, _join(path, key), out)
        return

    if not _scalars_equal(old, new) and path:
        out.append(path)


def deduplicate_paths(paths: list[str]) -> list[str]:
    """
    Keep only the outermost paths: if "roles" and "roles.0.skills" are both
    present, "roles" absorbs the child. Shorter paths come first.
    """
    kept: list[str] = []
    for path in sorted(paths, key=len):
        if path in kept:
            continue
        if any(path.startswith(parent + ".") for parent in kept):
            continue
        kept.append(path)
    return kept


def identify_changes(old_analysis: Any, new_analysis: Any) -> list[str]:
    changes: list[str] = []
    _collect_changes(old_analysis, new_analysis, "", changes)
    return deduplicate_paths(changes)


def humanize_section(section: str) -> str:
    """'service_recommendation' -> 'Service Recommendation'"""
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), section.replace("_", " "))


def summarize_changes(changed_sections: list[str]) -> ChangeSummary:
    if not changed_sections:
        return ChangeSummary([], NO_CHANGES_MESSAGE)

    groups: dict[str, list[str]] = {}
    for path in changed_sections:
        groups.setdefault(path.split(".")[0], []).append(path)

    sections = [humanize_section(s) for s in groups]

    lines = []
    for name, paths in zip(sections, groups.values()):
        if len(paths) == 1:
            lines.append(f"• **{name}**: Updated")
        else:
            lines.append(f"• **{name}**: {len(paths)} changes made")

    count = len(groups)
    header = f"These sections had been updated: {count} section{'s' if count > 1 else ''} based on your feedback:"
    return ChangeSummary(sections, header + "\n\n" + "\n".join(lines))
