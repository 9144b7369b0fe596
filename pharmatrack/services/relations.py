"""
Relation expansion for API payloads.

Blueprints return plain dicts (often straight from the cache).  When a
client asks for related data (``?include=processes,creator``) these
helpers attach it through the request's ``Loaders`` so a page of N rows
costs one query per relation instead of N.
"""

from __future__ import annotations

LINE_INCLUDES = frozenset({"processes", "creator"})
PROCESS_INCLUDES = frozenset({"production_line", "creator"})


def parse_include(raw: str | None, allowed: frozenset) -> set[str]:
    if not raw:
        return set()
    return {part.strip() for part in raw.split(",") if part.strip() in allowed}


def _summary(user):
    return user.to_summary() if user is not None else None


def expand_production_lines(lines: list[dict], loaders, include) -> list[dict]:
    include = set(include or ())
    if not include or not lines:
        return lines

    children = creators = None
    # Queue every key before resolving any, so each relation is one batch.
    if "processes" in include:
        children = [loaders.processes_by_line.load(line["id"]) for line in lines]
    if "creator" in include:
        creators = [loaders.users.load(line["created_by"]) for line in lines]

    out = []
    for i, line in enumerate(lines):
        item = dict(line)
        if children is not None:
            item["processes"] = [p.to_dict() for p in children[i].get()]
        if creators is not None:
            item["creator"] = _summary(creators[i].get())
        out.append(item)
    return out


def expand_processes(processes: list[dict], loaders, include) -> list[dict]:
    include = set(include or ())
    if not include or not processes:
        return processes

    parents = creators = None
    if "production_line" in include:
        parents = [loaders.production_lines.load(p["production_line_id"]) for p in processes]
    if "creator" in include:
        creators = [loaders.users.load(p["created_by"]) for p in processes]

    out = []
    for i, proc in enumerate(processes):
        item = dict(proc)
        if parents is not None:
            parent = parents[i].get()
            item["production_line"] = parent.to_dict() if parent is not None else None
        if creators is not None:
            item["creator"] = _summary(creators[i].get())
        out.append(item)
    return out
