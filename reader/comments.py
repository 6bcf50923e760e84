"""Nested comment threads from flat message rows."""

from __future__ import annotations

from typing import Iterable, Mapping


def build_comment_tree(messages: Iterable[Mapping]) -> list[dict]:
    """Turn flat messages (id, parent_id) into root nodes with nested `replies`.

    Each node is a copy of its message plus `replies: []`. A message whose
    parent_id is missing from the input becomes a root; nothing is dropped.
    Input order is kept among roots and within each replies list.
    """
    nodes: dict = {}
    ordered: list[dict] = []
    for message in messages:
        node = {**message, "replies": []}
        nodes[node["id"]] = node
        ordered.append(node)

    def in_cycle(node_id, parent_id) -> bool:
        seen = set()
        current = parent_id
        while current is not None and current in nodes and current not in seen:
            if current == node_id:
                return True
            seen.add(current)
            current = nodes[current].get("parent_id")
        return False

    roots: list[dict] = []
    for node in ordered:
        parent_id = node.get("parent_id")
        parent = nodes.get(parent_id) if parent_id is not None else None
        if parent is not None and not in_cycle(node["id"], parent_id):
            parent["replies"].append(node)
        else:
            roots.append(node)
    return roots


def count_comments(tree: list[dict]) -> int:
    return sum(1 + count_comments(node["replies"]) for node in tree)
