"""Render node trees as compact indented outlines."""

import io

from workflowy_cache.models.node import NodeTree


def _child_hint(count: int) -> str:
    noun = "child" if count == 1 else "children"
    return f" ({count} {noun})"


def format_tree_compact(nodes: list[NodeTree], indent_level: int = 0) -> str:
    """Render trees as an indented bullet list.

    Nodes with children are annotated ``(N children)`` whether or not they
    were expanded, so a depth-limited node can be told apart from a leaf.
    Completed nodes are rendered as ``[x]`` items and notes follow the name.
    """
    out = io.StringIO()
    _write_nodes(out, nodes, indent_level)
    return out.getvalue().rstrip("\n")


def _write_nodes(out: io.StringIO, nodes: list[NodeTree], indent_level: int) -> None:
    indent = "  " * indent_level
    for node in nodes:
        prefix = "- [x] " if node.completed else "- "
        lines = node.name.split("\n")
        line = f"{indent}{prefix}{lines[0]}"
        if node.children_count > 0:
            line += _child_hint(node.children_count)
        if node.note and node.note.strip():
            line += f": {' '.join(node.note.split())}"
        out.write(line + "\n")
        for extra in lines[1:]:
            out.write(f"{indent}  {extra}\n")

        if node.children:
            _write_nodes(out, node.children, indent_level + 1)


def render_node_compact(tree: NodeTree) -> str:
    """Render a single node heading followed by its expanded children."""
    out = f"**{tree.name}**"
    if tree.children_count > 0:
        out += _child_hint(tree.children_count)
    if tree.note:
        out += f"\n\n> {tree.note}"
    if tree.children:
        out += "\n\n" + format_tree_compact(tree.children)
    elif tree.children_count == 0:
        out += "\n\n(empty)"
    return out


def format_instruction_tree(root: NodeTree) -> str | None:
    """Render a node's note and subtree as plain instruction text, or None if empty."""
    lines: list[str] = []
    if root.note and root.note.strip():
        lines.append(root.note.strip())
        lines.append("")

    def walk(nodes: list[NodeTree], indent: int) -> None:
        for n in nodes:
            lines.append("  " * indent + "- " + n.name)
            if n.note and n.note.strip():
                lines.append("  " * (indent + 1) + n.note.strip())
            if n.children:
                walk(n.children, indent + 1)

    walk(root.children or [], 0)
    text = "\n".join(lines).strip()
    return text or None
