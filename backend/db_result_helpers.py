"""FalkorDB result conversion helpers.

These functions convert FalkorDB's list-of-lists result format (QueryResult)
into the shapes the Catalog Assistant works with:

    rows  = result_to_dicts(result)            # list[dict], one per row
    row   = result_single(result)              # first row or None
    val   = result_value(result, "count", 0)   # single column of first row
    graph = result_to_graph_data(result)       # {"nodes": [...], "edges": [...]}

Node/Edge/Path detection uses duck-typing so this module never imports
falkordb itself; tests feed it light fakes.
"""

from __future__ import annotations


def _is_node(val) -> bool:
    return hasattr(val, 'properties') and hasattr(val, 'labels')


def _is_edge(val) -> bool:
    return hasattr(val, 'properties') and hasattr(val, 'relation')


def _is_path(val) -> bool:
    return callable(getattr(val, 'nodes', None)) and callable(getattr(val, 'edges', None))


def _unwrap_value(val):
    """Convert FalkorDB Node/Edge objects to plain dicts.

    FalkorDB returns Node/Edge objects when Cypher selects full nodes
    (e.g., RETURN n) instead of properties (e.g., RETURN n.name).
    """
    if val is None:
        return None
    if _is_node(val):
        return {"_id": val.id, "_labels": val.labels, **val.properties}
    if _is_edge(val):
        return {"_id": val.id, "_type": val.relation, **val.properties}
    return val


def result_to_dicts(result) -> list[dict]:
    """Convert a FalkorDB QueryResult to list[dict].

    Args:
        result: FalkorDB QueryResult with .header and .result_set attributes.

    Returns:
        List of dicts, one per row, with column names as keys.
    """
    if not hasattr(result, 'result_set') or not result.result_set:
        return []
    headers = [h[1] for h in result.header]
    rows = []
    for row in result.result_set:
        d = {}
        for i, h in enumerate(headers):
            d[h] = _unwrap_value(row[i])
        rows.append(d)
    return rows


def result_single(result) -> dict | None:
    """Extract first row as dict, or None if empty."""
    rows = result_to_dicts(result)
    return rows[0] if rows else None


def result_value(result, key: str, default=None):
    """Extract a single value from the first row.

    Args:
        result: FalkorDB QueryResult.
        key: Column name to extract.
        default: Value to return if no results or key missing.
    """
    row = result_single(result)
    if row is None:
        return default
    return row.get(key, default)


# =============================================================================
# Graph data (nodes + edges) for query results
# =============================================================================

def _node_display_name(properties: dict, name_properties: tuple[str, ...]) -> str:
    for prop in name_properties:
        if properties.get(prop):
            return str(properties[prop])
    return "Unnamed"


def _collect(item, nodes: dict, edges: dict, name_properties: tuple[str, ...]) -> None:
    if item is None:
        return
    if isinstance(item, (list, tuple)):
        for sub in item:
            _collect(sub, nodes, edges, name_properties)
        return
    if _is_path(item):
        for node in item.nodes():
            _collect(node, nodes, edges, name_properties)
        for edge in item.edges():
            _collect(edge, nodes, edges, name_properties)
        return
    if _is_node(item):
        node_id = str(item.id)
        if node_id not in nodes:
            properties = dict(item.properties or {})
            properties.pop("embedding", None)
            nodes[node_id] = {
                "id": node_id,
                "label": _node_display_name(properties, name_properties),
                "group": item.labels[0] if item.labels else "Unknown",
                "properties": properties,
            }
        return
    if _is_edge(item):
        src = str(getattr(item, 'src_node', ''))
        dest = str(getattr(item, 'dest_node', ''))
        edge_id = f"{src}-{dest}-{item.relation}"
        if edge_id not in edges:
            edges[edge_id] = {
                "id": edge_id,
                "from": src,
                "to": dest,
                "label": item.relation,
                "properties": dict(item.properties or {}),
            }


def result_to_graph_data(result, name_properties: tuple[str, ...] = ("name", "title")) -> dict:
    """Collect every Node, Edge and Path in a result into de-duplicated node/edge lists.

    Scalar columns (strings, numbers, maps) are ignored; they carry no graph
    structure.
    """
    nodes: dict[str, dict] = {}
    edges: dict[str, dict] = {}
    for row in getattr(result, 'result_set', None) or []:
        for value in row:
            _collect(value, nodes, edges, name_properties)
    return {"nodes": list(nodes.values()), "edges": list(edges.values())}
