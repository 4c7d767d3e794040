"""Tests for the FalkorDB result conversion layer (db_result_helpers.py).

These tests validate the helper functions that convert FalkorDB's
list-of-lists result format into row dicts and into the node/edge
collections returned by execute_query.

Tests use FakeQueryResult/FakeNode/FakeEdge/FakePath to simulate FalkorDB
driver output without requiring the falkordb package to be installed.
"""

import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from db_result_helpers import _unwrap_value, result_single, result_to_dicts, result_to_graph_data, result_value


# =============================================================================
# Simulate FalkorDB QueryResult for testing helper methods
# =============================================================================

class FakeQueryResult:
    """Simulates FalkorDB's QueryResult object.

    FalkorDB returns:
      - header: list of (type_int, column_name) tuples
      - result_set: list of lists (positional, NOT named dicts)
    """
    def __init__(self, header: list[tuple], result_set: list[list]):
        self._header = header
        self._result_set = result_set

    @property
    def header(self):
        return self._header

    @property
    def result_set(self):
        return self._result_set


class FakeNode:
    """Simulates FalkorDB's Node object returned for full node queries."""
    def __init__(self, node_id, labels, properties):
        self.id = node_id
        self.labels = labels
        self.properties = properties

    def __repr__(self):
        return f"Node({self.labels}, {self.properties})"


class FakeEdge:
    """Simulates FalkorDB's Edge object returned for full relationship queries."""
    def __init__(self, edge_id, relation, src_id, dest_id, properties):
        self.id = edge_id
        self.relation = relation
        self.src_node = src_id
        self.dest_node = dest_id
        self.properties = properties


class FakePath:
    """Simulates FalkorDB's Path object (MATCH path = ... RETURN path)."""
    def __init__(self, nodes, edges):
        self._nodes = nodes
        self._edges = edges

    def nodes(self):
        return self._nodes

    def edges(self):
        return self._edges


def _banking_nodes():
    industry = FakeNode(1, ["Industry"], {"name": "Banking"})
    sector = FakeNode(2, ["Sector"], {"name": "Retail Banking"})
    project = FakeNode(3, ["ProjectOpportunity"], {"title": "Fraud Radar", "embedding": [0.1, 0.2]})
    return industry, sector, project


# =============================================================================
# TESTS: Basic dict conversion from list-of-lists
# =============================================================================

class TestResultToDictConversion:

    def test_empty_result_returns_empty_list(self):
        assert result_to_dicts(FakeQueryResult(header=[], result_set=[])) == []

    def test_none_result_set_returns_empty_list(self):
        assert result_to_dicts(FakeQueryResult(header=[], result_set=None)) == []

    def test_object_without_result_set(self):
        assert result_to_dicts(object()) == []

    def test_single_row_multiple_columns(self):
        """RETURN i.name AS industry, sectors"""
        result = FakeQueryResult(
            header=[(1, "industry"), (1, "sectors")],
            result_set=[["Banking", ["Retail Banking", "Commercial Banking"]]],
        )
        assert result_to_dicts(result) == [
            {"industry": "Banking", "sectors": ["Retail Banking", "Commercial Banking"]},
        ]

    def test_multiple_rows(self):
        result = FakeQueryResult(
            header=[(1, "name"), (1, "labels")],
            result_set=[
                ["Banking", ["Industry"]],
                ["Retail Banking", ["Sector"]],
                ["Fraud Radar", ["ProjectOpportunity"]],
            ],
        )
        rows = result_to_dicts(result)
        assert len(rows) == 3
        assert rows[2] == {"name": "Fraud Radar", "labels": ["ProjectOpportunity"]}

    def test_null_values_preserved(self):
        """OPTIONAL MATCH columns may be NULL."""
        result = FakeQueryResult(header=[(1, "name"), (1, "sector")], result_set=[["Banking", None]])
        assert result_to_dicts(result)[0]["sector"] is None

    def test_numeric_types_preserved(self):
        result = FakeQueryResult(header=[(1, "count"), (1, "score")], result_set=[[150, 0.92]])
        row = result_to_dicts(result)[0]
        assert isinstance(row["count"], int)
        assert isinstance(row["score"], float)


class TestSingleRecordConversion:

    def test_empty_result_returns_none(self):
        assert result_single(FakeQueryResult(header=[], result_set=[])) is None

    def test_multiple_rows_returns_first(self):
        result = FakeQueryResult(header=[(1, "name")], result_set=[["first"], ["second"]])
        assert result_single(result) == {"name": "first"}

    def test_result_value(self):
        result = FakeQueryResult(header=[(1, "count")], result_set=[[42]])
        assert result_value(result, "count") == 42
        assert result_value(result, "missing", 0) == 0

    def test_result_value_default_on_empty(self):
        assert result_value(FakeQueryResult(header=[], result_set=[]), "count", 0) == 0


# =============================================================================
# TESTS: Node/Edge object handling
# =============================================================================

class TestNodeEdgeConversion:
    """``RETURN n`` yields Node objects, not dicts."""

    def test_node_converted_to_dict(self):
        node = FakeNode(42, ["Sector"], {"name": "Retail Banking", "description": "Consumer accounts"})
        rows = result_to_dicts(FakeQueryResult(header=[(1, "n")], result_set=[[node]]))
        assert rows[0]["n"]["name"] == "Retail Banking"
        assert rows[0]["n"]["_labels"] == ["Sector"]
        assert rows[0]["n"]["_id"] == 42

    def test_edge_converted_to_dict(self):
        edge = FakeEdge(99, "HAS_OPPORTUNITY", 1, 2, {"weight": 0.5})
        rows = result_to_dicts(FakeQueryResult(header=[(1, "r")], result_set=[[edge]]))
        assert rows[0]["r"]["_type"] == "HAS_OPPORTUNITY"
        assert rows[0]["r"]["weight"] == 0.5

    def test_scalars_pass_through(self):
        assert _unwrap_value("Banking") == "Banking"
        assert _unwrap_value(None) is None


# =============================================================================
# TESTS: Graph data for execute_query
# =============================================================================

class TestResultToGraphData:

    def test_nodes_and_edges(self):
        industry, sector, _ = _banking_nodes()
        edge = FakeEdge(7, "HAS_SECTOR", 1, 2, {})
        result = FakeQueryResult(
            header=[(1, "i"), (1, "r"), (1, "s")],
            result_set=[[industry, edge, sector]],
        )
        graph = result_to_graph_data(result)

        assert graph["nodes"] == [
            {"id": "1", "label": "Banking", "group": "Industry", "properties": {"name": "Banking"}},
            {"id": "2", "label": "Retail Banking", "group": "Sector", "properties": {"name": "Retail Banking"}},
        ]
        assert graph["edges"] == [
            {"id": "1-2-HAS_SECTOR", "from": "1", "to": "2", "label": "HAS_SECTOR", "properties": {}},
        ]

    def test_duplicates_across_rows_are_collapsed(self):
        industry, sector, project = _banking_nodes()
        result = FakeQueryResult(
            header=[(1, "i"), (1, "s")],
            result_set=[[industry, sector], [industry, project]],
        )
        graph = result_to_graph_data(result)
        assert [n["id"] for n in graph["nodes"]] == ["1", "2", "3"]

    def test_title_is_used_when_name_missing_and_embedding_dropped(self):
        _, _, project = _banking_nodes()
        graph = result_to_graph_data(FakeQueryResult(header=[(1, "p")], result_set=[[project]]))
        node = graph["nodes"][0]
        assert node["label"] == "Fraud Radar"
        assert "embedding" not in node["properties"]

    def test_unnamed_node(self):
        node = FakeNode(5, [], {"code": "X1"})
        graph = result_to_graph_data(FakeQueryResult(header=[(1, "n")], result_set=[[node]]))
        assert graph["nodes"][0]["label"] == "Unnamed"
        assert graph["nodes"][0]["group"] == "Unknown"

    def test_paths_are_expanded(self):
        industry, sector, project = _banking_nodes()
        path = FakePath(
            [industry, sector, project],
            [FakeEdge(7, "HAS_SECTOR", 1, 2, {}), FakeEdge(8, "HAS_OPPORTUNITY", 2, 3, {})],
        )
        result = FakeQueryResult(header=[(1, "path"), (1, "path_length")], result_set=[[path, 2]])
        graph = result_to_graph_data(result)
        assert len(graph["nodes"]) == 3
        assert [e["label"] for e in graph["edges"]] == ["HAS_SECTOR", "HAS_OPPORTUNITY"]

    def test_collected_lists_are_flattened(self):
        industry, sector, project = _banking_nodes()
        result = FakeQueryResult(header=[(1, "i"), (1, "sectors")], result_set=[[industry, [sector, project]]])
        assert len(result_to_graph_data(result)["nodes"]) == 3

    def test_scalar_only_result_has_no_graph(self):
        result = FakeQueryResult(header=[(1, "name")], result_set=[["Banking"], ["Insurance"]])
        assert result_to_graph_data(result) == {"nodes": [], "edges": []}

    def test_custom_name_properties(self):
        node = FakeNode(1, ["Role"], {"name": "Engineer", "role_title": "ML Engineer"})
        graph = result_to_graph_data(FakeQueryResult(header=[(1, "n")], result_set=[[node]]), ("role_title",))
        assert graph["nodes"][0]["label"] == "ML Engineer"
