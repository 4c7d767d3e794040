import logging
import os
import time
from typing import Optional

from dotenv import load_dotenv
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from db_result_helpers import result_to_dicts, result_to_graph_data

load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), "..", ".env"))

logger = logging.getLogger(__name__)

MAX_PATH_DEPTH = 5


class GraphConnection:
    """FalkorDB handle used by the task library.

    Supports the three things the orchestration core needs from a graph
    store: fuzzy node lookup by label + name, arbitrary read queries returning
    node/edge collections, and path finding between two named nodes.
    """

    def __init__(self, name_properties: tuple[str, ...] = ("name", "title")):
        self.host = os.getenv("FALKORDB_HOST", "localhost")
        self.port = int(os.getenv("FALKORDB_PORT", 6379))
        self.username = os.getenv("FALKORDB_USERNAME")
        self.password = os.getenv("FALKORDB_PASSWORD")
        self.graph_name = os.getenv("FALKORDB_GRAPH", "ai_catalog")
        self.name_properties = name_properties
        self.client = None
        self.graph = None

    def connect(self):
        if self.graph is None:
            from falkordb import FalkorDB

            kwargs = {
                "host": self.host,
                "port": self.port,
                "socket_timeout": 30,
                "socket_connect_timeout": 15,
            }
            if self.username:
                kwargs["username"] = self.username
            if self.password:
                kwargs["password"] = self.password
            self.client = FalkorDB(**kwargs)
            self.graph = self.client.select_graph(self.graph_name)
        return self.graph

    def warmup(self):
        """Pre-connect and run a trivial query. Call on server start."""
        t = time.time()
        try:
            self.verify_connection()
            logger.info(f"✓ FalkorDB connection warmed up in {time.time() - t:.2f}s")
        except Exception as e:
            logger.warning(f"⚠ FalkorDB warmup failed: {e}")

    def reconnect(self):
        """Force reconnection by dropping the existing client and creating a new one."""
        self.close()
        return self.connect()

    def close(self):
        if self.client is not None:
            try:
                self.client.connection.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing FalkorDB client: {e}")
        self.client = None
        self.graph = None

    def _execute_with_retry(self, query_func, max_retries=2):
        """Execute a query function with automatic retry on connection failure."""
        last_error = None
        for attempt in range(max_retries + 1):
            try:
                return query_func()
            except (RedisConnectionError, RedisTimeoutError) as e:
                last_error = e
                if attempt < max_retries:
                    # Connection is stale, reconnect and retry
                    self.reconnect()
                else:
                    raise
            except Exception as e:
                # Check if it's a connection-related error by message
                error_msg = str(e).lower()
                if "connection" in error_msg or "defunct" in error_msg:
                    last_error = e
                    if attempt < max_retries:
                        self.reconnect()
                    else:
                        raise
                else:
                    raise
        raise last_error

    def _read(self, cypher: str, params: Optional[dict] = None):
        def _query():
            graph = self.connect()
            return graph.ro_query(cypher, params=params or {})
        return self._execute_with_retry(_query)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def verify_connection(self) -> bool:
        rows = result_to_dicts(self._read("RETURN 1 AS test"))
        return bool(rows) and rows[0]["test"] == 1

    def get_node_count(self) -> int:
        rows = result_to_dicts(self._read("MATCH (n) RETURN count(n) AS count"))
        return rows[0]["count"] if rows else 0

    def get_relationship_count(self) -> int:
        rows = result_to_dicts(self._read("MATCH ()-[r]->() RETURN count(r) AS count"))
        return rows[0]["count"] if rows else 0

    # ------------------------------------------------------------------
    # Entity lookup
    # ------------------------------------------------------------------

    @staticmethod
    def _label_clause(label: Optional[str]) -> str:
        if label and label.isidentifier():
            return f":{label}"
        return ""

    def find_entity_exact(self, entity: str, label: Optional[str] = None, limit: int = 5) -> list[dict]:
        """Nodes whose name or title equals ``entity`` (case-insensitive)."""
        cypher = f"""
            MATCH (n{self._label_clause(label)})
            WHERE toLower(n.name) = toLower($entity) OR toLower(n.title) = toLower($entity)
            RETURN n, labels(n) AS labels
            LIMIT $limit
        """
        return result_to_dicts(self._read(cypher, {"entity": entity, "limit": limit}))

    def find_entity_candidates(self, entity: str, label: Optional[str] = None, limit: int = 10) -> list[dict]:
        """Nodes whose name/title contains ``entity`` or whose label contains it.

        Each row carries ``matched_field``: the name, title or label that matched.
        """
        cypher = f"""
            MATCH (n{self._label_clause(label)})
            WHERE toLower(n.name) CONTAINS toLower($entity)
               OR toLower(n.title) CONTAINS toLower($entity)
               OR any(l IN labels(n) WHERE toLower(l) CONTAINS toLower($entity))
            WITH n, labels(n) AS labels,
                 CASE
                   WHEN toLower(n.name) CONTAINS toLower($entity) THEN n.name
                   WHEN toLower(n.title) CONTAINS toLower($entity) THEN n.title
                   ELSE labels(n)[0]
                 END AS matched_field
            RETURN n, labels, matched_field
            ORDER BY size(matched_field) ASC
            LIMIT $limit
        """
        return result_to_dicts(self._read(cypher, {"entity": entity, "limit": limit}))

    def get_entity_names(self, label: Optional[str] = None, limit: int = 500) -> list[dict]:
        """All distinct names/titles (optionally for one label), for typo-tolerant matching."""
        cypher = f"""
            MATCH (n{self._label_clause(label)})
            WITH coalesce(n.name, n.title) AS name, labels(n) AS labels
            WHERE name IS NOT NULL
            RETURN DISTINCT name, labels
            LIMIT $limit
        """
        return result_to_dicts(self._read(cypher, {"limit": limit}))

    # ------------------------------------------------------------------
    # Queries and traversal
    # ------------------------------------------------------------------

    def run_read_query(self, cypher: str, params: Optional[dict] = None) -> dict:
        """Run an arbitrary read query and return node/edge collections."""
        result = self._read(cypher, params)
        graph_data = result_to_graph_data(result, self.name_properties)
        return {
            "graph_data": graph_data,
            "record_count": len(getattr(result, "result_set", None) or []),
        }

    def find_connection_paths(self, from_entity: str, to_entity: str, max_depth: int = 2, limit: int = 10) -> dict:
        """Shortest-first paths between two entities matched by name or label."""
        depth = max(1, min(int(max_depth or 2), MAX_PATH_DEPTH))
        cypher = f"""
            MATCH path = (a)-[*1..{depth}]-(b)
            WHERE (toLower(a.name) CONTAINS toLower($from_entity)
                   OR any(l IN labels(a) WHERE toLower(l) = toLower($from_entity)))
              AND (toLower(b.name) CONTAINS toLower($to_entity)
                   OR any(l IN labels(b) WHERE toLower(l) = toLower($to_entity)))
            RETURN path, length(path) AS path_length
            ORDER BY path_length
            LIMIT $limit
        """
        result = self._read(cypher, {"from_entity": from_entity, "to_entity": to_entity, "limit": limit})
        lengths = [row[1] for row in (getattr(result, "result_set", None) or [])]
        return {
            "graph_data": result_to_graph_data(result, self.name_properties),
            "path_lengths": lengths,
        }

    def find_shared_connections(self, label1: str, label2: str, limit: int = 20) -> dict:
        """Nodes that two schema labels both point at, e.g. PainPoints shared by Sector and Department."""
        if not (label1.isidentifier() and label2.isidentifier()):
            return {"graph_data": {"nodes": [], "edges": []}, "record_count": 0}
        cypher = f"""
            MATCH (a:{label1})-[r1]->(shared)<-[r2]-(b:{label2})
            RETURN a, r1, shared, r2, b
            LIMIT $limit
        """
        return self.run_read_query(cypher, {"limit": limit})

    def get_catalog_overview(self) -> list[dict]:
        """Industries with their sectors, plus sectors that hang off no industry."""
        industries = result_to_dicts(self._read("""
            MATCH (i:Industry)
            OPTIONAL MATCH (i)-[:HAS_SECTOR]->(s:Sector)
            WITH i, collect(DISTINCT s.name) AS sectors
            RETURN i.name AS industry, sectors
            ORDER BY industry
        """))
        standalone = result_to_dicts(self._read("""
            MATCH (s:Sector)
            OPTIONAL MATCH (i:Industry)-[:HAS_SECTOR]->(s)
            WITH s, count(i) AS parents
            WHERE parents = 0
            RETURN s.name AS sector
            ORDER BY sector
        """))
        overview = [{"industry": row["industry"], "sectors": row.get("sectors") or []} for row in industries]
        overview.extend({"industry": None, "sectors": [row["sector"]]} for row in standalone)
        return overview
