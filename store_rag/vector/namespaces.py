"""
Namespace naming and agent access rules.

Every store owns one namespace per data type. The store profile lives in
``store-{id}``; every other type lives in ``store-{id}-{type}``. Because the
store id is part of the name, a namespace can never be reused by another tenant.
"""

from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from store_rag.ingestion.records import ALL_DATA_TYPES, DataType

NAMESPACE_PREFIX = "store"


def namespace_for(store_id: str, data_type: DataType) -> str:
    """Namespace holding ``data_type`` documents of ``store_id``."""
    if not store_id:
        raise ValueError("store_id is required")
    data_type = DataType(data_type)
    if data_type is DataType.STORE:
        return f"{NAMESPACE_PREFIX}-{store_id}"
    return f"{NAMESPACE_PREFIX}-{store_id}-{data_type.value}"


def store_namespaces(store_id: str) -> Dict[DataType, str]:
    """All namespaces a store can own, keyed by data type."""
    return {data_type: namespace_for(store_id, data_type) for data_type in ALL_DATA_TYPES}


def parse_namespace(namespace: str) -> Optional[Tuple[str, DataType]]:
    """Inverse of ``namespace_for``; None for names this service did not create."""
    if not namespace.startswith(f"{NAMESPACE_PREFIX}-"):
        return None
    rest = namespace[len(NAMESPACE_PREFIX) + 1:]
    for data_type in ALL_DATA_TYPES:
        suffix = f"-{data_type.value}"
        if data_type is not DataType.STORE and rest.endswith(suffix) and len(rest) > len(suffix):
            return rest[:-len(suffix)], data_type
    return (rest, DataType.STORE) if rest else None


AGENT_ACCESS: Dict[DataType, FrozenSet[str]] = {
    DataType.STORE: frozenset({
        "orchestrator", "analytics", "customer_service", "marketing", "product_manager",
    }),
    DataType.PRODUCTS: frozenset({
        "product_manager", "customer_service", "analytics", "orchestrator",
    }),
    DataType.ORDERS: frozenset({"analytics", "customer_service", "orchestrator"}),
    DataType.CUSTOMERS: frozenset({"customer_service", "marketing", "analytics"}),
    DataType.ANALYTICS: frozenset({"analytics", "orchestrator"}),
    DataType.CONVERSATIONS: frozenset({"orchestrator", "customer_service"}),
}


def data_types_for_agent(agent_type: Optional[str],
                         requested: Optional[Iterable[DataType]] = None) -> List[DataType]:
    """
    Data types ``agent_type`` may read, narrowed to ``requested`` if given.

    Agents missing from the access table are not restricted.
    """
    candidates = [DataType(dt) for dt in requested] if requested else list(ALL_DATA_TYPES)
    known_agents = set().union(*AGENT_ACCESS.values())
    if not agent_type or agent_type not in known_agents:
        return candidates
    return [dt for dt in candidates if agent_type in AGENT_ACCESS[dt]]
