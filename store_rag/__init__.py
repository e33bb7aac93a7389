"""
Store Knowledge RAG

Per-store retrieval knowledge for conversational commerce agents: connectors
pull catalog, orders, customers, analytics and conversations from a commerce
platform, the indexer writes them into per-store vector namespaces, and the
hybrid search engine serves them back to the agents.
"""

__version__ = "1.0.0"
__author__ = "Store Knowledge Team"

# Package imports for easier access
from store_rag.config.settings import settings

__all__ = ["settings"]
