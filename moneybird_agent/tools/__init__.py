"""
Tools Package

Contains platform and document tooling:
- mcp_connection: Synchronous MCP session over streamable HTTP
- moneybird_client: Capability-negotiated bookkeeping platform client
- document_fetcher: Multi-source invoice document acquisition
- document_reader: PDF rendering and text extraction with OCR fallback
- fuzzy_matcher: Fuzzy ranking of contacts against supplier names
"""

from moneybird_agent.tools.mcp_connection import MCPConnection
from moneybird_agent.tools.moneybird_client import MoneybirdClient
from moneybird_agent.tools.document_fetcher import DocumentFetcher
from moneybird_agent.tools.document_reader import DocumentReader, is_pdf
from moneybird_agent.tools.fuzzy_matcher import FuzzyMatcher

__all__ = [
    "MCPConnection",
    "MoneybirdClient",
    "DocumentFetcher",
    "DocumentReader",
    "FuzzyMatcher",
    "is_pdf",
]
