"""
Moneybird Invoice Agent - Main Source Package

This package contains the core components for automated purchase invoice processing:
- agents: Detection, extraction, contact resolution, validation, classification,
  transaction matching, confidence gating, booking and alerting stages
- config: Settings, logging and exception handling
- graph: LangGraph workflow and state management
- tools: Platform client, document retrieval/reading and fuzzy matching
- storage: SQLite state store and supplier category memory
- notifications: Email, Telegram and WhatsApp dispatch plus daily summaries
- reports: Quarterly BTW (VAT) report
"""

__version__ = "1.0.0"
