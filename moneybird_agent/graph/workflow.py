from langgraph.graph import StateGraph, END
from langchain_core.runnables import RunnableConfig
from typing import Callable, Dict, Optional
import time
import sys

from moneybird_agent.graph.state import AgentState, DECISION_FIELDS, create_initial_state, merge_state
from moneybird_agent.agents.detection_agent import DetectionAgent
from moneybird_agent.agents.completeness_agent import CompletenessAgent
from moneybird_agent.agents.extraction_agent import ExtractionAgent
from moneybird_agent.agents.contact_resolution_agent import ContactResolutionAgent
from moneybird_agent.agents.validation_agent import ValidationAgent
from moneybird_agent.agents.classification_agent import ClassificationAgent
from moneybird_agent.agents.transaction_matching_agent import TransactionMatchingAgent
from moneybird_agent.agents.confidence_gate import ConfidenceGateAgent, AUTO_BOOK
from moneybird_agent.agents.booking_agent import BookingAgent
from moneybird_agent.agents.alert_agent import AlertAgent
from moneybird_agent.config.settings import Settings, load_settings
from moneybird_agent.config.logger import setup_logger
from moneybird_agent.config.exception import AppException
from moneybird_agent.notifications.dispatcher import NotificationDispatcher
from moneybird_agent.notifications.summary import build_workflow_summary
from moneybird_agent.storage.category_memory import CategoryMemory
from moneybird_agent.storage.state_store import StateStore
from moneybird_agent.tools.mcp_connection import MCPConnection
from moneybird_agent.tools.moneybird_client import MoneybirdClient

# Initialize logger
logger = setup_logger("InvoiceProcessingWorkflow", "workflow.log")


class InvoiceProcessingWorkflow:
    """LangGraph workflow processing one purchase invoice per run"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[StateStore] = None,
        llm=None,
        vision_llm=None,
        notifier: Optional[NotificationDispatcher] = None,
        platform_factory: Optional[Callable] = None,
    ):
        try:
            logger.info("Initializing InvoiceProcessingWorkflow")
            self.settings = settings or load_settings()
            self.store = store or StateStore(self.settings.database_path)
            self.notifier = notifier or NotificationDispatcher.from_settings(self.settings)
            self.platform_factory = platform_factory or self._default_platform

            self.detection_agent = DetectionAgent(self.store)
            self.completeness_agent = CompletenessAgent()
            self.extraction_agent = ExtractionAgent(llm=llm, vision_llm=vision_llm, settings=self.settings)
            self.contact_agent = ContactResolutionAgent(self.store, llm=llm, settings=self.settings)
            self.validation_agent = ValidationAgent(llm=llm, settings=self.settings)
            self.classification_agent = ClassificationAgent(CategoryMemory(self.store), llm=llm, settings=self.settings)
            self.matching_agent = TransactionMatchingAgent(llm=llm, settings=self.settings)
            self.gate_agent = ConfidenceGateAgent.from_settings(self.settings)
            self.booking_agent = BookingAgent(self.store)
            self.alert_agent = AlertAgent(
                self.store,
                notifier=self.notifier,
                amount_threshold=self.settings.amount_review_threshold,
            )

            self.workflow = self._build_graph()
            logger.info("InvoiceProcessingWorkflow initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize InvoiceProcessingWorkflow: {e}")
            raise AppException(e, sys)

    def _default_platform(self) -> MCPConnection:
        return MCPConnection(self.settings.mcp_server_url, self.settings.mcp_auth_token)

    def _build_graph(self) -> StateGraph:
        """Build the LangGraph workflow"""
        logger.debug("Building LangGraph workflow")

        graph = StateGraph(AgentState)

        graph.add_node("detect", self._stage("detection_agent", self.detection_agent.run, needs_client=True))
        graph.add_node("check_completeness", self._stage("completeness_agent", self.completeness_agent.run))
        graph.add_node("extract", self._stage("extraction_agent", self.extraction_agent.run, needs_client=True))
        graph.add_node("resolve_contact", self._stage("contact_resolution_agent", self.contact_agent.run, needs_client=True))
        graph.add_node("validate", self._stage("validation_agent", self.validation_agent.run))
        graph.add_node("classify", self._stage("classification_agent", self.classification_agent.run, needs_client=True))
        graph.add_node("match_transaction", self._stage("transaction_matching_agent", self.matching_agent.run, needs_client=True))
        graph.add_node("gate", self._stage("confidence_gate", self.gate_agent.run))
        graph.add_node("auto_book", self._stage("booking_agent", self.booking_agent.run, needs_client=True))
        graph.add_node("alert", self._stage("alert_agent", self.alert_agent.run))

        graph.set_entry_point("detect")

        graph.add_conditional_edges(
            "detect",
            self._route_after_detection,
            {"check_completeness": "check_completeness", "alert": "alert"},
        )
        graph.add_conditional_edges(
            "check_completeness",
            self._route_after_completeness,
            {"extract": "extract", "resolve_contact": "resolve_contact", "alert": "alert"},
        )
        graph.add_edge("extract", "resolve_contact")
        graph.add_edge("resolve_contact", "validate")
        graph.add_edge("validate", "classify")
        graph.add_edge("classify", "match_transaction")
        graph.add_edge("match_transaction", "gate")
        graph.add_conditional_edges(
            "gate",
            self._route_after_gate,
            {"auto_book": "auto_book", "alert": "alert"},
        )
        graph.add_conditional_edges(
            "auto_book",
            self._route_after_booking,
            {"alert": "alert", "end": END},
        )
        graph.add_edge("alert", END)

        logger.debug("LangGraph workflow built successfully")
        return graph.compile()

    def _stage(self, name: str, run: Callable[..., Dict], needs_client: bool = False):
        """Wrap an agent as a graph node that records timing in the execution trace."""

        def node(state: AgentState, config: RunnableConfig) -> Dict:
            logger.info(f"Running {name}")
            start = time.time()
            try:
                if needs_client:
                    update = run(state, config["configurable"]["client"])
                else:
                    update = run(state)
            except Exception as e:
                # Stages report failures through state; the chain carries on to the gate.
                logger.error(f"{name} raised unexpectedly: {e}")
                update = {"error": f"{name} failed: {e}"}
            duration = time.time() - start

            update = dict(update or {})
            entry = {
                "duration_ms": duration * 1000,
                "status": "failed" if update.get("error") else "success",
            }
            if update.get("error"):
                entry["error"] = update["error"]
            for field in DECISION_FIELDS:
                if update.get(field) is not None:
                    entry["confidence"] = update[field].confidence

            trace = dict(state.get("agent_execution_trace") or {})
            trace[name] = entry
            update["agent_execution_trace"] = trace

            logger.info(f"{name} completed in {duration*1000:.2f}ms")
            return update

        return node

    def _route_after_detection(self, state: AgentState) -> str:
        if state.get("error") or state.get("invoice") is None:
            return "alert"
        return "check_completeness"

    def _route_after_completeness(self, state: AgentState) -> str:
        if state.get("error") or state.get("invoice") is None:
            return "alert"
        if state.get("missing_fields"):
            logger.debug(f"Missing fields {state['missing_fields']}, extracting from document")
            return "extract"
        return "resolve_contact"

    def _route_after_gate(self, state: AgentState) -> str:
        if state.get("error"):
            logger.warning(f"Routing to alert because of error: {state['error']}")
            return "alert"
        if state.get("action") == AUTO_BOOK:
            return "auto_book"
        return "alert"

    def _route_after_booking(self, state: AgentState) -> str:
        return "alert" if state.get("error") else "end"

    def run(self, document_path: Optional[str] = None) -> Dict:
        """Process the next unprocessed invoice and return the run summary"""

        logger.info("=" * 60)
        logger.info("Starting invoice processing run")
        logger.info("=" * 60)

        start_time = time.time()
        client = None
        final_state = None

        try:
            with self.platform_factory() as connection:
                client = MoneybirdClient(
                    connection,
                    administration_id=self.settings.administration_id,
                    access_token=self.settings.rest_token,
                    api_base=self.settings.moneybird_api_base,
                )
                final_state = self.workflow.invoke(
                    create_initial_state(document_path),
                    config={"configurable": {"client": client}},
                )
        except Exception as e:
            if final_state is not None:
                logger.warning(f"Closing the platform connection failed: {e}")
            elif client is None:
                final_state = self._alert_connection_failure(document_path, e)
            else:
                logger.error(f"Workflow execution failed: {e}")
                raise AppException(e, sys)

        duration = time.time() - start_time
        summary = build_workflow_summary(
            final_state,
            amount_threshold=self.settings.amount_review_threshold,
            duration_seconds=duration,
        )

        logger.info("=" * 60)
        logger.info(f"Processing complete: {summary.status} ({duration:.2f}s)")
        logger.info("=" * 60)

        return summary.model_dump()

    def _alert_connection_failure(self, document_path: Optional[str], error: Exception) -> AgentState:
        """No platform session: the run goes straight to the alert stage."""
        logger.error(f"Platform connection failed: {error}")
        state = merge_state(create_initial_state(document_path), {
            "error": f"Platform connection failed: {error}",
            "current_stage": "detect",
        })
        alert = self._stage("alert_agent", self.alert_agent.run)
        return merge_state(state, alert(state, {}))
