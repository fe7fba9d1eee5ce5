from moneybird_agent.graph.state import AgentState, create_initial_state, merge_state

__all__ = ["AgentState", "create_initial_state", "merge_state"]
