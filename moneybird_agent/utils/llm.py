import os
from typing import Any, Dict, List, Optional

from langchain_core.messages import BaseMessage
from langchain_groq import ChatGroq

from moneybird_agent.config.settings import Settings
from moneybird_agent.utils.json_parser import extract_json_object

DEFAULT_MODEL = "openai/gpt-oss-120b"
DEFAULT_VISION_MODEL = "meta-llama/llama-4-scout-17b-16e-instruct"


def create_llm(
    settings: Optional[Settings] = None,
    model: Optional[str] = None,
    temperature: float = 0.0,
) -> ChatGroq:
    """Groq chat model configured from settings (or the environment)."""
    api_key = settings.groq_api_key if settings else os.getenv("GROQ_API_KEY")
    model_name = model or (settings.llm_model if settings else DEFAULT_MODEL)
    return ChatGroq(
        model=model_name,
        temperature=temperature,
        groq_api_key=api_key,
    )


def create_vision_llm(settings: Optional[Settings] = None) -> ChatGroq:
    model_name = settings.vision_model if settings else DEFAULT_VISION_MODEL
    return create_llm(settings, model=model_name, temperature=0.1)


def invoke_for_json(llm, messages: List[BaseMessage]) -> Dict[str, Any]:
    """Call the model and parse the first JSON object in its reply."""
    response = llm.invoke(messages)
    return extract_json_object(getattr(response, "content", response))
