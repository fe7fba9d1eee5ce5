"""
Utils Package

Contains utility functions:
- prompt_loader: PromptManager for loading packaged prompt files
- json_parser: Locating and parsing the JSON object in model replies
"""

from moneybird_agent.utils.prompt_loader import PromptManager
from moneybird_agent.utils.json_parser import extract_json_object, find_json_span

__all__ = [
    "PromptManager",
    "extract_json_object",
    "find_json_span",
]
