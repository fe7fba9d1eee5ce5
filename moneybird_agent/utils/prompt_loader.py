import sys
from pathlib import Path

from moneybird_agent.config.exception import AppException
from moneybird_agent.config.logger import setup_logger

logger = setup_logger("PromptManager", "prompt_manager.log")

PROMPTS_DIR = Path(__file__).parent.parent / "prompts"

DEFAULT_PROMPT = (
    "You are a Dutch bookkeeping assistant. "
    "Answer with a single JSON object and nothing else."
)


class PromptManager:
    def __init__(self, prompts_dir: Path = PROMPTS_DIR):
        self.prompts_dir = Path(prompts_dir)

    def load_prompt(self, name: str) -> str:
        """
        Load a system prompt by file name from the prompts directory.

        Args:
            name (str): File name (or absolute path) of the prompt.

        Returns:
            str: The prompt text. Returns a default prompt if the file is missing.
        """
        try:
            prompt_path = Path(name)
            if not prompt_path.is_absolute():
                prompt_path = self.prompts_dir / name

            if not prompt_path.exists():
                logger.warning(f"Prompt file not found: {prompt_path}. Using default prompt.")
                return DEFAULT_PROMPT

            with open(prompt_path, "r", encoding="utf-8") as file:
                prompt_text = file.read().strip()
                logger.debug(f"Prompt loaded from: {prompt_path}")
                return prompt_text

        except Exception as e:
            logger.error(f"Error while loading prompt file {name}: {e}")
            raise AppException(e, sys)
