from pydantic_ai import Agent
from pydantic_ai.models.openai import OpenAIChatModel, OpenAIModelProfile
from pydantic_ai.providers.openai import OpenAIProvider
from pydantic_ai.settings import ModelSettings

from indexer.config import OPENROUTER_API_BASE

from .prompt import SYSTEM_PROMPT


def build_review_agent(
    model_name: str,
    api_key: str,
    max_tokens: int = 16384,
    timeout: float = 120.0,
) -> Agent[None, str]:
    return Agent(
        model=OpenAIChatModel(
            model_name=model_name,
            provider=OpenAIProvider(
                base_url=OPENROUTER_API_BASE,
                api_key=api_key,
            ),
            profile=OpenAIModelProfile(openai_supports_tool_choice_required=False),
        ),
        output_type=str,
        instructions=SYSTEM_PROMPT,
        model_settings=ModelSettings(max_tokens=max_tokens, temperature=0.2, timeout=timeout),
    )
