"""DeepSeek backend — OpenAI wire format plus ``reasoning_content`` deltas."""

from __future__ import annotations

from switchboard.providers.openai_compat import OpenAICompatibleClient

DEEPSEEK_CHAT = "deepseek-chat"
DEEPSEEK_REASONER = "deepseek-reasoner"


class DeepSeekClient(OpenAICompatibleClient):
    provider = "deepseek"
    DEFAULT_BASE_URL = "https://api.deepseek.com"
    API_KEY_ENV = "DEEPSEEK_API_KEY"
    reasoning_field = "reasoning_content"
