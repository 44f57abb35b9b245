from __future__ import annotations

from typing import List, Optional

from rlmscope.models import GenerateOptions, GenerateResponse, Message


class BaseProvider:
    """
    Inference capability consumed by the engine.

    Implementations may leave usage and grounding metadata unset; the
    engine only relies on ``text``.
    """

    name = "base"

    async def generate(
        self, prompt: str, options: Optional[GenerateOptions] = None
    ) -> GenerateResponse:
        return await self.generate_conversation(
            [Message(role="user", content=prompt)], options
        )

    async def generate_conversation(
        self, messages: List[Message], options: Optional[GenerateOptions] = None
    ) -> GenerateResponse:
        raise NotImplementedError

    def supports_web_grounding(self) -> bool:
        return False

    def get_grounding_model(self) -> Optional[str]:
        return None

    async def test_connection(self) -> bool:
        try:
            response = await self.generate("ping", GenerateOptions(max_tokens=5))
        except Exception:
            return False
        return bool(response.text is not None)
