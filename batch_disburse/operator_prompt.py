"""
Operator Prompt

Interactive questions for the operator, asked with questionary's async API so
the event loop driving the batch is never blocked by a nested loop.
"""

from typing import Optional

import questionary

from .errors import UserCancelled


class OperatorPrompt:
    """questionary-backed operator interaction"""

    async def ask_confirmation(self, message: str, default: bool = False) -> bool:
        answer = await questionary.confirm(message, default=default).ask_async()
        if answer is None:
            # Ctrl-C makes questionary return None
            raise UserCancelled("Prompt cancelled by operator")
        return bool(answer)

    async def ask_text(self, message: str, default: Optional[str] = None) -> str:
        answer = await questionary.text(message, default=default or "").ask_async()
        if answer is None:
            raise UserCancelled("Prompt cancelled by operator")
        return answer.strip() or (default or "")
