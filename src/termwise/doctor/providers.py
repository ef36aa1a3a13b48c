"""AI tiers for the error doctor — a local assistant CLI and a hosted model.

Both tiers expose the same small surface (``AIProvider``): ``available()``
says whether the tier is configured at all, and ``complete(prompt)``
returns the raw answer text or raises ``AIProviderUnavailable``. Every
call is bounded by a timeout; a CLI that overruns or is cancelled has
its whole process group killed.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    before_sleep_log,
)

from termwise.config import DoctorConfig
from termwise.doctor.prompt import SYSTEM_PROMPT
from termwise.errors import AIProviderUnavailable
from termwise.truncation import strip_ansi

if TYPE_CHECKING:
    from litellm import ModelResponse

logger = logging.getLogger(__name__)


@runtime_checkable
class AIProvider(Protocol):
    """One AI tier."""

    source: str

    def available(self) -> bool: ...

    async def complete(self, prompt: str) -> str:
        """Answer ``prompt``. Raises ``AIProviderUnavailable`` on any failure."""
        ...


# ---------------------------------------------------------------------------
# Local assistant CLI
# ---------------------------------------------------------------------------


@dataclass
class CliProvider:
    """Pipes the prompt to a local assistant CLI (``claude --print``) on stdin."""

    command: str
    args: list[str] = field(default_factory=lambda: ["--print"])
    timeout: float = 30.0
    source: str = "ai-cli"

    def available(self) -> bool:
        return shutil.which(self.command) is not None

    async def complete(self, prompt: str) -> str:
        if not self.available():
            raise AIProviderUnavailable(f"{self.command} is not installed")

        try:
            process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,  # New process group
                env={**os.environ, "TERM": "dumb"},
            )
        except OSError as e:
            raise AIProviderUnavailable(f"Could not start {self.command}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(input=prompt.encode("utf-8")),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            await _kill_group(process)
            raise AIProviderUnavailable(
                f"{self.command} timed out after {self.timeout}s",
                hint="Raise TERMWISE_CLI_TIMEOUT or check that the CLI is logged in.",
            ) from None
        except asyncio.CancelledError:
            await _kill_group(process)
            raise

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()[-200:]
            raise AIProviderUnavailable(
                f"{self.command} exited with code {process.returncode}: {detail}"
            )

        output = strip_ansi(stdout.decode("utf-8", errors="replace")).strip()
        if not output:
            raise AIProviderUnavailable(f"{self.command} returned no output")
        return output


async def _kill_group(process: asyncio.subprocess.Process) -> None:
    """Kill the entire process group and reap it."""
    if process.returncode is not None:
        return
    try:
        os.killpg(os.getpgid(process.pid), signal.SIGKILL)
    except ProcessLookupError:
        pass
    try:
        await asyncio.wait_for(process.wait(), timeout=2)
    except asyncio.TimeoutError:
        logger.warning("AI CLI pid %d did not exit after SIGKILL", process.pid)


# ---------------------------------------------------------------------------
# Hosted model via litellm
# ---------------------------------------------------------------------------


@dataclass
class HostedModelProvider:
    """Asks a hosted model through litellm.

    litellm handles provider detection from the model string prefix
    (e.g. "openai/gpt-4o-mini", "anthropic/claude-...") and reads API
    keys from environment variables automatically.
    """

    model: str
    timeout: float = 30.0
    max_tokens: int = 1000
    source: str = "ai-api"

    def available(self) -> bool:
        import litellm

        try:
            env = litellm.validate_environment(model=self.model)
        except Exception as e:
            logger.debug("Cannot validate environment for %s: %s", self.model, e)
            return False
        if not env.get("keys_in_environment", False):
            logger.debug("Missing keys for %s: %s", self.model, env.get("missing_keys"))
            return False
        return True

    async def complete(self, prompt: str) -> str:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": self.max_tokens,
        }
        try:
            response = await asyncio.wait_for(
                _acompletion_with_retry(**kwargs), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise AIProviderUnavailable(
                f"{self.model} timed out after {self.timeout}s"
            ) from None
        except Exception as e:
            raise AIProviderUnavailable(f"{self.model} request failed: {e}") from e

        content = _response_text(response)
        if not content:
            raise AIProviderUnavailable(f"{self.model} returned no content")
        return content


@retry(
    retry=retry_if_exception_type((ConnectionError, TimeoutError, OSError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=30),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _acompletion_with_retry(**kwargs: Any) -> ModelResponse:
    """Call litellm.acompletion with retry on transient errors."""
    import litellm

    return await litellm.acompletion(**kwargs)


def _response_text(response: Any) -> str:
    choices = getattr(response, "choices", None)
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    return (getattr(message, "content", None) or "").strip()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_providers(config: DoctorConfig) -> list[AIProvider]:
    """The AI tiers in escalation order: local CLI first, then hosted model."""
    providers: list[AIProvider] = []
    if config.cli_command:
        providers.append(
            CliProvider(command=config.cli_command, args=list(config.cli_args), timeout=config.cli_timeout)
        )
    if config.api_model:
        providers.append(
            HostedModelProvider(
                model=config.api_model,
                timeout=config.api_timeout,
                max_tokens=config.max_tokens,
            )
        )
    return providers
