"""Tests for termwise.doctor.providers (retry logic, CLI tier, hosted tier, factory)."""

from __future__ import annotations

import asyncio
import shutil
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from termwise.config import DoctorConfig
from termwise.doctor.prompt import SYSTEM_PROMPT
from termwise.doctor.providers import (
    CliProvider,
    HostedModelProvider,
    _acompletion_with_retry,
    _response_text,
    create_providers,
)
from termwise.errors import AIProviderUnavailable


def _response(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


# ---------------------------------------------------------------------------
# _acompletion_with_retry: retry logic
# ---------------------------------------------------------------------------


class TestRetryLogic:
    async def test_success_on_first_try(self) -> None:
        mock_acompletion = AsyncMock(return_value="ok")
        with patch("litellm.acompletion", mock_acompletion):
            result = await _acompletion_with_retry(model="test", messages=[])
            assert result == "ok"
            assert mock_acompletion.call_count == 1

    async def test_retries_on_connection_error(self) -> None:
        mock_acompletion = AsyncMock(side_effect=[ConnectionError("conn failed"), "ok"])
        with patch("litellm.acompletion", mock_acompletion):
            result = await _acompletion_with_retry(model="test", messages=[])
            assert result == "ok"
            assert mock_acompletion.call_count == 2

    async def test_gives_up_after_3_attempts(self) -> None:
        mock_acompletion = AsyncMock(
            side_effect=[
                TimeoutError("fail 1"),
                OSError("fail 2"),
                ConnectionError("fail 3"),
            ]
        )
        with patch("litellm.acompletion", mock_acompletion):
            with pytest.raises(ConnectionError, match="fail 3"):
                await _acompletion_with_retry(model="test", messages=[])
            assert mock_acompletion.call_count == 3

    async def test_does_not_retry_on_value_error(self) -> None:
        """Non-transient errors should not be retried."""
        mock_acompletion = AsyncMock(side_effect=ValueError("bad input"))
        with patch("litellm.acompletion", mock_acompletion):
            with pytest.raises(ValueError, match="bad input"):
                await _acompletion_with_retry(model="test", messages=[])
            assert mock_acompletion.call_count == 1


# ---------------------------------------------------------------------------
# CliProvider
# ---------------------------------------------------------------------------

needs_posix_tools = pytest.mark.skipif(
    any(shutil.which(tool) is None for tool in ("cat", "sh", "sleep")),
    reason="requires cat, sh and sleep",
)


@needs_posix_tools
class TestCliProvider:
    async def test_prompt_sent_on_stdin(self) -> None:
        provider = CliProvider(command="cat", args=[])
        assert provider.available()
        assert await provider.complete("what broke?") == "what broke?"

    async def test_output_is_cleaned(self) -> None:
        provider = CliProvider(command="sh", args=["-c", "printf '\\033[32m  fine  \\033[0m\\n'"])
        assert await provider.complete("ignored") == "fine"

    async def test_timeout_raises(self) -> None:
        provider = CliProvider(command="sleep", args=["10"], timeout=0.2)
        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(AIProviderUnavailable, match="timed out"):
            await provider.complete("hello")
        assert loop.time() - started < 5

    async def test_nonzero_exit_raises(self) -> None:
        provider = CliProvider(command="sh", args=["-c", "echo not logged in >&2; exit 2"])
        with pytest.raises(AIProviderUnavailable, match="code 2: not logged in"):
            await provider.complete("hello")

    async def test_empty_output_raises(self) -> None:
        provider = CliProvider(command="sh", args=["-c", "cat >/dev/null"])
        with pytest.raises(AIProviderUnavailable, match="no output"):
            await provider.complete("hello")

    async def test_cancel_propagates(self) -> None:
        provider = CliProvider(command="sleep", args=["10"], timeout=30)
        task = asyncio.create_task(provider.complete("hello"))
        await asyncio.sleep(0.2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await asyncio.wait_for(task, timeout=5)


class TestCliProviderMissing:
    async def test_missing_command(self) -> None:
        provider = CliProvider(command="termwise-no-such-assistant")
        assert provider.available() is False
        with pytest.raises(AIProviderUnavailable, match="not installed"):
            await provider.complete("hello")


# ---------------------------------------------------------------------------
# HostedModelProvider
# ---------------------------------------------------------------------------


class TestHostedModelProvider:
    async def test_complete(self) -> None:
        mock = AsyncMock(return_value=_response("  the answer  "))
        provider = HostedModelProvider(model="openai/gpt-4o-mini", max_tokens=256)
        with patch("termwise.doctor.providers._acompletion_with_retry", mock):
            assert await provider.complete("why?") == "the answer"

        kwargs: dict[str, Any] = mock.call_args.kwargs
        assert kwargs["model"] == "openai/gpt-4o-mini"
        assert kwargs["max_tokens"] == 256
        assert kwargs["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}
        assert kwargs["messages"][1] == {"role": "user", "content": "why?"}

    async def test_request_failure_mapped(self) -> None:
        mock = AsyncMock(side_effect=RuntimeError("401 unauthorized"))
        provider = HostedModelProvider(model="openai/gpt-4o-mini")
        with patch("termwise.doctor.providers._acompletion_with_retry", mock):
            with pytest.raises(AIProviderUnavailable, match="401 unauthorized"):
                await provider.complete("why?")

    async def test_timeout_mapped(self) -> None:
        async def _slow(**kwargs: Any) -> Any:
            await asyncio.sleep(5)

        provider = HostedModelProvider(model="openai/gpt-4o-mini", timeout=0.05)
        with patch("termwise.doctor.providers._acompletion_with_retry", _slow):
            with pytest.raises(AIProviderUnavailable, match="timed out"):
                await provider.complete("why?")

    async def test_empty_content(self) -> None:
        mock = AsyncMock(return_value=_response(None))
        provider = HostedModelProvider(model="openai/gpt-4o-mini")
        with patch("termwise.doctor.providers._acompletion_with_retry", mock):
            with pytest.raises(AIProviderUnavailable, match="no content"):
                await provider.complete("why?")

    def test_available_follows_keys(self) -> None:
        provider = HostedModelProvider(model="openai/gpt-4o-mini")
        with patch("litellm.validate_environment", return_value={"keys_in_environment": True}):
            assert provider.available() is True
        with patch(
            "litellm.validate_environment",
            return_value={"keys_in_environment": False, "missing_keys": ["OPENAI_API_KEY"]},
        ):
            assert provider.available() is False

    def test_response_text_without_choices(self) -> None:
        assert _response_text(SimpleNamespace(choices=[])) == ""
        assert _response_text(object()) == ""


# ---------------------------------------------------------------------------
# create_providers
# ---------------------------------------------------------------------------


class TestCreateProviders:
    def test_cli_then_api(self) -> None:
        providers = create_providers(DoctorConfig(cli_timeout=12))
        assert [p.source for p in providers] == ["ai-cli", "ai-api"]
        cli = providers[0]
        assert isinstance(cli, CliProvider)
        assert cli.command == "claude"
        assert cli.args == ["--print"]
        assert cli.timeout == 12

    def test_tiers_can_be_disabled(self) -> None:
        assert [p.source for p in create_providers(DoctorConfig(cli_command=None))] == ["ai-api"]
        assert create_providers(DoctorConfig(cli_command=None, api_model=None)) == []
