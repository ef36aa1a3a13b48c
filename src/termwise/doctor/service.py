"""ErrorDoctorService — tiered error analysis with graceful degradation.

Each ``analyze()`` call walks a fixed pipeline::

    RECEIVED -> QUICK_FIX_ATTEMPTED -> RESOLVED_QUICK
                                    -> ESCALATE_TO_AI -> AI_ANALYZING -> RESOLVED_AI
                                                                      -> AI_UNAVAILABLE
    -> DONE

The service only ever *suggests*. ``apply_fix`` hands a validated
command or file edit back to the caller, which decides whether to act.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import os
import shutil
from datetime import datetime, timezone
from typing import Any, Callable

import aiofiles
from pydantic import ValidationError

from termwise.config import DoctorConfig
from termwise.doctor.models import (
    AnalysisResult,
    EditFileFix,
    ErrorContext,
    ErrorLocation,
    ExecuteCommandFix,
    Fix,
)
from termwise.doctor.prompt import build_analysis_prompt, parse_ai_response
from termwise.doctor.providers import AIProvider, create_providers
from termwise.doctor.quickfix import try_quick_fix
from termwise.errors import AIProviderUnavailable, InvalidFixShape
from termwise.memory.classify import filter_noise

logger = logging.getLogger(__name__)

NODE_VERSION_TIMEOUT = 5.0


class AnalysisStage(enum.Enum):
    RECEIVED = "received"
    QUICK_FIX_ATTEMPTED = "quick_fix_attempted"
    RESOLVED_QUICK = "resolved_quick"
    ESCALATE_TO_AI = "escalate_to_ai"
    AI_ANALYZING = "ai_analyzing"
    RESOLVED_AI = "resolved_ai"
    AI_UNAVAILABLE = "ai_unavailable"
    DONE = "done"


class ErrorDoctorService:
    """Quick fixes first, then the AI tiers in order, then a manual-intervention result.

    Two switches gate every call: ``config.enabled`` (environment level,
    ``ENABLE_ERROR_DOCTOR``) and a dynamic toggle flipped at runtime with
    ``set_dynamic_enabled``.
    """

    def __init__(
        self,
        config: DoctorConfig | None = None,
        providers: list[AIProvider] | None = None,
    ) -> None:
        self.config = config or DoctorConfig()
        self.providers = providers if providers is not None else create_providers(self.config)
        self._dynamic_enabled = True

    # ------------------------------------------------------------------
    # Enable state
    # ------------------------------------------------------------------

    def set_dynamic_enabled(self, enabled: bool) -> None:
        self._dynamic_enabled = enabled
        logger.info("Error doctor %s by toggle", "enabled" if enabled else "disabled")

    def enabled_state(self) -> dict[str, bool]:
        return {
            "environment_enabled": self.config.enabled,
            "dynamic_enabled": self._dynamic_enabled,
            "fully_enabled": self.is_enabled,
        }

    @property
    def is_enabled(self) -> bool:
        return self.config.enabled and self._dynamic_enabled

    def status(self) -> dict[str, Any]:
        """Enable flags plus which AI tiers are usable right now."""
        return {
            **self.enabled_state(),
            "providers": {p.source: p.available() for p in self.providers},
        }

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def analyze(
        self,
        error_text: str,
        error_type: str = "unknown",
        context: dict[str, Any] | ErrorContext | None = None,
        file_path: str | None = None,
        line_number: int | None = None,
        column_number: int | None = None,
        stack_trace: str | None = None,
    ) -> AnalysisResult:
        """Analyze an error and suggest fixes. Never raises."""
        if not self.is_enabled:
            reason = (
                "Error Doctor is disabled by environment"
                if not self.config.enabled
                else "Error Doctor is disabled by user toggle"
            )
            return AnalysisResult(success=False, error=reason)

        stages: list[str] = []

        def advance(stage: AnalysisStage) -> None:
            stages.append(stage.value)
            logger.debug("Error doctor stage: %s", stage.value)

        advance(AnalysisStage.RECEIVED)
        try:
            result = await self._analyze(
                error_text,
                error_type,
                context,
                ErrorLocation(
                    file_path=file_path,
                    line_number=line_number,
                    column_number=column_number,
                    stack_trace=stack_trace,
                ),
                advance,
            )
        except Exception as e:
            logger.exception("Error doctor analysis failed")
            result = AnalysisResult(success=False, error="Error analysis failed", explanation=str(e))

        advance(AnalysisStage.DONE)
        result.stages = stages
        return result

    async def _analyze(
        self,
        error_text: str,
        error_type: str,
        context: dict[str, Any] | ErrorContext | None,
        location: ErrorLocation,
        advance: Callable[[AnalysisStage], None],
    ) -> AnalysisResult:
        text = filter_noise(error_text or "")
        if not text:
            return AnalysisResult(success=False, source="none", error="No error text to analyze")

        logger.info("Analyzing %s error: %.100s", error_type, text)

        advance(AnalysisStage.QUICK_FIX_ATTEMPTED)
        fix = try_quick_fix(text)
        if fix is not None:
            advance(AnalysisStage.RESOLVED_QUICK)
            logger.info("Quick fix found: %s", fix.title)
            return AnalysisResult(success=True, source="quick-fix", confidence="high", fixes=[fix])

        advance(AnalysisStage.ESCALATE_TO_AI)
        if isinstance(context, ErrorContext):
            error_context = context
        else:
            error_context = ErrorContext.model_validate(context or {})
        prompt = build_analysis_prompt(text, error_context, location)

        advance(AnalysisStage.AI_ANALYZING)
        for provider in self.providers:
            if not provider.available():
                logger.debug("AI tier %s not available, skipping", provider.source)
                continue
            try:
                raw = await provider.complete(prompt)
            except AIProviderUnavailable as e:
                logger.warning("AI tier %s failed: %s", provider.source, e)
                continue
            analysis = parse_ai_response(raw)
            advance(AnalysisStage.RESOLVED_AI)
            return AnalysisResult(
                success=True,
                source=provider.source,  # type: ignore[arg-type]
                confidence=analysis.confidence,
                fixes=analysis.fixes,
                explanation=analysis.explanation,
            )

        advance(AnalysisStage.AI_UNAVAILABLE)
        return AnalysisResult(
            success=False,
            source="none",
            error="No AI service available",
            fixes=[
                Fix(
                    title="AI Analysis Unavailable",
                    description=(
                        "Manual intervention required. Install and log in to the "
                        f"{self.config.cli_command or 'assistant'} CLI, or set an API key "
                        "for TERMWISE_DOCTOR_MODEL, to enable AI-powered error analysis."
                    ),
                    confidence="low",
                )
            ],
        )

    # ------------------------------------------------------------------
    # Fix hand-off
    # ------------------------------------------------------------------

    def apply_fix(self, fix: dict[str, Any]) -> dict[str, Any]:
        """Validate a fix and hand back what the caller should do with it.

        Nothing is executed or written here.
        """
        try:
            shaped = parse_fix(fix)
        except InvalidFixShape as e:
            logger.warning("Rejected fix: %s", e)
            return {
                "success": False,
                "error": "Invalid fix data",
                "message": "This fix requires manual intervention",
            }

        if isinstance(shaped, ExecuteCommandFix):
            return {
                "success": True,
                "action": "execute_command",
                "command": shaped.command,
                "message": f"Execute: {shaped.command}",
            }
        return {
            "success": True,
            "action": "edit_file",
            "filePath": shaped.file_path,
            "content": shaped.content,
            "message": f"Update file: {shaped.file_path}",
        }

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    async def get_error_context(self, working_directory: str) -> ErrorContext:
        """Probe the project manifest and node runtime in ``working_directory``."""
        context = ErrorContext(
            working_directory=working_directory,
            node_version=await _node_version(),
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

        manifest = os.path.join(working_directory, "package.json")
        if not os.path.isfile(manifest):
            return context
        context.has_package_json = True
        try:
            async with aiofiles.open(manifest, "r", encoding="utf-8") as f:
                package = json.loads(await f.read())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read %s: %s", manifest, e)
            return context
        if isinstance(package, dict):
            context.dependencies = sorted(package.get("dependencies") or {})
            context.dev_dependencies = sorted(package.get("devDependencies") or {})
        return context


def parse_fix(data: Any) -> ExecuteCommandFix | EditFileFix:
    """Validate one of the two accepted fix shapes.

    Raises:
        InvalidFixShape: anything other than a command or a file edit.
    """
    if not isinstance(data, dict):
        raise InvalidFixShape(f"Fix must be an object, got {type(data).__name__}")
    fix_type = data.get("type")
    try:
        if fix_type in ("execute_command", "command"):
            return ExecuteCommandFix.model_validate(data)
        if fix_type in ("edit_file", "file_edit"):
            return EditFileFix.from_payload(data)
    except ValidationError as e:
        raise InvalidFixShape(f"Incomplete {fix_type} fix: {e.error_count()} validation errors") from e
    raise InvalidFixShape(f"Unsupported fix type: {fix_type!r}")


async def _node_version() -> str | None:
    node = shutil.which("node")
    if node is None:
        return None
    try:
        process = await asyncio.create_subprocess_exec(
            node,
            "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        logger.debug("Could not query node version: %s", e)
        return None
    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=NODE_VERSION_TIMEOUT)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        logger.debug("node --version timed out")
        return None
    return stdout.decode("utf-8", errors="replace").strip() or None
