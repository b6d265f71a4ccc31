"""Content-validation model: request/response contract and clients.

The client is built once with :func:`build_model_client` and handed to the
orchestrator.  ``LangChainQcModel`` talks to a chat model through LangChain;
``MockQcModel`` returns a deterministic stand-in for offline work.
"""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from emailqc.config import Settings, settings as default_settings
from emailqc.db.models import MODEL_CHECK_TYPES, CheckType
from emailqc.errors import ModelOutputError

logger = logging.getLogger(__name__)

MOCK_MODEL_VERSION = "mock-v1"

_SYSTEM_PROMPT = (
    "You are an expert marketing email QC assistant. Compare template previews "
    "with approved copy documents and compliance rules. Always return only JSON "
    "that conforms to the requested shape. If any requirement cannot be verified, "
    "mark the related check as failed and explain why."
)

_INSTRUCTIONS = [
    "Use the preview HTML and parsed summary together; the HTML is the source of truth when there is disagreement.",
    "Compare all content, subject, preheader, CTAs, disclaimers, and keywords against the copy document and compliance rules.",
    "Give each check a clear pass/fail. When failing, cite concise evidence pulled from either the email or the copy doc.",
    "If required information is missing or ambiguous, treat the check as failed and explain the gap.",
]

_OUTPUT_EXPECTATIONS = [
    'Return a JSON object {"summary_pass": bool, "model_version": str, "checks": [...]}.',
    'Each check is {"type": one of content_mismatch | subject_preheader | disclaimer | '
    'keyword_disclaimer, "name": str, "pass": bool, "details": any JSON value}.',
    "Use descriptive names for checks so humans understand the issues quickly.",
]


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

class KeywordRulePayload(BaseModel):
    keyword: str
    requiredText: str


class AdditionalRulePayload(BaseModel):
    topic: str
    silo: str
    entity: str
    text: str
    links: Any = None
    notes: Optional[str] = None


class QcModelInput(BaseModel):
    entity: str
    silo: str
    emailType: str
    risk_rules: List[str] = Field(default_factory=list)
    disclaimer_rules: List[str] = Field(default_factory=list)
    keyword_rules: List[KeywordRulePayload] = Field(default_factory=list)
    additional_rules: List[AdditionalRulePayload] = Field(default_factory=list)
    braze_preview_url: str
    parsed_email: dict[str, Any]
    raw_html: str
    copy_document_text: str


class ModelCheck(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    type: CheckType
    name: str
    passed: bool = Field(alias="pass")
    details: Any = None


class QcModelOutput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    summary_pass: bool
    model_version: str
    checks: List[ModelCheck] = Field(default_factory=list)


class StrictModelOutput(QcModelOutput):
    """Output as accepted from a real model: only the model's own check types."""

    @field_validator("checks")
    @classmethod
    def _only_model_check_types(cls, checks: List[ModelCheck]) -> List[ModelCheck]:
        for check in checks:
            if check.type not in MODEL_CHECK_TYPES:
                raise ValueError(f"check type {check.type.value!r} is not allowed from the model")
        return checks


class QcModel(Protocol):
    def run(self, payload: QcModelInput) -> QcModelOutput:
        ...


def parse_model_output(content: str) -> QcModelOutput:
    """Validate raw model text against the strict output contract.

    Raises:
        ModelOutputError: If *content* is empty, not JSON, or off-contract.
    """
    if not content or not content.strip():
        raise ModelOutputError("Model response did not include content")
    try:
        return StrictModelOutput.model_validate_json(content)
    except ValidationError as exc:
        raise ModelOutputError(f"Failed to parse model output: {exc}") from exc


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------

class MockQcModel:
    """Deterministic stand-in used when no model is configured."""

    mock = True

    def run(self, payload: QcModelInput) -> QcModelOutput:
        disclaimers = len(payload.disclaimer_rules)
        return QcModelOutput(
            summary_pass=True,
            model_version=MOCK_MODEL_VERSION,
            checks=[
                ModelCheck(
                    type=CheckType.SYSTEM_NOTICE,
                    name="Mock QC run",
                    passed=True,
                    details=(
                        "QC model executed in mock mode because no model API key is "
                        "configured or QC_MODEL_MODE=mock is set."
                    ),
                ),
                ModelCheck(
                    type=CheckType.DISCLAIMER,
                    name="Disclaimers collected",
                    passed=disclaimers > 0,
                    details=f"Disclaimers provided: {disclaimers}",
                ),
            ],
        )


class LangChainQcModel:
    """Chat-model backed validator (OpenAI or Ollama via LangChain)."""

    mock = False

    def __init__(self, llm: Any = None, config: Optional[Settings] = None) -> None:
        self._config = config or default_settings
        self._llm = llm

    def _get_llm(self) -> Any:
        if self._llm is not None:
            return self._llm

        if self._config.llm_provider == "ollama":
            from langchain_ollama import ChatOllama

            self._llm = ChatOllama(
                model=self._config.ollama_chat_model,
                base_url=self._config.ollama_base_url,
                temperature=0.1,
                format="json",
            )
        else:
            from langchain_openai import ChatOpenAI

            self._llm = ChatOpenAI(
                model=self._config.openai_chat_model,
                api_key=self._config.openai_api_key,
                temperature=0.1,
                max_tokens=2000,
                model_kwargs={"response_format": {"type": "json_object"}},
            )
        return self._llm

    def build_messages(self, payload: QcModelInput) -> list[tuple[str, str]]:
        body = {
            "instructions": _INSTRUCTIONS,
            "context": {
                "braze_preview_url": payload.braze_preview_url,
                "silo": payload.silo,
                "entity": payload.entity,
                "email_type": payload.emailType,
                "risk_rules": payload.risk_rules,
                "disclaimer_rules": payload.disclaimer_rules,
                "keyword_rules": [r.model_dump() for r in payload.keyword_rules],
                "additional_rules": [r.model_dump() for r in payload.additional_rules],
            },
            "email_sources": {
                "parsed_summary": payload.parsed_email,
                "raw_html": payload.raw_html,
            },
            "copy_document_text": payload.copy_document_text,
            "output_expectations": _OUTPUT_EXPECTATIONS,
        }
        return [("system", _SYSTEM_PROMPT), ("human", json.dumps(body))]

    def run(self, payload: QcModelInput) -> QcModelOutput:
        llm = self._get_llm()
        response = llm.invoke(self.build_messages(payload))
        content = response.content if hasattr(response, "content") else str(response)
        if isinstance(content, list):
            content = "".join(part if isinstance(part, str) else part.get("text", "") for part in content)
        output = parse_model_output(content)
        logger.info("[running_model] model %s returned %d check(s)", output.model_version, len(output.checks))
        return output


def build_model_client(config: Optional[Settings] = None) -> QcModel:
    """Return the model client for *config*: mock when unconfigured."""
    cfg = config or default_settings
    if cfg.is_mock_model():
        logger.info("Content-validation model running in mock mode")
        return MockQcModel()
    return LangChainQcModel(config=cfg)
