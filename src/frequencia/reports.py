"""Short narrative attendance report for one student, written by a text model.

The model is a black box reached over the Gemini generateContent REST API.
Transient failures (timeouts, 5xx, rate limits) are retried with tenacity;
after the last attempt, or on a permanent failure, generate() returns a fixed
fallback text instead of raising so the student view still renders.
"""

from typing import Any

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from frequencia.config import AppConfig, get_config
from frequencia.errors import GatewayError, PermanentError, RateLimitError, TransientError
from frequencia.logging import get_logger
from frequencia.models import AttendanceStats, Student
from frequencia.stats import AT_RISK_THRESHOLD

log = get_logger(__name__)

FALLBACK_REPORT = "Não foi possível gerar o relatório no momento. Tente novamente mais tarde."
MISSING_KEY_REPORT = "Relatório automático indisponível: chave da API não configurada."


def build_prompt(student: Student, stats: AttendanceStats) -> str:
    """Prompt for a brief, teacher-facing summary in Portuguese."""
    return (
        "Você é um coordenador pedagógico. Escreva um parecer curto (até 4 frases) "
        "sobre a frequência escolar do aluno abaixo, em tom profissional e construtivo.\n"
        f"Aluno: {student.name}\n"
        f"Aulas registradas: {stats.total}\n"
        f"Presenças: {stats.present}\n"
        f"Faltas: {stats.absent}\n"
        f"Faltas justificadas: {stats.excused}\n"
        f"Frequência: {stats.percentage:.1f}%\n"
        f"A frequência mínima exigida é {AT_RISK_THRESHOLD:.0f}%. "
        "Se estiver abaixo, recomende ações para a família e a escola."
    )


def _extract_text(body: Any) -> str:
    try:
        parts = body["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError) as e:
        raise PermanentError("Report response has no candidates") from e
    text = "".join(part.get("text", "") for part in parts if isinstance(part, dict)).strip()
    if not text:
        raise PermanentError("Report response is empty")
    return text


class ReportGenerator:
    """Client for the report text service."""

    def __init__(self, config: AppConfig | None = None) -> None:
        self.config = config or get_config()
        self._call = retry(
            stop=stop_after_attempt(max(self.config.report_max_attempts, 1)),
            wait=wait_exponential(multiplier=1, max=self.config.report_backoff_max),
            retry=retry_if_exception_type(TransientError),
            reraise=True,
        )(self._request)

    @property
    def enabled(self) -> bool:
        return bool(self.config.gemini_api_key)

    def _request(self, prompt: str) -> str:
        url = f"{self.config.gemini_url.rstrip('/')}/{self.config.gemini_model}:generateContent"
        try:
            resp = requests.post(
                url,
                params={"key": self.config.gemini_api_key},
                json={"contents": [{"parts": [{"text": prompt}]}]},
                timeout=self.config.request_timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            log.warning("report_request_transient", error=str(e))
            raise TransientError(f"Report request failed: {e}") from e

        if resp.status_code == 429:
            raise RateLimitError("Report service rate limited")
        if resp.status_code >= 500:
            raise TransientError(f"Report service error {resp.status_code}")
        if resp.status_code >= 400:
            raise PermanentError(f"Report request rejected {resp.status_code}")

        try:
            body = resp.json()
        except ValueError as e:
            raise PermanentError("Report response is not JSON") from e
        return _extract_text(body)

    def generate(self, student: Student, stats: AttendanceStats) -> str:
        """Narrative summary of a student's annual attendance.

        Never raises: returns a fallback text when the service is unavailable.
        """
        if not self.enabled:
            log.info("report_skipped", reason="missing_api_key", student_id=student.id)
            return MISSING_KEY_REPORT

        log.info("report_started", student_id=student.id, total=stats.total)
        try:
            text = self._call(build_prompt(student, stats))
        except GatewayError as e:
            log.error("report_failed", student_id=student.id, error=str(e), type=type(e).__name__)
            return FALLBACK_REPORT
        log.info("report_succeeded", student_id=student.id, length=len(text))
        return text
