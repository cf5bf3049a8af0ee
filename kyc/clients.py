"""
KYC verification collaborators.

  DocumentVerificationClient   OCR / authenticity check of submitted documents
  IdentityVerificationClient   personal-info match against bureau / public records
  AMLScreeningClient           sanctions, PEP and adverse-media screening

All three speak JSON over HTTPS, are bounded by ``timeout`` and raise
``ConfigurationError`` when no API key is configured so that the workflow
can route the request to manual review instead of guessing.
"""
import logging
from typing import Optional

import httpx

from compliance.errors import ConfigurationError, ExternalServiceError
from db.models import (
    AMLRiskLevel,
    AMLScreeningResult,
    DocumentCheckResult,
    KYCDocument,
    PersonalInfo,
)

logger = logging.getLogger(__name__)


class _JsonApiClient:
    service = "kyc"
    key_setting = "KYC_PROVIDER_API_KEY"

    def __init__(self, base_url: str, api_key: str, timeout: float = 5.0,
                 http: Optional[httpx.Client] = None):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._http = http or httpx.Client()

    def _post(self, path: str, body: dict) -> dict:
        if not self._api_key:
            raise ConfigurationError(f"{self.key_setting} is not configured")
        try:
            response = self._http.post(
                f"{self._base_url}{path}",
                json=body,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise ExternalServiceError(self.service, f"timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(self.service, str(e)) from e

        if response.status_code >= 400:
            raise ExternalServiceError(self.service, f"HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise ExternalServiceError(self.service, "response was not JSON") from e


def _confidence(value) -> float:
    return max(0.0, min(1.0, float(value or 0.0)))


class DocumentVerificationClient(_JsonApiClient):
    service = "document_verification"

    def verify_documents(self, documents: list[KYCDocument]) -> DocumentCheckResult:
        data = self._post("/v1/documents/verify", {
            "documents": [{"type": d.type.value, "url": d.url} for d in documents],
        })
        return DocumentCheckResult(
            verified=bool(data.get("verified")),
            confidence=_confidence(data.get("confidence")),
            extracted_data=data.get("extracted_data") or {},
        )


class IdentityVerificationClient(_JsonApiClient):
    service = "identity_verification"

    def verify_identity(self, personal_info: PersonalInfo) -> DocumentCheckResult:
        data = self._post("/v1/identity/verify", personal_info.model_dump())
        return DocumentCheckResult(
            verified=bool(data.get("verified")),
            confidence=_confidence(data.get("confidence")),
            extracted_data={"matches": data.get("matches") or []},
        )


class AMLScreeningClient(_JsonApiClient):
    service = "aml_screening"
    key_setting = "AML_SCREENING_API_KEY"

    def screen(self, user_id: str, personal_info: PersonalInfo) -> AMLScreeningResult:
        data = self._post("/v1/screenings", {
            "client_ref": user_id,
            "name": f"{personal_info.first_name} {personal_info.last_name}",
            "birth_date": personal_info.date_of_birth,
            "nationality": personal_info.nationality,
        })
        risk = str(data.get("risk_level") or "").lower()
        if risk not in {level.value for level in AMLRiskLevel}:
            raise ExternalServiceError(self.service, f"unknown risk level {risk!r}")
        return AMLScreeningResult(
            sanctions_list=bool(data.get("sanctions_checked", True)),
            pep_check=bool(data.get("pep_checked", True)),
            adverse_media=bool(data.get("adverse_media_checked", True)),
            risk_level=AMLRiskLevel(risk),
            matches=list(data.get("matches") or []),
        )
