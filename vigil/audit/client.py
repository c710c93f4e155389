"""
Audit client for VIGIL.

Talks to a search-augmented chat completion service (Perplexity API)
restricted to an allow-list of official legal-source domains.

Supports:
- Perplexity "sonar" models with search_domain_filter
- Mock mode for development/testing (always answers "uncertain")
"""
import os
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests

from ..errors import AuditServiceUnavailable
from ..utils.secrets import get_audit_api_key, mask_secret

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_DOMAINS = "fedlex.admin.ch,rsv.vd.ch,admin.ch,vd.ch,bger.ch"


def allowed_domains_from_env() -> List[str]:
    raw = os.getenv("AUDIT_ALLOWED_DOMAINS", DEFAULT_ALLOWED_DOMAINS)
    return [d.strip() for d in raw.split(",") if d.strip()]


@dataclass
class AuditResponse:
    """Raw answer from the audit service."""
    content: str
    model: str
    latency_ms: float
    citations: List[str] = field(default_factory=list)
    raw: Dict = field(default_factory=dict)


class AuditClient:
    """
    Audit client supporting Perplexity and mock mode.

    Usage:
        client = AuditClient()
        response = client.verify(system_prompt, query)
        print(response.content, response.citations)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        allowed_domains: Optional[List[str]] = None,
        timeout: Optional[float] = None,
        use_mock: Optional[bool] = None,
        temperature: float = 0.1,
    ):
        """
        Initialize audit client.

        Args:
            api_key: Perplexity API key (reads PERPLEXITY_API_KEY if not provided)
            model: Model to use (AUDIT_MODEL, default "sonar")
            base_url: API base URL (AUDIT_BASE_URL)
            allowed_domains: Domains the service may search (AUDIT_ALLOWED_DOMAINS)
            timeout: Per-request timeout in seconds (AUDIT_TIMEOUT_SECONDS)
            use_mock: Force mock mode (auto-detects if None)
            temperature: Sampling temperature
        """
        self.api_key = api_key or get_audit_api_key()
        self.model = model or os.getenv("AUDIT_MODEL", "sonar")
        self.base_url = (base_url or os.getenv("AUDIT_BASE_URL", "https://api.perplexity.ai")).rstrip("/")
        self.allowed_domains = allowed_domains or allowed_domains_from_env()
        self.timeout = timeout or float(os.getenv("AUDIT_TIMEOUT_SECONDS", "60"))
        self.temperature = temperature

        if use_mock is None:
            use_mock = os.getenv("USE_MOCK_AUDIT", "false").lower() == "true"
            if not self.api_key:
                logger.warning("No audit API key found, enabling mock mode")
                use_mock = True

        self.use_mock = use_mock

        if self.use_mock:
            logger.info("Audit client initialized in MOCK mode")
        else:
            logger.info(
                f"Audit client initialized with model: {self.model} "
                f"(key {mask_secret(self.api_key)}, {len(self.allowed_domains)} domains)"
            )

    def verify(self, system_prompt: str, query: str) -> AuditResponse:
        """
        Ask the service to judge one claim.

        Raises:
            AuditServiceUnavailable: Transport error, timeout or non-2xx status.
        """
        if self.use_mock:
            return self._mock_response()
        return self._perplexity_chat(system_prompt, query)

    def _perplexity_chat(self, system_prompt: str, query: str) -> AuditResponse:
        start_time = time.time()

        try:
            response = requests.post(
                f"{self.base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.model,
                    "messages": [
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": query},
                    ],
                    "search_domain_filter": self.allowed_domains,
                    "temperature": self.temperature,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Audit API error: {e}")
            raise AuditServiceUnavailable(f"Audit request failed: {e}") from e
        except ValueError as e:
            # Body was not JSON at all
            raise AuditServiceUnavailable(f"Audit service returned a non-JSON body: {e}") from e

        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or ""

        return AuditResponse(
            content=content,
            model=data.get("model", self.model),
            latency_ms=(time.time() - start_time) * 1000,
            citations=[c for c in data.get("citations") or [] if isinstance(c, str)],
            raw=data,
        )

    def _mock_response(self) -> AuditResponse:
        content = json.dumps({
            "verdict": "uncertain",
            "confidence": 0.3,
            "evidence_urls": [],
            "verification_notes": "Mock audit: no external verification performed",
            "diff_found": None,
        })
        return AuditResponse(content=content, model="mock", latency_ms=0.0, raw={"mock": True})


# Singleton instance
_audit_client: Optional[AuditClient] = None


def get_audit_client() -> AuditClient:
    """Get or create singleton audit client."""
    global _audit_client
    if _audit_client is None:
        _audit_client = AuditClient()
    return _audit_client
