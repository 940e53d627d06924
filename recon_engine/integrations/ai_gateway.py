"""
AI gateway client for candidate scoring.

Sends the run's open documents and payments to a chat-completions endpoint
and forces a `suggest_matches` tool call so the answer comes back as
structured JSON.
"""

import json
from typing import Any, Dict, Optional

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ..config import get_settings
from ..exceptions import ScoringError
from .scoring import ScoringRequest, ScoringResponse, parse_scoring_payload

logger = structlog.get_logger()


SYSTEM_PROMPT = """You are a financial reconciliation AI assistant. Your task is to analyze unmatched bills, invoices, and payments to suggest the best matches.

Consider these factors when matching:
1. Amount similarity (exact match is ideal, small differences may be valid)
2. Date proximity (payments typically occur within 30 days of bill/invoice)
3. Reference numbers (partial or full matches)
4. Vendor/customer name patterns
5. Payment descriptions or bank references

Only pair bills with outgoing payments and invoices with incoming payments.
{feedback}
Return your answer by calling the suggest_matches function."""

SUGGEST_MATCHES_TOOL = {
    "type": "function",
    "function": {
        "name": "suggest_matches",
        "description": "Suggest financial record matches based on analysis",
        "parameters": {
            "type": "object",
            "properties": {
                "matches": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "source_type": {"type": "string", "enum": ["bill", "invoice"]},
                            "source_id": {"type": "string"},
                            "target_id": {"type": "string"},
                            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                            "reasons": {
                                "type": "array",
                                "items": {
                                    "type": "object",
                                    "properties": {
                                        "rule": {"type": "string"},
                                        "score": {"type": "number"},
                                        "reason": {"type": "string"},
                                    },
                                    "required": ["rule", "score", "reason"],
                                },
                            },
                        },
                        "required": ["source_type", "source_id", "target_id", "confidence", "reasons"],
                    },
                },
                "insights": {"type": "string"},
                "warnings": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["matches", "insights", "warnings"],
        },
    },
}


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, ScoringError) and error.is_retryable


class AIGatewayScorer:
    """
    CandidateScorer backed by an LLM gateway.
    Handles authentication, retries and response extraction.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = get_settings()
        self.api_key = api_key or self.settings.ai_gateway_api_key
        self.url = url or self.settings.ai_gateway_url
        self.model = model or self.settings.ai_gateway_model
        self.timeout = timeout or self.settings.scorer_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def build_body(self, request: ScoringRequest) -> Dict[str, Any]:
        """Chat-completions body for a scoring request."""
        feedback = ""
        if request.feedback_context:
            feedback = (
                "\nLearn from this user feedback on previous suggestions:\n"
                + "\n".join(request.feedback_context)
                + "\n"
            )

        payload = request.to_payload()
        user_prompt = (
            "Analyze these financial records and suggest matches:\n\n"
            f"UNMATCHED BILLS:\n{json.dumps(payload['bills'], indent=2)}\n\n"
            f"UNMATCHED INVOICES:\n{json.dumps(payload['invoices'], indent=2)}\n\n"
            f"AVAILABLE PAYMENTS (unlinked):\n{json.dumps(payload['payments'], indent=2)}\n\n"
            "Find the best matches and return your analysis in the specified JSON format."
        )

        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT.format(feedback=feedback)},
                {"role": "user", "content": user_prompt},
            ],
            "tools": [SUGGEST_MATCHES_TOOL],
            "tool_choice": {"type": "function", "function": {"name": "suggest_matches"}},
        }

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Make an authenticated request to the gateway."""
        client = await self._get_client()

        try:
            response = await client.post(self.url, json=body)
        except httpx.TimeoutException:
            raise ScoringError("Request timeout")
        except httpx.RequestError as e:
            raise ScoringError(f"Request error: {str(e)}")

        if response.status_code == 429:
            raise ScoringError("Rate limit exceeded", status_code=429)

        if response.status_code == 402:
            raise ScoringError("AI credits exhausted", status_code=402)

        if response.status_code >= 400:
            raise ScoringError(
                f"API error: {response.status_code}",
                status_code=response.status_code,
                details=response.text,
            )

        try:
            return response.json()
        except ValueError:
            raise ScoringError("Gateway returned non-JSON body", details=response.text)

    async def score(self, request: ScoringRequest) -> ScoringResponse:
        """
        Ask the gateway to rank candidate pairs.

        Raises:
            ScoringError: On transport failure, HTTP error or unusable output
        """
        if not self.api_key:
            raise ScoringError("AI gateway API key is not configured")

        logger.info(
            "Calling AI gateway",
            bills=len(request.bills),
            invoices=len(request.invoices),
            payments=len(request.payments),
            feedback=len(request.feedback_context),
        )

        data = await self._post(self.build_body(request))

        try:
            tool_call = data["choices"][0]["message"]["tool_calls"][0]
            arguments = tool_call["function"]["arguments"]
        except (KeyError, IndexError, TypeError):
            raise ScoringError("Gateway response has no tool call", details=data)

        try:
            payload = json.loads(arguments) if isinstance(arguments, str) else arguments
        except json.JSONDecodeError as e:
            raise ScoringError(f"Tool call arguments are not JSON: {e}", details=arguments)

        response = parse_scoring_payload(payload)
        logger.info("AI gateway suggested matches", matches=len(response.matches))
        return response
