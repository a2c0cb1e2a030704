"""Client for the code execution service.

The runner is a black box: it takes code, a language and test cases and
returns one ``{passed, actual_output}`` result per test case, in order.
"""

from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from src.core.exceptions import DependencyError, DependencyTimeoutError


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CaseResult:
    passed: bool
    actual_output: str = ""


class CodeRunnerClient:
    """HTTP client for the code runner, with a bounded timeout."""

    def __init__(
        self,
        base_url: str,
        timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def run(
        self,
        code: str,
        language: str,
        test_cases: list[dict[str, Any]],
    ) -> list[CaseResult]:
        """Run ``code`` against every test case.

        Raises:
            DependencyTimeoutError: The runner did not answer in time
            DependencyError: The runner failed or answered malformed data
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/run",
                    json={"code": code, "language": language, "test_cases": test_cases},
                )
        except httpx.TimeoutException as e:
            logger.error("code_runner_timeout", timeout=self.timeout, error=str(e))
            raise DependencyTimeoutError("Code runner timed out") from e
        except httpx.RequestError as e:
            logger.error("code_runner_request_error", error=str(e))
            raise DependencyError("Code runner unreachable") from e

        if response.status_code != httpx.codes.OK:
            logger.error(
                "code_runner_failed",
                status_code=response.status_code,
                response_text=response.text[:500],
            )
            raise DependencyError(f"Code runner error: {response.status_code}")

        try:
            results = [
                CaseResult(
                    passed=bool(item["passed"]),
                    actual_output=str(item.get("actual_output", "")),
                )
                for item in response.json()["results"]
            ]
        except (ValueError, KeyError, TypeError) as e:
            raise DependencyError("Code runner returned malformed results") from e

        if len(results) != len(test_cases):
            raise DependencyError("Code runner returned a result count mismatch")
        return results
