import json
import logging
from typing import Any, Dict, Iterator, List

import requests
from langchain_core.output_parsers import PydanticOutputParser

from scaudit.config import AuditConfig
from scaudit.errors import AnalysisServiceUnavailable
from scaudit.models import (
    CodeQuality,
    Finding,
    FindingSource,
    GasOptimization,
    ModelAnalysis,
    StaticParseResult,
)

logger = logging.getLogger(__name__)

# =============================================================================
# PROMPT
# =============================================================================

SYSTEM_SECURITY_AUDIT = """
You are an expert smart contract security auditor. Analyze the Solidity code
for security vulnerabilities and give a complete security assessment.

============================================================
WHAT TO REPORT
============================================================

For each vulnerability:
- Name it and pick the closest category:
  reentrancy | access-control | integer-overflow | unchecked-call |
  timestamp-dependence | tx-origin | delegatecall | selfdestruct | other
- Severity must be one of Critical, High, Medium, Low
- Cite the affected line numbers of the PRIMARY file when you can
- Quote the vulnerable code and say how to fix it

Also report gas optimizations, a code quality score (0-100) with issues and
strengths, a short summary, and general recommendations.

============================================================
OUTPUT FORMAT
============================================================

Respond ONLY with valid JSON. Do not include text outside the JSON object.

{format_instructions}
"""

MAX_STATIC_HINTS = 25


# =============================================================================
# RESPONSE PARSING
# =============================================================================

_decoder = json.JSONDecoder()


def _json_objects(text: str) -> Iterator[Dict[str, Any]]:
    """Every JSON object that decodes starting at a `{`, outermost first.

    Decoding is string-aware, so braces inside code snippets never end an
    object early.
    """
    i = text.find('{')
    while i != -1:
        try:
            parsed, end = _decoder.raw_decode(text, i)
        except json.JSONDecodeError:
            i = text.find('{', i + 1)
            continue
        if isinstance(parsed, dict):
            yield parsed
        i = text.find('{', end)


def clean_json(response: str) -> Dict[str, Any] | None:
    """Pull the analysis object out of a free-form model reply.

    Returns the first object carrying a `vulnerabilities` (or `findings`)
    list, or None when there is no such object. Unrelated objects are never
    returned in its place.
    """
    response = response.strip()
    if "```" in response:
        lines = response.split('\n')
        lines = [l for l in lines if not l.strip().startswith("```")]
        response = '\n'.join(lines)

    try:
        whole = json.loads(response)
        candidates = [whole] if isinstance(whole, dict) else []
    except json.JSONDecodeError:
        candidates = []
    candidates.extend(_json_objects(response))

    for c in candidates:
        if isinstance(c.get("vulnerabilities"), list):
            return c

    for c in candidates:
        if isinstance(c.get("findings"), list):
            c["vulnerabilities"] = c.pop("findings")
            return c

    return None


def _parse_items(raw: Any, model, label: str) -> List:
    if not isinstance(raw, list):
        return []
    items = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        try:
            items.append(model.model_validate(entry))
        except ValueError as e:
            logger.warning(f"Dropping malformed {label}: {e}")
    return items


def parse_analysis(result: Dict[str, Any]) -> ModelAnalysis:
    vulns = [
        v.model_copy(update={'source': FindingSource.MODEL})
        for v in _parse_items(result.get('vulnerabilities'), Finding, 'vulnerability')
    ]
    gas = _parse_items(result.get('gasOptimizations'), GasOptimization, 'gas optimization')

    quality_raw = result.get('codeQuality')
    try:
        quality = CodeQuality.model_validate(quality_raw) if isinstance(quality_raw, dict) else CodeQuality()
    except ValueError as e:
        logger.warning(f"Ignoring malformed codeQuality: {e}")
        quality = CodeQuality()

    recs = result.get('recommendations')
    recommendations = [str(r) for r in recs if r] if isinstance(recs, list) else []
    summary = result.get('summary')

    return ModelAnalysis(
        vulnerabilities=vulns,
        gas_optimizations=gas,
        code_quality=quality,
        summary=str(summary) if summary else None,
        recommendations=recommendations,
    )


# =============================================================================
# ADAPTER
# =============================================================================

class ModelFindingsAdapter:
    """Model-judged vulnerabilities via an OpenAI-style `/inference` endpoint.

    Any transport failure, timeout or unusable reply raises
    AnalysisServiceUnavailable. There are no retries here; a failed model call
    fails the whole audit.
    """

    def __init__(self, config: AuditConfig):
        self.inference_api = config.inference_api.rstrip('/')
        self.model = config.inference_model
        self.timeout = config.inference_timeout
        self.temperature = config.inference_temperature
        self.project_id = config.project_id
        self.job_id = config.job_id
        self.parser = PydanticOutputParser(pydantic_object=ModelAnalysis)

    def inference(self, messages: list) -> dict:
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
        }
        headers = {
            "x_project_id": self.project_id,
            "x_job_id": self.job_id,
        }
        try:
            resp = requests.post(
                f"{self.inference_api}/inference",
                headers=headers,
                json=payload,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            return resp.json()
        except requests.Timeout as e:
            raise AnalysisServiceUnavailable(
                f"Model analysis timed out after {self.timeout:.0f}s"
            ) from e
        except requests.RequestException as e:
            raise AnalysisServiceUnavailable(f"Model analysis service unavailable: {e}") from e
        except ValueError as e:
            raise AnalysisServiceUnavailable("Model analysis service returned invalid JSON") from e

    def build_messages(self, source_code: str, parse_result: StaticParseResult | None) -> list:
        system = SYSTEM_SECURITY_AUDIT.format(format_instructions=self.parser.get_format_instructions())

        context = ""
        if parse_result is not None:
            m = parse_result.code_metrics
            name = parse_result.contract_names[0] if parse_result.contract_names else "Unknown"
            context = (
                f"Contract Information:\n"
                f"- Contract Name: {name}\n"
                f"- Functions Count: {m.function_count}\n"
                f"- Modifiers Count: {m.modifier_count}\n"
                f"- Code Complexity: {m.complexity}\n"
            )
            hints = [
                f"- line {f.affected_lines[0]}: {f.category} `{f.code_snippet}`"
                for f in parse_result.findings[:MAX_STATIC_HINTS] if f.affected_lines
            ]
            if hints:
                context += "\nStatic pattern hits (unverified):\n" + '\n'.join(hints) + "\n"

        user_msg = f"""{context}
Solidity Code to Analyze:
```solidity
{source_code}
```
"""
        return [{"role": "system", "content": system}, {"role": "user", "content": user_msg}]

    def analyze(self, source_code: str, parse_result: StaticParseResult | None = None) -> ModelAnalysis:
        response = self.inference(self.build_messages(source_code, parse_result))
        if not isinstance(response, dict):
            raise AnalysisServiceUnavailable("Model analysis service returned an unexpected payload")

        content = response.get('content')
        if content is None and response.get('choices'):
            content = response['choices'][0].get('message', {}).get('content')
        if not isinstance(content, str) or not content.strip():
            raise AnalysisServiceUnavailable("Model analysis service returned an empty response")

        result = clean_json(content)
        if result is None:
            raise AnalysisServiceUnavailable("Model analysis response contained no vulnerability list")

        analysis = parse_analysis(result)
        logger.info(f"Model analysis: {len(analysis.vulnerabilities)} vulnerabilities, "
                    f"{len(analysis.gas_optimizations)} gas tips")
        return analysis
