"""
Optional LLM refinement of generated Move code.

The refiner posts the emitted source, the composition and the primitive
definitions to an OpenAI-compatible ``/chat/completions`` endpoint and swaps
in the returned code when it can be extracted. Every failure falls back to
the original source.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Dict, Any

import requests as http_requests

from .exceptions import RefinementError
from .models import Composition, Primitive


logger = logging.getLogger(__name__)


MOVE_FENCE_PATTERN = re.compile(r'```move\s*\n(.*?)```', re.DOTALL)
ANY_FENCE_PATTERN = re.compile(r'```[\w-]*\s*\n(.*?)```', re.DOTALL)

SYSTEM_PROMPT = (
    "You are an expert Move smart contract developer for the Aptos blockchain. "
    "Improve the given Move module: keep the module name, the public function "
    "names and the import paths, fix syntax problems, and complete the "
    "integration between the primitives where the parameter mappings make the "
    "intent clear. Do not invent values for parameters marked as unmapped. "
    'Respond with a JSON object of the form {"code": "<complete module>"}.'
)


@dataclass
class RefinementResult:
    """Outcome of a refinement attempt."""
    code: str
    refined: bool
    note: str = ""


def extract_code(text: Any) -> Optional[str]:
    """Pull code out of a model response.

    Accepts a JSON object with a string ``code`` field, a ```move fence or
    any other fence. Returns None when nothing usable is found.
    """
    if not isinstance(text, str) or not text.strip():
        return None
    stripped = text.strip()

    try:
        data = json.loads(stripped)
    except ValueError:
        data = None
    if isinstance(data, dict):
        code = data.get('code')
        if isinstance(code, str) and code.strip():
            return code
        return None

    for pattern in (MOVE_FENCE_PATTERN, ANY_FENCE_PATTERN):
        match = pattern.search(stripped)
        if match and match.group(1).strip():
            return match.group(1).strip() + "\n"
    return None


class CodeRefiner:
    """Client for the refinement service."""

    def __init__(self, endpoint: str = "", api_key: str = "", model: str = "gpt-4o",
                 timeout: float = 120, temperature: float = 0.2):
        self.endpoint = (endpoint or "").rstrip('/')
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.temperature = temperature

    @property
    def enabled(self) -> bool:
        return bool(self.endpoint)

    def build_messages(self, source: str, composition: Composition,
                       primitives: List[Primitive]) -> List[Dict[str, str]]:
        context = {
            'composition': {
                'name': composition.name,
                'description': composition.description,
                'connections': [c.to_dict() for c in composition.connections],
            },
            'primitives': [p.to_dict() for p in primitives],
        }
        user_content = (
            "Composition and primitive definitions:\n"
            f"{json.dumps(context, indent=2)}\n\n"
            "Generated Move module:\n"
            f"```move\n{source}```"
        )
        return [
            {'role': 'system', 'content': SYSTEM_PROMPT},
            {'role': 'user', 'content': user_content},
        ]

    def request_completion(self, messages: List[Dict[str, str]]) -> str:
        """Send a chat completion request and return the message content.

        Raises:
            RefinementError: on connection problems, timeouts, HTTP errors or
                a response without a message.
        """
        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f'Bearer {self.api_key}'
        payload = {
            'model': self.model,
            'messages': messages,
            'temperature': self.temperature,
        }
        url = f'{self.endpoint}/chat/completions'

        try:
            resp = http_requests.post(url, json=payload, headers=headers, timeout=self.timeout)
        except http_requests.exceptions.ConnectionError as e:
            raise RefinementError(f"Cannot connect to LLM endpoint: {e}")
        except http_requests.exceptions.Timeout:
            raise RefinementError(f"LLM endpoint timed out ({self.timeout}s)")
        except http_requests.exceptions.RequestException as e:
            raise RefinementError(f"LLM request failed: {e}")

        if resp.status_code != 200:
            raise RefinementError(
                f"LLM endpoint returned HTTP {resp.status_code}",
                details={'body': resp.text[:500]},
            )
        try:
            body: Dict[str, Any] = resp.json()
            return body['choices'][0]['message']['content']
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise RefinementError(f"Malformed LLM response: {e}")

    def refine(self, source: str, composition: Composition,
               primitives: List[Primitive]) -> RefinementResult:
        """Refine source code, returning the original on any failure."""
        if not self.enabled:
            return RefinementResult(code=source, refined=False, note="Refinement disabled")

        try:
            content = self.request_completion(self.build_messages(source, composition, primitives))
        except RefinementError as e:
            logger.warning(f"Code refinement failed for '{composition.name}': {e}")
            return RefinementResult(code=source, refined=False, note=str(e))
        except Exception as e:
            logger.error(f"Unexpected refinement error for '{composition.name}': {e}")
            return RefinementResult(code=source, refined=False, note=str(e))

        code = extract_code(content)
        if code is None:
            logger.warning(f"Unparseable refinement output for '{composition.name}'")
            return RefinementResult(code=source, refined=False, note="Unparseable refinement output")

        logger.info(f"Refined code for '{composition.name}'")
        return RefinementResult(code=code, refined=True)
