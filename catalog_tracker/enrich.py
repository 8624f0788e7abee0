# catalog_tracker/enrich.py
"""LLM enrichment of scraped listings.

Enrichment is best effort: whenever a provider call or its output parsing
fails, every listing of that batch gets empty attributes and ingestion goes
on.
"""
import json
import re
from typing import List

from openai import OpenAI

from . import config
from .errors import ConfigurationError, EnrichmentFailure
from .schemas import EnrichedListing, EnrichmentResult
from .utils import chunk, get_logger

logger = get_logger(__name__)

PROMPT_TEMPLATE = """
You are a product catalog normalization assistant for used/new smartphones.
For each input product, extract:
- "modelName": normalized model name (e.g. "iPhone 14 Pro Max").
- "storageGb": storage capacity with unit (e.g. "128 GB").
- "color": short color description.
- "warranty": short warranty description if present, else "".{extra_fields}

Return a STRICT JSON array with one element per input product, in the SAME ORDER, with keys:
{keys}.
Do not include any extra text before or after the JSON.

Products:
{products}
""".strip()

FENCED_JSON_RE = re.compile(r"```json([\s\S]*?)```", re.IGNORECASE)
BRACKETED_JSON_RE = re.compile(r"(\[[\s\S]*\]|\{[\s\S]*\})")


def empty_result(listing_id):
    return EnrichmentResult(id=listing_id)


def build_prompt(batch, with_battery_health=False):
    payload = [
        {
            "id": l.id,
            "name": l.name or "",
            "description": l.description or "",
            "priceRaw": l.price_raw,
            "currency": l.currency,
            "availability": l.availability,
        }
        for l in batch
    ]
    keys = ["id", "modelName", "storageGb", "color", "warranty"]
    extra = ""
    if with_battery_health:
        keys.append("batteryHealth")
        extra = '\n- "batteryHealth": short battery health description if present, else "".'
    return PROMPT_TEMPLATE.format(
        extra_fields=extra,
        keys=json.dumps(keys),
        products=json.dumps(payload, indent=2, default=str),
    )


def extract_json(text):
    """Pull the JSON payload out of a model reply that may be fenced or padded."""
    snippet = text.strip()
    fenced = FENCED_JSON_RE.search(text)
    if fenced and fenced.group(1).strip():
        snippet = fenced.group(1).strip()
    else:
        bracketed = BRACKETED_JSON_RE.search(text)
        if bracketed:
            snippet = bracketed.group(1).strip()
    try:
        return json.loads(snippet)
    except json.JSONDecodeError as e:
        raise EnrichmentFailure(f"model output is not valid JSON: {e}") from e


def _clean(value):
    if isinstance(value, str) and value.strip():
        return value
    return None


def parse_results(batch, parsed) -> List[EnrichmentResult]:
    """Align parsed items with ``batch`` by position."""
    if not isinstance(parsed, list):
        raise EnrichmentFailure("model output is not a JSON array")
    results = []
    for index, listing in enumerate(batch):
        item = parsed[index] if index < len(parsed) else None
        if not isinstance(item, dict):
            results.append(empty_result(listing.id))
            continue
        results.append(EnrichmentResult(
            id=listing.id,
            model_name=_clean(item.get("modelName")),
            storage_gb=_clean(item.get("storageGb")),
            color=_clean(item.get("color")),
            warranty=_clean(item.get("warranty")),
            battery_health=_clean(item.get("batteryHealth")),
        ))
    return results


class OpenAIProvider:
    name = "openai"
    with_battery_health = False

    def __init__(self, client, model):
        self.client = client
        self.model = model

    def complete(self, prompt):
        response = self.client.responses.create(model=self.model, input=prompt)
        return response.output_text


class GeminiProvider:
    """Gemini through its OpenAI-compatible chat completions endpoint."""

    name = "gemini"
    with_battery_health = True

    def __init__(self, client, model):
        self.client = client
        self.model = model

    def complete(self, prompt):
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
        )
        return response.choices[0].message.content if response.choices else None


def make_provider(provider=None):
    provider = (provider or config.LLM_PROVIDER).lower()
    if provider == "none":
        return None
    if provider == "openai":
        if not config.OPENAI_API_KEY:
            raise ConfigurationError("OPENAI_API_KEY is not set (LLM_PROVIDER=openai)")
        return OpenAIProvider(OpenAI(api_key=config.OPENAI_API_KEY), config.OPENAI_MODEL)
    if provider == "gemini":
        if not config.GEMINI_API_KEY:
            raise ConfigurationError("GEMINI_API_KEY is not set (LLM_PROVIDER=gemini)")
        client = OpenAI(api_key=config.GEMINI_API_KEY, base_url=config.GEMINI_BASE_URL)
        return GeminiProvider(client, config.GEMINI_MODEL)
    raise ConfigurationError(f'Invalid LLM_PROVIDER "{provider}". Supported: openai, gemini, none')


class Enricher:
    def __init__(self, provider, batch_size=config.LLM_BATCH_SIZE):
        self.provider = provider
        self.batch_size = batch_size

    def enrich_batch(self, batch) -> List[EnrichmentResult]:
        if not batch:
            return []
        if self.provider is None:
            return [empty_result(l.id) for l in batch]
        try:
            text = self.provider.complete(build_prompt(batch, self.provider.with_battery_health))
            if not text:
                raise EnrichmentFailure("model reply had no text")
            return parse_results(batch, extract_json(text))
        except Exception as e:
            logger.error("Enrichment batch of %d failed (%s); using empty attributes: %s",
                         len(batch), self.provider.name, e)
            return [empty_result(l.id) for l in batch]

    def enrich(self, listings: List[EnrichedListing]) -> List[EnrichedListing]:
        """Return copies of ``listings`` with normalized attributes filled in."""
        batches = chunk(listings, self.batch_size) if listings else []
        enriched = []
        for index, batch in enumerate(batches, start=1):
            logger.info("Enriching batch %d/%d (size %d)", index, len(batches), len(batch))
            for listing, result in zip(batch, self.enrich_batch(batch)):
                enriched.append(listing.model_copy(update={
                    "model_name": result.model_name,
                    "storage_gb": result.storage_gb,
                    "color": result.color,
                    "warranty": result.warranty,
                    "battery_health": result.battery_health,
                }))
        return enriched
