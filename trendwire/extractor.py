"""
Turns raw crawled content into plain text, tables and images.

Two paths:
- rule: BeautifulSoup strip-and-flatten, never fails
- llm: model-assisted extraction of the first 5000 characters, falling back
  to the rule path on any error or unusable answer
"""

import re
import logging
from dataclasses import dataclass, field, asdict
from typing import List, Dict, Optional

from bs4 import BeautifulSoup

from .llm import LLMGateway
from .models import EXTRACTOR_RULE, EXTRACTOR_LLM
from .prompts import extract_prompt
from .shared.validation import parse_structured_output

logger = logging.getLogger(__name__)

LLM_INPUT_LIMIT = 5000

NOISE_SELECTORS = [
    "script", "style", "noscript", "nav", "header", "footer", "aside", "iframe",
    ".advertisement", ".ad", ".ads", "[class*='sponsor']",
]

_MARKUP = re.compile(r"<\s*[a-zA-Z!/][^>]*>")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class ExtractedContent:
    text: str
    tables: List[str] = field(default_factory=list)
    images: List[Dict[str, str]] = field(default_factory=list)
    extractor: str = EXTRACTOR_RULE

    def to_dict(self) -> dict:
        return asdict(self)


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text or "").strip()


def looks_like_markup(content: str) -> bool:
    return bool(_MARKUP.search(content or ""))


# =============================================================================
# RULE PATH
# =============================================================================

def _extract_with_rules(content: str) -> ExtractedContent:
    soup = BeautifulSoup(content, "html.parser")

    for selector in NOISE_SELECTORS:
        for tag in soup.select(selector):
            tag.decompose()

    tables = [table.decode_contents() for table in soup.find_all("table")]

    images = []
    for img in soup.find_all("img"):
        src = img.get("src")
        if src:
            images.append({"url": src, "caption": img.get("alt") or ""})

    root = soup.body or soup
    text = collapse_whitespace(root.get_text(separator=" "))
    if not text:
        text = collapse_whitespace(content)

    return ExtractedContent(text=text, tables=tables, images=images, extractor=EXTRACTOR_RULE)


def extract_with_rules(content: str) -> ExtractedContent:
    """Rule-based extraction; plain text comes back whitespace-collapsed"""
    if not looks_like_markup(content):
        return ExtractedContent(text=collapse_whitespace(content), extractor=EXTRACTOR_RULE)

    try:
        return _extract_with_rules(content)
    except Exception as e:
        logger.warning(f"HTML parse failed, keeping flattened input: {e}")
        return ExtractedContent(text=collapse_whitespace(content), extractor=EXTRACTOR_RULE)


# =============================================================================
# LLM PATH
# =============================================================================

def extract_with_llm(content: str, gateway: LLMGateway) -> ExtractedContent:
    try:
        response = gateway.invoke(extract_prompt(content[:LLM_INPUT_LIMIT]))
        logger.info(
            f"LLM extraction: {response.tokens_in} in / {response.tokens_out} out, ${response.cost_usd:.4f}"
        )
        result = parse_structured_output("extract", response.text)
        if not result.valid:
            result.log_issues(prefix="LLM extraction unusable ")
            return extract_with_rules(content)

        data = result.data
        text = collapse_whitespace(data["text"])
        if not text:
            logger.warning("LLM extraction returned empty text, using rules")
            return extract_with_rules(content)

        return ExtractedContent(
            text=text,
            tables=data["tables"],
            images=[{"url": img["url"], "caption": img["caption"]} for img in data["images"]],
            extractor=EXTRACTOR_LLM,
        )
    except Exception as e:
        logger.error(f"LLM extraction failed, using rules: {e}")
        return extract_with_rules(content)


def extract_content(content: str, use_llm: bool = False, gateway: Optional[LLMGateway] = None) -> ExtractedContent:
    if use_llm and gateway is not None:
        return extract_with_llm(content, gateway)
    return extract_with_rules(content)
