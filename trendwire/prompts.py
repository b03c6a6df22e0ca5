"""
Prompt templates for each analysis role.

Templates use {NAME} placeholders filled by render(); JSON examples inside
them are left untouched.
"""

import re
from typing import Dict

from .shared.validation import CLASSIFICATION_TYPES


ANALYST_SYSTEM_PROMPT = (
    "You are an industry analyst covering residential housing and building products. "
    "Answer with exactly the format requested and nothing else."
)


EXTRACT_PROMPT = """Extract the readable article from the HTML below.

Return a single JSON object:
{
  "text": "main body text, no navigation or ads",
  "tables": ["<tr>...</tr>", "..."],
  "images": [{"url": "https://...", "caption": "alt text or caption"}]
}

HTML:
{CONTENT}
"""


CLASSIFY_PROMPT = """Classify the following content.

CONTENT:
{CONTENT}

Return ONLY this JSON object:
{
  "type": "{TYPES}",
  "company": "company name",
  "product": "product name, if any",
  "price_band": "price range, if stated",
  "specs": ["spec 1", "spec 2"],
  "topic_tags": ["tag 1", "tag 2", "tag 3"]
}
"""


COMPARE_PROMPT = """Compare the product or specification below with what the same company
and its competitors offered before.

CONTENT:
{CONTENT}

CLASSIFICATION:
{CLASSIFICATION}

Answer in Markdown:

### Comparison
| Item | Before | Now | Difference |
|------|--------|-----|------------|

### Impact on us (exactly 3 points)
1. **Sales**: ...
2. **Product planning**: ...
3. **Marketing**: ...
"""


TREND_PROMPT = """Find the trends in the signals collected from social, media and company sources.

CLASSIFIED ITEMS:
{ITEMS}

KEYWORD COUNTS (last 7 days, keyword / source / count):
{COUNTERS}

Return ONLY this JSON object:
{
  "trends": [
    {
      "keyword": "...",
      "frequency": 0,
      "change_rate": 1.0,
      "hypothesis": "...",
      "next_observation": "..."
    }
  ],
  "summary": "..."
}
"""


STRATEGY_PROMPT = """Propose concrete next actions per department based on today's signals.

CLASSIFIED ITEMS:
{ITEMS}

KEYWORD COUNTS (last 7 days):
{COUNTERS}

Return ONLY this JSON object:
{
  "sales": [{"action": "...", "owner": "...", "deadline": "...", "reason": "..."}],
  "design": [{"action": "...", "owner": "...", "deadline": "...", "reason": "..."}],
  "marketing": [{"action": "...", "owner": "...", "deadline": "...", "reason": "..."}],
  "product": [{"action": "...", "owner": "...", "deadline": "...", "reason": "..."}]
}
"""


NEWSPAPER_PROMPT = """You are the editor of a daily industry briefing. Write today's edition
from the material below. Name the company, product and source of every story and keep
every URL as a working Markdown link.

# Trend Insight Daily
**{DATE} ({DAY})**

## Top stories
{TOP_STORIES}

## Social trends (24h)
{TRENDS}

## Competitor digest
{COMPARISONS}

## Next moves by department
{STRATEGIES}

Write the edition in Markdown with these sections: top stories (up to 5, each with
company, product, source, URL, price band, key specs, tags, a short summary and an
impact rating of 1-5 stars), social trends as a table, competitor digest with three
impact points each, and next moves per department.
"""


_PLACEHOLDER = re.compile(r"\{([A-Z_]+)\}")


def render(template: str, **variables: str) -> str:
    """Replace {NAME} placeholders; unknown names are left as-is"""
    def substitute(match):
        key = match.group(1)
        return str(variables[key]) if key in variables else match.group(0)
    return _PLACEHOLDER.sub(substitute, template)


def classify_prompt(content: str) -> str:
    return render(CLASSIFY_PROMPT, CONTENT=content, TYPES=" | ".join(CLASSIFICATION_TYPES))


def compare_prompt(content: str, classification: str) -> str:
    return render(COMPARE_PROMPT, CONTENT=content, CLASSIFICATION=classification)


def trend_prompt(items: str, counters: str) -> str:
    return render(TREND_PROMPT, ITEMS=items, COUNTERS=counters)


def strategy_prompt(items: str, counters: str) -> str:
    return render(STRATEGY_PROMPT, ITEMS=items, COUNTERS=counters)


def extract_prompt(content: str) -> str:
    return render(EXTRACT_PROMPT, CONTENT=content)


def newspaper_prompt(sections: Dict[str, str]) -> str:
    return render(NEWSPAPER_PROMPT, **sections)
