"""
Structured data (JSON-LD and microdata) extraction and validation.
"""
import json
import logging
from typing import Any

from techaudit.services.document import PageDocument
from techaudit.services.results import AnalyzerResult, Impact, Recommendation, Severity

logger = logging.getLogger(__name__)

SCHEMA_RULES = {
    "Organization": {"required": ["name"], "recommended": ["url"]},
    "LocalBusiness": {"required": ["name", "address"], "recommended": ["telephone"]},
    "Article": {"required": ["headline"], "recommended": ["author", "datePublished"]},
    "Product": {"required": ["name"], "recommended": ["offers"]},
    "BreadcrumbList": {"required": ["itemListElement"], "recommended": []},
}

RICH_SNIPPET_TYPES = {
    "Organization",
    "LocalBusiness",
    "Article",
    "Product",
    "Recipe",
    "Event",
    "Review",
    "BreadcrumbList",
}

PRESENCE_POINTS = 40
VALIDITY_POINTS = 30
RICH_SNIPPET_POINTS = 30


def _types_of(item: dict[str, Any]) -> list[str]:
    declared = item.get("@type")
    if isinstance(declared, str):
        return [declared]
    if isinstance(declared, list):
        return [t for t in declared if isinstance(t, str)]
    return []


def _flatten(data: Any, context: Any = None) -> list[dict[str, Any]]:
    """Top-level arrays and @graph containers become individual items."""
    if isinstance(data, list):
        return [item for entry in data for item in _flatten(entry, context)]
    if not isinstance(data, dict):
        return []
    context = data.get("@context", context)
    if "@graph" in data and isinstance(data["@graph"], list):
        return [item for entry in data["@graph"] for item in _flatten(entry, context)]
    if "@context" not in data and context is not None:
        data = {"@context": context, **data}
    return [data]


def validate_item(item: dict[str, Any]) -> dict[str, Any]:
    errors = []
    warnings = []
    types = _types_of(item)

    if not item.get("@context"):
        errors.append("Missing @context")
    if not types:
        errors.append("Missing @type")

    for schema_type in types:
        rules = SCHEMA_RULES.get(schema_type)
        if not rules:
            continue
        for prop in rules["required"]:
            if item.get(prop) in (None, "", [], {}):
                errors.append(f"Missing required property '{prop}'")
        for prop in rules["recommended"]:
            if item.get(prop) in (None, "", [], {}):
                warnings.append(f"Missing recommended property '{prop}'")

    return {
        "type": ", ".join(types) or None,
        "valid": not errors,
        "errors": errors,
        "warnings": warnings,
    }


class StructuredDataAnalyzer:
    """JSON-LD / microdata extraction and schema.org rule checks."""

    async def analyze(
        self,
        html: str,
        options: dict[str, Any] | None = None,
        document: PageDocument | None = None,
    ) -> AnalyzerResult:
        document = PageDocument.ensure(html, document)

        blocks = document.json_ld_blocks()
        items: list[dict[str, Any]] = []
        valid_blocks = 0
        for block in blocks:
            try:
                data = json.loads(block)
            except ValueError:
                continue
            valid_blocks += 1
            items.extend(_flatten(data))

        microdata = [
            {"itemtype": itemtype, "schema_type": itemtype.rstrip("/").rsplit("/", 1)[-1]}
            for itemtype in document.item_types()
        ]

        validation = [validate_item(item) for item in items]
        types_found = sorted(
            {t for item in items for t in _types_of(item)} | {m["schema_type"] for m in microdata}
        )
        eligible = any(t in RICH_SNIPPET_TYPES for t in types_found)
        has_data = bool(items or microdata)

        score = 0.0
        if has_data:
            score += PRESENCE_POINTS
        if validation:
            score += VALIDITY_POINTS * sum(1 for v in validation if v["valid"]) / len(validation)
        if eligible:
            score += RICH_SNIPPET_POINTS

        findings = {
            "json_ld": items,
            "microdata": microdata,
            "total_count": valid_blocks,
            "total_blocks": len(blocks),
            "invalid_blocks": len(blocks) - valid_blocks,
            "total_items": len(items),
            "types_found": types_found,
            "validation_results": validation,
            "rich_snippet_eligible": eligible,
            "has_structured_data": has_data,
        }
        result = AnalyzerResult(
            score=score,
            findings=findings,
            recommendations=self._recommendations(findings),
        )
        findings["structured_data_score"] = result.score
        logger.info(f"Structured data: {len(items)} JSON-LD item(s), {len(microdata)} microdata item(s), score {result.score}")
        return result

    def _recommendations(self, findings: dict[str, Any]) -> list[Recommendation]:
        recs = []

        if not findings["has_structured_data"]:
            recs.append(Recommendation(
                Severity.ERROR,
                "No structured data found",
                Impact.HIGH,
                "Add schema.org JSON-LD describing the page (Organization, Article, Product, ...)",
                category="structured_data",
            ))

        if findings["invalid_blocks"]:
            recs.append(Recommendation(
                Severity.WARNING,
                f"{findings['invalid_blocks']} JSON-LD block(s) could not be parsed",
                Impact.MEDIUM,
                "Fix the JSON syntax of every application/ld+json script",
                category="structured_data",
            ))

        for result in findings["validation_results"]:
            label = result["type"] or "Structured data"
            for error in result["errors"]:
                recs.append(Recommendation(
                    Severity.ERROR,
                    f"{label}: {error}",
                    Impact.MEDIUM,
                    "Add the missing property to the structured data",
                    category="structured_data",
                ))
            for warning in result["warnings"]:
                recs.append(Recommendation(
                    Severity.WARNING,
                    f"{label}: {warning}",
                    Impact.LOW,
                    "Add the recommended property for richer search results",
                    category="structured_data",
                ))

        if findings["has_structured_data"] and not findings["rich_snippet_eligible"]:
            recs.append(Recommendation(
                Severity.INFO,
                "Page not eligible for rich snippets",
                Impact.MEDIUM,
                "Use a rich-result type such as Product, Article, Recipe or Event",
                category="structured_data",
            ))

        return recs
