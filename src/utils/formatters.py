"""
Report formatting utilities.

Renders a FinalAnalysis as Markdown, HTML or JSON for the CLI and for
callers that archive results.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

import markdown2

from src.models.schemas import (
    AuthenticationCheck,
    FinalAnalysis,
    MarketplaceLink,
    PhotoRequest,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)

SUPPORTED_FORMATS = ("markdown", "html", "json")

FORMAT_SUFFIXES = {
    "markdown": ".md",
    "html": ".html",
    "json": ".json",
}


def format_money(cents: Optional[int]) -> str:
    """Minor units as a dollar string; '-' when absent."""
    if cents is None:
        return "-"
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) / 100:,.2f}"


def _cell(value: Optional[object]) -> str:
    if value is None or value == "":
        return "-"
    return str(value).replace("|", "-").replace("\n", " ")


def _title(value: Optional[str]) -> str:
    return value.replace("_", " ").title() if value else "-"


def _bullets(items: Sequence[str], empty: str = "*None noted.*") -> str:
    if not items:
        return empty
    return "\n".join(f"- {item}" for item in items)


def format_identification_table(analysis: FinalAnalysis) -> str:
    """
    Create formatted markdown table of the identification.
    
    | Field | Value |
    |-------|-------|
    | Maker | Rolex |
    | Era | 1960s |
    | Confidence | 87% (Strong) |
    """
    confidence = f"{analysis.confidence:.0%} ({_title(analysis.confidence_band)})"
    if analysis.low_confidence:
        confidence += " - low-confidence best guess"
    
    rows = [
        f"| Category | {_title(analysis.category)} |",
        f"| Specialty | {_title(analysis.domain_expert)} |",
        f"| Item Type | {_cell(analysis.item_type)} |",
        f"| Maker | {_cell(analysis.maker)} |",
        f"| Brand | {_cell(analysis.brand)} |",
        f"| Model | {_cell(analysis.model_number)} |",
        f"| Era | {_cell(analysis.era)} |",
        f"| Style | {_cell(analysis.style)} |",
        f"| Origin | {_cell(analysis.origin_region)} |",
        f"| Confidence | {confidence} |",
    ]
    header = "| Field | Value |\n|-------|-------|"
    return header + "\n" + "\n".join(rows)


def format_valuation(analysis: FinalAnalysis) -> str:
    lines = [
        f"**Estimated Value:** {format_money(analysis.estimated_value_min)} - "
        f"{format_money(analysis.estimated_value_max)}",
    ]
    if analysis.valuation_basis:
        lines.append(f"\n{analysis.valuation_basis}")
    
    deal = analysis.deal
    if deal is not None:
        lines.append("")
        lines.append("| Asking Price | % of Market | Deal Rating | Profit Potential |")
        lines.append("|--------------|-------------|-------------|------------------|")
        lines.append(
            f"| {format_money(deal.asking_price)} | {deal.percent_of_market:.0f}% | "
            f"{_title(deal.rating)} | {format_money(deal.profit_potential_low)} to "
            f"{format_money(deal.profit_potential_high)} |"
        )
        lines.append(f"\n{deal.explanation}")
    elif analysis.asking_price is not None:
        lines.append(f"\nAsking price {format_money(analysis.asking_price)}: no usable value range to rate against.")
    
    return "\n".join(lines)


def format_alternatives_table(analysis: FinalAnalysis) -> str:
    if not analysis.alternative_candidates:
        return "*No alternative identifications.*"
    
    header = "| Alternative | Confidence | Reason |\n|-------------|------------|--------|"
    rows = [
        f"| {_cell(alt.name)} | {alt.confidence:.0%} | {_cell(alt.reason)} |"
        for alt in analysis.alternative_candidates
    ]
    return header + "\n" + "\n".join(rows)


def format_checklist_table(checks: Sequence[AuthenticationCheck]) -> str:
    """
    Create formatted markdown table for the authentication checklist.
    
    Critical checks are listed first.
    """
    if not checks:
        return "*No authentication checks provided.*"
    
    order = {"critical": 0, "important": 1, "helpful": 2}
    sorted_checks = sorted(checks, key=lambda c: order.get(c.priority, 3))
    
    header = "| Priority | Check | How | Look For | Expert |\n|----------|-------|-----|----------|--------|"
    rows = []
    for check in sorted_checks:
        rows.append(
            f"| {_title(check.priority)} | {_cell(check.check)} | {_cell(check.how_to)} | "
            f"{_cell(check.what_to_look_for)} | {'Yes' if check.requires_expert else 'No'} |"
        )
    return header + "\n" + "\n".join(rows)


def format_photo_requests(photos: Sequence[PhotoRequest]) -> str:
    if not photos:
        return "*No additional photos requested.*"
    return "\n".join(
        f"- **{photo.area}** ({photo.priority}): {photo.what_to_capture or photo.reason}"
        for photo in photos
    )


def format_marketplace_links(links: Sequence[MarketplaceLink]) -> str:
    if not links:
        return "*No marketplace links.*"
    return "\n".join(f"- [{link.marketplace_name}]({link.url})" for link in links)


def generate_report(analysis: FinalAnalysis) -> str:
    """
    Generate the complete Markdown report.
    
    Structure:
    # Identification Report: {name}
    ## Identification
    ## Description
    ## Valuation
    ## Evidence
    ## Alternative Identifications
    ## Authentication
    ## Resale
    ## Where to Search
    """
    timestamp = datetime.utcnow().strftime("%Y-%m-%d %H:%M UTC")
    auth = analysis.authentication
    risk = analysis.risk
    
    risk_line = f"**Counterfeit Risk:** {_title(risk.level)} (baseline {_title(risk.baseline)})"
    if risk.reported_level and risk.reported_level != risk.level:
        risk_line += f", model reported {_title(risk.reported_level)}"
    risk_reasons = _bullets(risk.reasons, empty="")
    
    referral = ""
    expert = analysis.expert_referral
    if expert.recommended:
        service = f" Suggested service: {_title(expert.service)}." if expert.service else ""
        referral = (
            f"\n> **Expert review recommended ({_title(expert.urgency)} urgency).**{service}\n"
            f"\n{_bullets(expert.reasons, empty='')}\n"
        )
    elif auth.expert_referral_recommended:
        referral = f"\n> **Expert referral recommended.** {auth.expert_referral_reason or ''}\n"
    
    flip = _title(analysis.flip_difficulty) if analysis.flip_difficulty else "Unknown"
    if analysis.flip_time_estimate:
        flip += f" ({analysis.flip_time_estimate})"
    
    report_content = f"""# Identification Report: {analysis.name}

## Identification
{format_identification_table(analysis)}

## Description
{analysis.description or '*No description.*'}

### Historical Context
{analysis.historical_context or '*None provided.*'}

## Valuation
{format_valuation(analysis)}

## Evidence
**Supporting:**
{_bullets(analysis.evidence_for)}

**Against:**
{_bullets(analysis.evidence_against)}

**Red Flags:**
{_bullets(analysis.red_flags)}

## Alternative Identifications
{format_alternatives_table(analysis)}

## Authentication
**Authentication Confidence:** {auth.authentication_confidence:.0%}

{risk_line}
{risk_reasons}
{referral}
### Checklist
{format_checklist_table(auth.checklist)}

### Known Fake Indicators
{_bullets(auth.known_fake_indicators)}

### Additional Photos
{format_photo_requests(auth.photos_requested)}

### Assessment
{auth.overall_assessment or '*None provided.*'}

### Verification Tips
{_bullets(analysis.verification_tips)}

## Resale
**Flip Difficulty:** {flip}

{_bullets(analysis.resale_channels, empty='*No channels suggested.*')}

## Where to Search
{format_marketplace_links(analysis.marketplace_links)}

---
Generated on: {timestamp}
Request: {analysis.request_id}
"""
    return report_content


def render_html(markdown_text: str, title: str = "Identification Report") -> str:
    html_content = markdown2.markdown(
        markdown_text,
        extras=["tables", "fenced-code-blocks", "header-ids", "break-on-newline"],
    )
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="UTF-8">
<title>{title}</title>
<style>
body {{ font-family: -apple-system, system-ui, sans-serif; max-width: 900px; margin: 0 auto; padding: 40px; line-height: 1.6; color: #333; }}
table {{ border-collapse: collapse; width: 100%; margin: 20px 0; }}
th, td {{ border: 1px solid #ddd; padding: 12px; text-align: left; }}
th {{ background-color: #f5f5f5; }}
h1, h2, h3 {{ color: #2c3e50; margin-top: 30px; }}
h1 {{ border-bottom: 2px solid #2c3e50; padding-bottom: 10px; }}
blockquote {{ border-left: 4px solid #c0392b; margin: 0; padding-left: 16px; }}
</style>
</head>
<body>
{html_content}
</body>
</html>
"""


def save_report(content: str, output_path: Path, format: str = "markdown") -> Path:
    """
    Write rendered content, replacing any suffix with the format's.
    
    Args:
        content: Rendered report
        output_path: Destination path (with or without extension)
        format: 'markdown', 'html', or 'json'
    """
    if format not in FORMAT_SUFFIXES:
        raise ValueError(f"Unsupported format: {format}")
    
    output_path.parent.mkdir(parents=True, exist_ok=True)
    file_path = output_path.with_suffix(FORMAT_SUFFIXES[format])
    file_path.write_text(content, encoding="utf-8")
    logger.info("Saved report", path=str(file_path), format=format)
    return file_path


class ReportFormatter:
    """Format and save identification reports."""
    
    def __init__(self, output_dir: Optional[Path] = None):
        self.output_dir = Path(output_dir) if output_dir else Path("outputs/reports")
    
    def render(self, analysis: FinalAnalysis, format_type: str = "markdown") -> str:
        if format_type == "json":
            return analysis.to_json()
        markdown_text = generate_report(analysis)
        if format_type == "markdown":
            return markdown_text
        if format_type == "html":
            return render_html(markdown_text, title=f"Identification Report: {analysis.name}")
        raise ValueError(f"Unsupported format: {format_type}")
    
    def default_path(self, analysis: FinalAnalysis) -> Path:
        timestamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")
        slug = "".join(ch if ch.isalnum() else "_" for ch in analysis.name.lower()).strip("_")[:60]
        return self.output_dir / f"{slug or 'item'}_{timestamp}"
    
    def save(
        self,
        analysis: FinalAnalysis,
        format_type: str = "markdown",
        output_path: Optional[Path] = None,
    ) -> Path:
        """Render ``analysis`` and write it under ``output_dir`` unless a path is given."""
        content = self.render(analysis, format_type)
        return save_report(content, output_path or self.default_path(analysis), format_type)


__all__ = [
    "ReportFormatter",
    "generate_report",
    "render_html",
    "save_report",
    "format_money",
    "format_identification_table",
    "format_checklist_table",
    "SUPPORTED_FORMATS",
]
