"""System and user prompts for policy analysis.

Both calls ask for a bare JSON object; the analyzer tolerates surrounding
prose or markdown fences but nothing else.
"""

# ---------------------------------------------------------------------------
# Chunk extraction: one call per sampled chunk
# ---------------------------------------------------------------------------

CHUNK_SYSTEM = """\
You are an expert privacy compliance auditor. Analyze the following {document_type} \
policy text and provide structured findings in JSON format. Focus on user rights, \
data practices, and compliance issues."""

CHUNK_USER = """\
Analyze this {document_type} policy excerpt:

"{chunk}"

Return JSON with:
{{
  "keyPoints": ["array of 2-3 most important points"],
  "redFlags": ["array of concerning practices, if any"],
  "compliance": {{
    "gdpr": "compliant/partially/non-compliant",
    "ccpa": "compliant/partially/non-compliant",
    "other": "any other compliance mentions"
  }},
  "userRights": ["mentioned user rights or lack thereof"]
}}"""


# ---------------------------------------------------------------------------
# Summary synthesis: one call over the merged findings
# ---------------------------------------------------------------------------

SUMMARY_SYSTEM = """\
You are a privacy policy expert. Create a concise executive summary and recommendations."""

SUMMARY_USER = """\
Based on this analysis of a {document_type} policy:

Key Points: {key_points}
Red Flags: {red_flags}
Compliance: {compliance}

Provide:
1. A 2-3 sentence executive summary
2. 3-5 actionable recommendations for users

Return as JSON: {{"executiveSummary": "...", "recommendations": ["...", "..."]}}"""

FALLBACK_SUMMARY = "Analysis completed with limited AI processing."
FALLBACK_RECOMMENDATIONS = [
    "Review the full policy text",
    "Consult with a privacy expert if needed",
]
