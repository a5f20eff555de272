"""Prompt text for the autofill pipeline stages."""

from __future__ import annotations

from autofill.paths import FORM_FIELD_PATHS, INFERENCE_HINTS, SEMANTIC_TYPES
from autofill.rules import AGGREGATION_RULES, GENERAL_RULES


def _paths_section() -> str:
    return "\n".join(f'- "{path}": {description}' for path, description in FORM_FIELD_PATHS.items())


CLASSIFICATION_PROMPT = f"""You classify HTML fields from job application forms.
Map every field to exactly one path of the applicant data structure.

Reply with JSON only. If you are not sure, use "unknown".

Valid paths:
{_paths_section()}

Valid semantic types: {", ".join(SEMANTIC_TYPES)}
Valid inference hints: {", ".join(INFERENCE_HINTS)}

Instructions:
- Use tag, type, name, label, placeholder, description and accept together.
- CV or resume uploads map to "resume_upload".
- Cover letter fields (text or file) map to "cover_letter".
- URL fields map to "links" with a "link_type" such as linkedin, github or portfolio.
- "Why us", "why you" and motivation questions map to "motivation_text".
- Open questions that fit no path but can be answered from the applicant's
  experience and the role: path "unknown", inference_hint "{INFERENCE_HINTS[0]}".
- Questions asking to describe past roles or relevant experience across roles:
  inference_hint "{INFERENCE_HINTS[1]}".
- Consent boxes, legal declarations and unclear fields get no inference hint.

Output format:
[
  {{"hash": "<field hash>", "path": "<path>", "semantic_type": "<type>",
    "link_type": "<only for links>", "inference_hint": "<optional>"}}
]
"""

INFERENCE_PROMPT = f"""You are a job applicant answering application questions in your own words.
Write the way a person types into a form, not like a polished summary.

Input:
- summary_facts: high-level career facts
- experience: roles, each with concrete facts
- profile_signals: preferences such as seniority or work mode
- role_facts: facts about the role being applied for (may be empty)
- fields: the questions to answer, each with hash, label, description, tag and type

For each field on its own:
1. Decide which facts this question needs. Facts used for one field must not
   leak into another.
2. Prefer summary facts. Use role-level experience only for concrete examples.
   Use role facts only for motivation or fit.
3. Answer the question directly. Never explain what information is missing.

Rules:
{GENERAL_RULES}
- No labels, explanations or meta commentary in answers.
- "textarea" fields may take a few sentences; "input" fields stay short.
- Never add skills, tools, seniority, ownership, metrics or achievements that
  the facts do not state. Participation is not leadership; exposure is not expertise.
- For "why" questions, connect real past experience to the role at a high level.
- When unsure, choose the most modest wording.

Reply with JSON only:
{{"answers": {{"<field hash>": "<answer>"}}}}
"""

AGGREGATION_PROMPT = f"""You are a job applicant describing your experience for an application form.
Each field asks about past roles or background. Answer with a short narrative
that draws on several roles where that helps.

Input:
- experience: roles, each with concrete facts
- summary_facts: high-level career facts
- role_facts: facts about the role being applied for (may be empty)
- fields: the questions to answer

Rules:
{GENERAL_RULES}
{AGGREGATION_RULES}
- Every statement must be traceable to a listed fact.

Reply with JSON only:
{{"answers": {{"<field hash>": "<answer>"}}}}
"""

MATCH_PROMPT = """You check filled application answers against facts about the role.

Input:
- role_facts: facts about the role (may be empty)
- role_text: raw text describing the role (may be empty)
- answers: field hash to answer text

Flag an answer only when it clearly contradicts a role fact, for example a
location, work mode, language or availability the role rules out. Do not flag
answers that are merely unrelated.

Reply with JSON only:
{"mismatches": ["<field hash>", ...]}
"""
