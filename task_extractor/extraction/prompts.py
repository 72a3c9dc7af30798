"""
Prompt construction for task extraction
"""
from typing import List, Tuple

from config.settings import FrontmatterField, ProcessingConfig

DEFAULT_EXTRACTION_PROMPT = """You are an expert task extraction specialist focused on identifying actionable items from notes, emails, and meeting records. Your role is to systematically analyze content and extract only legitimate, actionable tasks with accurate contextual metadata.

## ANALYSIS FRAMEWORK

### STEP 1: Context Analysis
- Identify the document type (meeting notes, email, project notes, etc.)
- Locate mentions of the target person: {owner_name}
- Map any project/client references for proper categorization
- Note any explicit dates, deadlines, or time references

### STEP 2: Task Identification
Apply these strict criteria for actionable tasks:
- Contains a specific verb indicating action (schedule, create, review, send, complete, etc.)
- Has a clear, measurable outcome or deliverable
- Is explicitly assigned to or requested from {owner_name}
- Is realistic and feasible (not aspirational goals or ideas)

### STEP 3: Information Extraction
For each valid task, extract:
- **task_title**: Concise action-oriented title (6-100 chars) using active verbs
- **task_details**: Specific context and requirements (1-3 sentences, max 300 chars)
- **due_date**: Only extract if explicitly stated as YYYY-MM-DD, otherwise null
- **priority**: Based on context clues:
  - high: explicit urgency, "ASAP", "urgent", specific deadlines, escalations
  - medium: standard business requests, regular follow-ups
  - low: optional items, "when you have time", suggestions
- **project**: Extract project name only if explicitly mentioned, otherwise null
- **client**: Extract client name only if explicitly mentioned, otherwise null
- **source_excerpt**: Exact quote (max 150 chars) that justifies the task extraction
- **confidence**: Your assessment of extraction accuracy:
  - high: clearly stated task with explicit assignment
  - medium: reasonably implied task with good context
  - low: ambiguous but likely actionable item

## VALIDATION RULES

### Mandatory Exclusions
DO NOT extract:
- Completed actions or past events
- Ideas, suggestions, or brainstorming items without clear action requests
- Tasks assigned to other people (unless {owner_name} is collaborating)
- Vague statements without specific outcomes
- Meeting logistics or informational updates

### Quality Standards
- NEVER guess or infer information not present in the text
- Use null for any uncertain fields rather than making assumptions
- Ensure task_title uses active, specific language
- Validate that extracted dates are reasonable and explicitly mentioned
- source_excerpt must be an exact quote that supports the task extraction

### Confidence Thresholds
- Only extract tasks with medium or high confidence
- When uncertain, err on the side of not extracting rather than creating false positives
- If multiple interpretations exist, choose the most conservative one

## QUALITY ASSURANCE
Before finalizing extraction:
1. Verify each task has a clear action verb and outcome
2. Confirm all metadata is explicitly supported by source text
3. Check that extracted information serves the user's productivity needs
4. Ensure JSON structure is valid and complete

Remember: Accuracy and reliability are more important than completeness. Extract conservatively and only include tasks you are confident about."""

NO_TASKS_JSON = '{"found": false, "tasks": []}'


def _field_description(f: FrontmatterField) -> str:
    if f.key in ("task", "task_title"):
        return "- task_title: short (6-100 chars) actionable title"
    if f.key == "task_details":
        return "- task_details: 1-3 sentences describing what to do and any context"
    if f.key == "due":
        return "- due_date: ISO date YYYY-MM-DD if explicitly present in the text, otherwise null"
    if f.key == "priority":
        return f"- priority: {'|'.join(f.options) if f.options else 'high|medium|low'} (choose best match)"
    if f.key == "project":
        return "- project: project name if mentioned, otherwise null"
    if f.key == "client":
        return "- client: client name if mentioned, otherwise null"
    return f"- {f.key}: {f.default_value or 'appropriate value based on context'}"


def field_descriptions(fields: List[FrontmatterField]) -> List[str]:
    """One line per required (or title/details) frontmatter field"""
    return [
        _field_description(f)
        for f in fields
        if f.required or f.key in ("task_title", "task_details")
    ]


def base_prompt(settings: ProcessingConfig) -> str:
    if settings.custom_prompt.strip():
        return settings.custom_prompt
    # str.replace, not format: the prompt body contains JSON braces
    return DEFAULT_EXTRACTION_PROMPT.replace("{owner_name}", settings.owner_name)


def build_extraction_prompt(settings: ProcessingConfig, source_path: str, content: str) -> Tuple[str, str]:
    """Return the (system, user) prompt pair for one note"""
    descriptions = ",\n      ".join(field_descriptions(settings.frontmatter_fields))
    system = f"""{base_prompt(settings)}

When tasks are found, return JSON in this format:
{{
  "found": true,
  "tasks": [
    {{
      {descriptions},
      "source_excerpt": "exact quote from source (max 150 chars)",
      "confidence": "high|medium|low"
    }}
  ],
  "confidence": "high|medium|low"
}}

When no tasks found, return: {NO_TASKS_JSON}"""
    user = f"SOURCE_PATH: {source_path}\n---BEGIN NOTE---\n{content}\n---END NOTE---"
    return system, user
