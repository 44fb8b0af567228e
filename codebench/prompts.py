"""
Prompts for the codebench harness
"""

GENERATOR_SYSTEM_PROMPT = "You are a benchmark problem generator. Output only valid JSON."

JUDGE_SYSTEM_PROMPT = "You are an evaluation judge. Output only valid JSON."

# System prompt given to the model under test, one per mode.
# Unrecognised modes fall back to the "code" entry.
MODE_SYSTEM_PROMPTS = {
    "architect": (
        "You are a software architect. Analyze the request and produce a detailed architectural plan. "
        "Do not write implementation code; focus on design, patterns, trade-offs and structure."
    ),
    "code": (
        "You are a senior software engineer. Implement the requested feature or change with clean, "
        "idiomatic, production-quality code that follows the project's existing patterns and conventions."
    ),
    "debug": (
        "You are a debugging expert. Diagnose the described issue, identify the root cause and provide "
        "a targeted fix. Explain your reasoning step by step."
    ),
    "ask": (
        "You are a knowledgeable codebase expert. Give a clear, thorough explanation that answers the "
        "question, referring to specific files, modules and data flows where relevant."
    ),
    "orchestrator": (
        "You are a task orchestrator. Break the complex request into well-defined subtasks, assign each "
        "to the appropriate mode, and lay out the execution order and dependencies."
    ),
}

DEFAULT_MODE = "code"

# Per-mode instructions embedded in the generator prompt
MODE_GENERATION_INSTRUCTIONS = {
    "architect": """**Architect Mode** (planning, system design, no code modification):
Generate problems that test architectural reasoning, system design and understanding of the existing patterns. The model should plan but NOT write implementation code.""",
    "code": """**Code Mode** (implementation, code generation, file modification):
Generate problems that test code generation, implementation quality and consistency with the style of the existing codebase. Name specific functions or features to implement.""",
    "debug": """**Debug Mode** (bug diagnosis, root cause analysis, fixes):
Generate problems describing a realistic bug in this codebase, including symptoms, affected files and expected behavior. The model should diagnose and fix it.""",
    "ask": """**Ask Mode** (comprehension, explanation, analysis):
Generate problems that test understanding of the codebase: how modules connect, how data flows, likely security concerns and performance bottlenecks.""",
    "orchestrator": """**Orchestrator Mode** (multi-step coordination, task decomposition):
Generate problems that require splitting a complex task into subtasks across several modes, testing the model's ability to plan and coordinate multi-step work.""",
}

GENERATOR_PROMPT = """You are generating benchmark problems for an AI coding assistant.
You are analyzing a {language} codebase:

{workspace_summary}

Generate exactly {problems_per_mode} problems for each of the following modes:

{mode_instructions}

For each problem, provide:
- id: A unique identifier of the form "<mode>-NNN"
- mode: The mode the problem targets
- title: Short descriptive title
- prompt: The exact prompt to send to the model, as if a developer typed it
- context_files: Array of workspace file paths that are relevant context
- evaluation_criteria: Array of 3-5 specific things a good response MUST include
- difficulty: "easy" | "medium" | "hard"

Respond ONLY with valid JSON matching this structure:
{{
  "problems": [
    {{
      "id": "{example_mode}-001",
      "mode": "{example_mode}",
      "title": "...",
      "prompt": "...",
      "context_files": ["..."],
      "evaluation_criteria": ["..."],
      "difficulty": "medium"
    }}
  ]
}}"""

JUDGE_PROMPT = """You are an expert AI evaluator judging the quality of a coding assistant's response.

## Problem
**Mode:** {mode}
**Title:** {title}
**Prompt:** {prompt}
**Difficulty:** {difficulty}

## Evaluation Criteria
The response should address these specific criteria:
{criteria}

## Response to Evaluate
{response}

## Instructions
Score this response on two dimensions:
1. **Quality** (1-10): How well-written, accurate and complete is the response? Does it follow best practices?
2. **Relevance** (1-10): How well does it address the specific problem and meet the evaluation criteria?

Respond ONLY with valid JSON:
{{
  "qualityScore": <1-10>,
  "relevanceScore": <1-10>,
  "qualityRationale": "<1-2 sentence explanation>",
  "relevanceRationale": "<1-2 sentence explanation>"
}}"""
