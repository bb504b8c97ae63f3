"""Prompt templates used by the agent loop and the planner.

Templates are ``str.format`` strings; literal JSON braces are doubled.
"""

THINKING_SYSTEM_PROMPT = "You are a thoughtful assistant analyzing user queries."

THINKING_PROMPT = """Briefly analyze this user query and identify:
1. Main goal/intent
2. Key entities or parameters
3. Potential challenges
4. Best approach

Query: "{query}"
{pattern_note}
Respond in 2-3 sentences."""

REFLECTION_SYSTEM_PROMPT = (
    "You are an agent analyzing execution results. Respond with valid JSON."
)

REFLECTION_PROMPT = """You are an intelligent agent reflecting on execution results.

Goal: {goal}
Step Executed: {step}
Result: {result}
Success: {success}

Analyze the result and determine:
1. Did this step achieve its purpose?
2. Is the result what was expected?
3. What should the next action be?
4. Should we continue, modify the plan, or stop?

Respond with JSON:
{{
  "analysis": "Brief analysis of the result",
  "isExpected": true/false,
  "nextAction": "continue" | "modify_plan" | "retry" | "stop",
  "reason": "Why this next action",
  "shouldContinue": true/false
}}"""

CORRECTION_SYSTEM_PROMPT = (
    "You are an agent determining recovery strategy. Respond with valid JSON."
)

CORRECTION_PROMPT = """You are an intelligent agent that needs to recover from an error.

Original Goal: {goal}
Failed Step: {step}
Error: {error}
Attempt: {attempt} of {max_attempts}
Previous Strategy: {previous_strategy}

Determine the best recovery strategy:
1. retry: Try the same action again (for transient errors)
2. alternative: Try a different approach to achieve the same goal
3. skip: Skip this step if non-critical and continue
4. abort: Stop execution if critical failure
5. backtrack: Go back and try from a previous step

Respond with JSON:
{{
  "strategy": "retry" | "alternative" | "skip" | "abort" | "backtrack",
  "reason": "Why this strategy",
  "alternativeApproach": "If alternative, describe the new approach",
  "isCritical": true/false
}}"""

SYNTHESIS_SYSTEM_PROMPT = (
    "You are a helpful assistant creating clear, informative responses."
)

SYNTHESIS_PROMPT = """You are an intelligent agent summarizing results for the user.

Original Query: {query}
Intent: {intent}
Steps Completed: {steps_completed}
Steps Failed: {steps_failed}
Final Data: {data}

Create a clear, helpful response for the user that:
1. Answers their original question
2. Presents the key findings
3. Notes any limitations or issues encountered
4. Suggests follow-up actions if relevant

Respond naturally in plain text, formatted nicely for terminal display."""

INTENT_SYSTEM_PROMPT = (
    "You are a query analysis assistant. Always respond with valid JSON."
)

INTENT_PROMPT = """Classify the user's query and extract entities.

Query: "{query}"

Valid intents: {intents}

Respond with JSON:
{{
  "intent": "one of the valid intents",
  "confidence": 0.0-1.0,
  "entities": {{
    "topic": "main subject",
    "location": "optional",
    "count": optional number,
    "url": "optional",
    "path": "optional",
    "keywords": ["optional"]
  }},
  "suggestedQueries": ["optional follow-up queries"]
}}"""

PLANNING_SYSTEM_PROMPT = (
    "You are an action planning assistant. Always respond with valid JSON."
)

PLANNING_PROMPT = """Create an execution plan for the query below.

Query: {query}
Intent: {intent}
Entities: {entities}

Available tools:
{tools}

Each step: {{"id": "step_1", "order": 1, "tool": "tool name", "params": {{...}},
"description": "...", "dependsOn": ["earlier step ids"], "retryable": true}}
A parameter may reference an earlier step's output as "{{{{step_id}}}}" or
"{{{{step_id.field}}}}".

Respond with JSON:
{{
  "steps": [...],
  "estimatedTime": seconds
}}"""
