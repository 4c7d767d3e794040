"""LLM prompt templates for the Catalog Assistant."""

QUERY_GENERATION_PROMPT = """Generate a Cypher query for the catalog graph based on the specific goal and entities.

# Graph Schema
{schema}

# Goal
{goal}

# Entities
{entities}

# Additional Context
{context}

CRITICAL Cypher syntax rules:
- relationships() and nodes() take a PATH variable, never a node variable.
  WRONG: RETURN sector, relationships(sector)
  RIGHT: MATCH path = (i:Industry)-[:HAS_SECTOR]->(s:Sector) RETURN path
- Graph visualization needs both nodes AND relationships. Never return only nodes.
  RIGHT: MATCH (i:Industry)-[r:HAS_SECTOR]->(s:Sector) RETURN i, r, s
- For multi-hop: MATCH (a)-[r1]->(b)-[r2]->(c) RETURN a, r1, b, r2, c
- Put entity names in params instead of string literals where possible.

Respond with ONLY pure JSON. No markdown, no backticks, no code blocks.

JSON format:
{{
  "query": "MATCH ... RETURN ...",
  "params": {{}},
  "explanation": "brief explanation of what this query does",
  "connection_strategy": "direct|indirect|both"
}}"""


ANALYSIS_PROMPT = """Analyze the following graph data and provide insights.

# Dataset
{dataset}

# Analysis Type
{analysis_type}

# Analysis Goal
{goal}

Provide a clear, structured analysis with specific insights. Focus on:
- Key patterns and trends in the data
- Notable findings, outliers, or important relationships
- Distribution and characteristics of the nodes and connections
- Actionable insights and recommendations

Keep the analysis concise but comprehensive."""


COMPARISON_PROMPT = """Analyze and compare the following graph data.

# Dataset 1
{dataset1}

# Dataset 2
{dataset2}

# Analysis Type
{analysis_type}

# Analysis Goal
{goal}

Provide a clear, structured analysis with specific insights. Focus on:
- Key patterns and trends in each dataset
- Differences and similarities between the datasets
- Notable findings or outliers
- Actionable insights for decision-making

Keep the analysis concise but comprehensive."""


CREATIVE_PROMPT = """Based on the graph data context, generate creative content.

# Context Data
{context}

# Creative Goal
{creative_goal}

# Style
{style}

Generate creative, actionable content that fits the catalog and addresses the goal.
Provide 3-5 specific, implementable suggestions or ideas, one per line."""


PLANNER_PROMPT = """You are an execution planner that converts natural language questions into structured, step-by-step execution plans for a graph database of AI project opportunities.

# Graph Schema
Node Labels: {node_labels}
Relationships:
{relationships}

# Recent Chat History
{history}

# Current Question
"{question}"

## Available Tasks
- validate_entity: Check that an entity exists (params: {{"entity_type": "Sector", "entity_name": "Retail Banking"}})
- find_connection_paths: Paths between two entities (params: {{"from_entity": "A", "to_entity": "B", "max_depth": 2}})
- generate_query: Generate a Cypher query for a well-defined goal (params: {{"goal": "description", "entities": ["Sector", "PainPoint"]}}). Add "exploration_mode": true for broad "what is available" questions.
- execute_query: Run a query (params: {{"query": "$stepN.output"}})
- analyze_and_summarize: Analyze retrieved data (params: {{"dataset": "$stepN.output"}} or {{"dataset1": "$stepN.output", "dataset2": "$stepM.output", "comparison_type": "..."}})
- generate_creative_text: Suggestions grounded in graph data (params: {{"creative_goal": "description", "context": "$stepN.output"}})
- clarify_with_user: Ask for clarification when the question is ambiguous (params: {{"message": "question", "suggestions": ["option1", "option2"]}})

## Parameters
- Static values: strings, numbers, lists
- Dynamic references: "$stepN.output" or "$stepN.output.field" to use an earlier step's output
- on_failure: halt | clarify_and_halt | continue | retry

Respond with ONLY a JSON object. No markdown, no backticks.

{{
  "plan": [
    {{
      "task_type": "task_name",
      "params": {{"param1": "value", "param2": "$step1.output"}},
      "on_failure": "clarify_and_halt",
      "reasoning": "Brief explanation of why this task is needed"
    }}
  ]
}}"""


FALLBACK_CLARIFICATION_MESSAGE = "I need more details to understand your request. Could you be more specific?"
FALLBACK_CLARIFICATION_SUGGESTIONS = [
    "Show me all industries",
    "Find pain points in banking",
    "Compare sectors and departments",
]
