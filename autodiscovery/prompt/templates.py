"""
Prompt templates for AutoDiscovery
"""

# Hypothesis generation (expansion)
HYPOTHESIS_SYSTEM_TEMPLATE = """You are a research scientist exploring a space of hypotheses.
Given a hypothesis and what has been learned so far, you propose sharper, testable refinements.
Each refinement must be a single falsifiable statement that differs from its siblings.
"""

HYPOTHESIS_USER_TEMPLATE = """# Hypothesis being refined
{parent_hypothesis}

# Line of inquiry (root first)
{ancestor_chain}

# What we know so far
{fact_context}

# Task
Propose {count} new hypotheses that refine, narrow or challenge the hypothesis above.
Prefer hypotheses whose truth would surprise a well-informed expert.

Respond with JSON only, in this format:
{{
    "hypotheses": [
        {{"text": "<one falsifiable statement>", "category": "<short tag>"}}
    ]
}}
"""

# Belief elicitation (evidence without data)
BELIEF_SYSTEM_TEMPLATE = """You are a careful, calibrated scientific forecaster.
You estimate the probability that a hypothesis is true using only established knowledge.
"""

BELIEF_USER_TEMPLATE = """# Hypothesis
{hypothesis}

# Context
{fact_context}

# Task
Estimate the probability (between 0 and 1) that the hypothesis is true.

Respond with JSON only, in this format:
{{"probability": <number between 0 and 1>, "rationale": "<one sentence>"}}
"""

# Test planning (evidence from a dataset)
TEST_PLAN_SYSTEM_TEMPLATE = """You are a statistician who designs a single quantitative test for a hypothesis.
You only use columns that exist in the dataset you are given.
"""

TEST_PLAN_USER_TEMPLATE = """# Hypothesis
{hypothesis}

# Dataset
{dataset_description}

# Task
Choose ONE statistical test that would support or contradict the hypothesis.

Available tests:
- "correlation": Pearson correlation between two numeric columns "x" and "y".
  "expected_direction" is "positive" or "negative".
- "mean_difference": Welch t-test of numeric column "value" between the groups
  "group_a" and "group_b" of column "group". "expected_direction" is "positive"
  if group_a should have the larger mean, "negative" otherwise.

Respond with JSON only, for example:
{{"test": "correlation", "x": "<column>", "y": "<column>", "expected_direction": "positive"}}
{{"test": "mean_difference", "value": "<column>", "group": "<column>", "group_a": "<label>", "group_b": "<label>", "expected_direction": "negative"}}
"""
