"""Workflow state machine for agent-dispatched development tasks.

Why not a generic job scheduler?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
The workflow is driven by one external dispatcher agent invoking the CLI
once per step, so there is exactly one writer at a time and at most one
batch of active tasks. What needs care is not queueing but the lifecycle
gates around each step:

- Dependency resolution over a small task DAG with cascade-skip on failure.
- A fixed retry budget per task and crash-safe resume of interrupted tasks.
- Per-task context hand-off (rolling summary + dependency outputs).
- Verification and review gates before the final commit.

State is a markdown table under ``.workflow/`` guarded by an advisory lock
file, which keeps it readable by both humans and agents.
"""
