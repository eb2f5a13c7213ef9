"""MCP prompt templates for common workflows."""

from llm_manager.mcp.server import mcp


@mcp.prompt()
def delegate_work(goal: str) -> str:
    """Generate a prompt to split a goal into tasks and delegate them."""
    return (
        f"I need to accomplish the following goal:\n\n"
        f"{goal}\n\n"
        f"Split it into independent, self-contained tasks that an external coding agent "
        f"can complete without further questions. For each task:\n"
        f"1. Write the full instruction as a single description\n"
        f"2. Use route_task to check which agent it will go to\n"
        f"3. Queue it with submit_task\n\n"
        f"Then poll queue_summary until nothing is pending or processing, and read each "
        f"output with get_task_result."
    )


@mcp.prompt()
def review_results() -> str:
    """Generate a prompt to review finished tasks."""
    return (
        "Use list_tasks with status='done' and status='failed' to find finished tasks. "
        "Read each one with get_task_result and summarize:\n"
        "1. What each agent produced\n"
        "2. Which tasks failed and the last error output\n"
        "3. Which tasks should be resubmitted, and with which backend"
    )
