"""Document tool handler."""

from __future__ import annotations

from agentrelay.services.agent_tools.context import ToolContext
from agentrelay.services.agent_tools.registry import ToolResult, failure

DOCUMENT_TYPES = ("deliverable", "note", "template", "reference")


async def handle_document_upsert(ctx: ToolContext, arguments: dict) -> ToolResult:
    title = arguments.get("title")
    content = arguments.get("content")
    doc_type = arguments.get("type")
    if (
        not isinstance(title, str)
        or not title.strip()
        or not isinstance(content, str)
        or not content
        or doc_type not in DOCUMENT_TYPES
    ):
        return failure("title, content, and type (deliverable|note|template|reference) are required")

    document_id = await ctx.store.create_document_from_agent(
        ctx.agent_id,
        documentId=arguments.get("documentId") or None,
        taskId=arguments.get("taskId") or ctx.task_id,
        title=title.strip(),
        content=content,
        type=doc_type,
    )
    return {"success": True, "documentId": document_id}
