"""Export of resolved transcripts to Markdown, HTML and plain text."""

from transcript_engine.export.models import ConversationInfo, ExportOptions
from transcript_engine.export.projector import ExportProjector, export_conversation

__all__ = ["ConversationInfo", "ExportOptions", "ExportProjector", "export_conversation"]
