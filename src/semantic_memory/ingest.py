"""Mappers from richer external records to ``store`` arguments.

Each returns ``(kind, content, metadata overrides, importance)``.
"""

from typing import Any

from semantic_memory.models import (
    CodeContext,
    ConversationContext,
    EntityType,
    ExtractedEntity,
    MemoryKind,
    MetadataSource,
    ResearchContext,
)

CONVERSATION_IMPORTANCE = 0.7
CODE_ANALYSIS_IMPORTANCE = 0.8
CODE_ENTITY_CONFIDENCE = 0.9

StoreArgs = tuple[MemoryKind, str, dict[str, Any], float]


def _code_reference(code: CodeContext) -> dict[str, Any]:
    return {
        "file_path": code.file_path,
        "language": code.language,
        "snippet": ", ".join(f.name for f in code.functions),
        "function_name": code.functions[0].name if code.functions else None,
        "class_name": code.classes[0].name if code.classes else None,
    }


def conversation_to_memory(context: ConversationContext) -> StoreArgs:
    """Map one conversation turn."""
    overrides = {
        "source": MetadataSource.CHAT,
        "project_id": context.project_id,
        "session_id": context.chat_id,
        "file_references": list(context.file_paths),
        "code_references": [_code_reference(code) for code in context.code_context],
        "entities": list(context.entities),
        "summary": context.intent,
        "keywords": [entity.name for entity in context.entities],
    }
    content = f"{context.role}: {context.content}"
    return MemoryKind.CONVERSATION, content, overrides, CONVERSATION_IMPORTANCE


def code_analysis_to_memory(analysis: CodeContext) -> StoreArgs:
    """Map the analysis of one source file."""
    # Classes are filed as function entities; there is no class entity type
    entities = [
        ExtractedEntity(
            type=EntityType.FUNCTION,
            name=item.name,
            context=item.purpose,
            confidence=CODE_ENTITY_CONFIDENCE,
        )
        for item in [*analysis.functions, *analysis.classes]
    ]
    keywords = [kw for kw in [analysis.language, analysis.framework, *analysis.dependencies] if kw]
    overrides = {
        "source": MetadataSource.CODE,
        "file_references": [analysis.file_path],
        "code_references": [_code_reference(analysis)],
        "entities": entities,
        "summary": analysis.purpose,
        "keywords": keywords,
    }
    content = f"Code analysis for {analysis.file_path}: {analysis.purpose}"
    return MemoryKind.CODE_ANALYSIS, content, overrides, CODE_ANALYSIS_IMPORTANCE


def research_to_memory(research: ResearchContext) -> StoreArgs:
    """Map a research synthesis; its confidence doubles as importance."""
    findings = "\n".join(finding.content for finding in research.findings)
    overrides = {
        "source": MetadataSource.RESEARCH,
        "entities": [
            ExtractedEntity(
                type=EntityType.CONCEPT,
                name=finding.type,
                context=finding.content,
                confidence=finding.confidence,
            )
            for finding in research.findings
        ],
        "summary": research.synthesis,
        "keywords": research.domain.split(),
        "confidence": research.confidence,
    }
    content = f"Research: {research.query}\n\nFindings:\n{findings}"
    return MemoryKind.RESEARCH, content, overrides, research.confidence
