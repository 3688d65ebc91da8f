"""
System prompt assembly from the reference documents (RAG context).
"""

import logging

from langchain_core.prompts import PromptTemplate

from .constants import DEFAULT_SYSTEM_PROMPT, REGION_LOCK_RULES

logger = logging.getLogger("mapgen")


user_prompt_template = PromptTemplate.from_template(
    """Créer une carte de: {prompt}
Niveau géographique: {data_level}
Type de carte recommandé: {map_type}

Choisis la forme de réponse adaptée:
- "geocodage" pour des lieux ponctuels (adresses, équipements, sites)
- "choroplèthe" pour colorer des territoires selon une donnée (communes, EPCI, départements)
- "complexe" pour combiner plusieurs couches

Réponds avec un seul objet JSON, sans commentaire."""
)


def get_document_tags(doc: dict) -> list:
    """Tags live in metadata.tags; older rows carry a top-level tags list."""
    metadata = doc.get("metadata") or {}
    tags = metadata.get("tags") if isinstance(metadata, dict) else None
    if tags is None:
        tags = doc.get("tags") or []
    return [str(t).strip() for t in tags if str(t).strip()]


def select_context_documents(documents) -> list:
    """
    Active, embedding-processed documents in a stable order:
    creation time ascending, then name.
    """
    usable = [
        doc for doc in documents or []
        if doc.get("is_active") and doc.get("embedding_processed")
    ]
    return sorted(usable, key=lambda d: (d.get("created_at") or "", d.get("name") or ""))


def format_document_block(doc: dict) -> str:
    return (
        f"DOCUMENT: {doc.get('name', '')}\n"
        f"Description: {doc.get('description') or ''}\n"
        f"Usage: {doc.get('prompt') or ''}\n"
        f"Tags: {', '.join(get_document_tags(doc))}"
    )


def build_system_prompt(documents, base_prompt: str = None) -> str:
    """
    Build the system prompt sent to the LLM.

    Args:
        documents: document rows from the documents table
        base_prompt: preamble from the active ai_config (default BFC expert prompt)

    Returns:
        preamble + one block per usable document + REGION_LOCK_RULES
    """
    context_docs = select_context_documents(documents)
    parts = [(base_prompt or DEFAULT_SYSTEM_PROMPT).strip()]

    if context_docs:
        blocks = "\n\n".join(format_document_block(doc) for doc in context_docs)
        parts.append(f"DOCUMENTS DE RÉFÉRENCE:\n{blocks}")

    parts.append(REGION_LOCK_RULES)

    logger.debug(f"System prompt built with {len(context_docs)} documents")
    return "\n\n".join(parts)


def build_user_prompt(prompt: str, data_level: str = None, map_type: str = None) -> str:
    return user_prompt_template.format(
        prompt=prompt,
        data_level=data_level or "communes",
        map_type=map_type or "geocodage",
    )
