"""
Heuristic query intent classification.

Intents are tried in a fixed priority order and the first matching pattern
wins, so an ambiguous question always resolves the same way.
"""
from __future__ import annotations

import re
from typing import Any

from .models import IntentMetadata, QueryIntent, RetrievalStrategy

HEURISTIC_CONFIDENCE = 0.8

INTENT_PRIORITY: tuple[tuple[QueryIntent, tuple[str, ...]], ...] = (
    (QueryIntent.SUMMARY, (
        r"^(summarize|summary|overview|brief|outline|abstract)",
        r"(can you|could you|please) .* (summarize|summary)",
        r"(summarize|summary) .* (this|the) .* (file|document|text|content)",
        r"(what|tell me) .* (about|of) .* (document|file|text|content)",
        r"(give me|provide) .* (summary|overview)",
        r"main (point|idea|theme|topic)",
    )),
    (QueryIntent.TABLE_OF_CONTENTS, (
        r"table of content",
        r"^(structure|organization|layout|sections|chapters)",
        r"what .* (cover|contain|include)",
        r"list .* (section|chapter|topic|part)",
    )),
    (QueryIntent.DEFINITION, (
        r"^(what is|what's|whats|define|definition of|meaning of|explain)",
        r"(what does|what do) .* mean",
        r"(tell me|explain) .* (definition|meaning)",
    )),
    (QueryIntent.COMPARISON, (
        # Typo tolerant: comparsion, comparision, ...
        r"(compar[ieaos]*|difference|versus|vs\.?)",
        r"(how .* differ|what .* difference)",
        r"(similar|similarity) .* (between|and)",
        # Several numbers, e.g. "wifi 5 6 7" or "5-6-7".
        r"\d+.*\d+",
        r"(between|among).*(and|or)",
    )),
    (QueryIntent.LIST, (
        r"^list",
        r"what are .* (all|the)",
        r"(enumerate|mention) .* ",
        r"give me .* list",
    )),
)

RECOMMENDED_TOP_K: dict[QueryIntent, int] = {
    QueryIntent.SUMMARY: 10,
    QueryIntent.TABLE_OF_CONTENTS: 8,
    QueryIntent.DEFINITION: 3,
    QueryIntent.SPECIFIC: 5,
    QueryIntent.COMPARISON: 8,
    QueryIntent.LIST: 7,
}

_EXPLANATIONS: dict[QueryIntent, str] = {
    QueryIntent.SUMMARY: "Detected summary intent - will retrieve broad coverage of document",
    QueryIntent.TABLE_OF_CONTENTS: "Detected table of contents intent - will focus on structure and organization",
    QueryIntent.DEFINITION: "Detected definition intent - will retrieve precise, concise explanations",
    QueryIntent.SPECIFIC: "Detected specific question intent - will retrieve targeted relevant chunks",
    QueryIntent.COMPARISON: "Detected comparison intent - will retrieve multiple perspectives",
    QueryIntent.LIST: "Detected list intent - will retrieve comprehensive enumeration",
}

_DEFINITION_TERM_PATTERNS = tuple(
    re.compile(pattern)
    for pattern in (
        r"what is ([a-zA-Z0-9\s]+)",
        r"define ([a-zA-Z0-9\s]+)",
        r"definition of ([a-zA-Z0-9\s]+)",
        r"meaning of ([a-zA-Z0-9\s]+)",
    )
)


class QueryIntentClassifier:
    def __init__(self, priority: tuple[tuple[QueryIntent, tuple[str, ...]], ...] = INTENT_PRIORITY):
        self._rules = tuple(
            (intent, tuple(re.compile(pattern) for pattern in patterns))
            for intent, patterns in priority
        )

    def classify(self, query: str) -> QueryIntent:
        normalized = str(query or "").strip().lower()
        for intent, patterns in self._rules:
            if any(pattern.search(normalized) for pattern in patterns):
                return intent
        return QueryIntent.SPECIFIC

    def retrieval_strategy(self, intent: QueryIntent) -> RetrievalStrategy:
        # Every intent currently differs only by top-k.
        return RetrievalStrategy.ADAPTIVE

    def recommended_top_k(self, intent: QueryIntent) -> int:
        return RECOMMENDED_TOP_K.get(intent, RECOMMENDED_TOP_K[QueryIntent.SPECIFIC])

    def should_bypass_vector_search(self, intent: QueryIntent) -> bool:
        return False

    def search_hints(self, intent: QueryIntent, query: str) -> dict[str, Any]:
        hints: dict[str, Any] = {
            "intent": intent.value,
            "strategy": self.retrieval_strategy(intent).value,
            "recommended_top_k": self.recommended_top_k(intent),
        }
        if intent is QueryIntent.DEFINITION:
            normalized = str(query or "").lower()
            for pattern in _DEFINITION_TERM_PATTERNS:
                match = pattern.search(normalized)
                if match:
                    hints["term"] = match.group(1).strip()
                    hints["use_keyword_boost"] = True
                    break
        elif intent is QueryIntent.COMPARISON:
            hints["boost_comparative_chunks"] = True
        elif intent is QueryIntent.LIST:
            hints["boost_list_chunks"] = True
        return hints

    def explain(self, intent: QueryIntent) -> str:
        return _EXPLANATIONS.get(intent, "Unknown intent - using default retrieval strategy")

    def analyze_query(self, query: str) -> IntentMetadata:
        intent = self.classify(query)
        return IntentMetadata(
            intent=intent,
            confidence=HEURISTIC_CONFIDENCE,
            recommended_top_k=self.recommended_top_k(intent),
            strategy=self.retrieval_strategy(intent),
            hints=self.search_hints(intent, query),
            explanation=self.explain(intent),
        )
