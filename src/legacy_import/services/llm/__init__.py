"""LLM clients used by the re-cluster engine and the merge analyzer."""

from legacy_import.services.llm.llm_client import LLMClient, parse_json_reply

__all__ = ["LLMClient", "parse_json_reply"]
