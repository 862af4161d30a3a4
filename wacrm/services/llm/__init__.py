"""LLM service - quota-gated multi-provider gateway using LiteLLM."""

from wacrm.services.llm.gateway import AIGateway, GatewayResult, extract_json, is_simple_message

__all__ = ["AIGateway", "GatewayResult", "extract_json", "is_simple_message"]
