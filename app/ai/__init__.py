"""
Municipal Innovation Strategy Platform
AI module.

Submodules:
    - gateway: LLM Gateway (provider routing, retry, cost tracking)
    - prompt_registry: YAML prompt template loading
    - assistants: entity generator, quality assessor, gap advisor

Gateway and registry are lazy singletons stored on the Flask app
(test-isolation safe).
"""

from flask import current_app


def get_gateway():
    from app.ai.gateway import LLMGateway

    if not hasattr(current_app, "_ai_gateway"):
        current_app._ai_gateway = LLMGateway(app=current_app)
    return current_app._ai_gateway


def get_prompt_registry():
    from app.ai.prompt_registry import PromptRegistry

    if not hasattr(current_app, "_ai_prompt_registry"):
        current_app._ai_prompt_registry = PromptRegistry()
    return current_app._ai_prompt_registry
