"""
Hippo - tiered memory for a persona that lives in group chats.

Package structure:
- core: config, logging, shared types, background scheduler
- llm: model client abstraction (litellm)
- memory: working memory, extraction, retrieval, distillation, storage
"""

__version__ = "0.1.0"
