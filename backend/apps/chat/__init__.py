"""
Chat app.

Provides:
- Conversations and their message history
- Tool-calling chat orchestration with streamed answers
- Pinning conversations into the knowledge base as memories
"""
