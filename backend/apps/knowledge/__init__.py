"""
Knowledge base app.

Provides:
- Passage storage with vector embeddings
- Embedding clients (Ollama / OpenAI-compatible)
- Owner-scoped similarity search
- Retrieval formatted for the chat model
"""
