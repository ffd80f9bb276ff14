"""
Document ingestion app.

Provides:
- Text extraction (PDF, Word, CSV, plain text, Markdown)
- Recursive chunking with overlap
- The upload endpoint that indexes a file into the knowledge base
"""
