"""
Migration to add HNSW index on passages.embedding for fast vector search.

HNSW (Hierarchical Navigable Small World) provides:
- Fast approximate nearest neighbor search
- No need to pre-train like IVFFlat

Only PostgreSQL has pgvector; on other databases this is a no-op and
search falls back to the exact in-process backend.
"""
from django.db import migrations


def create_hnsw_index(apps, schema_editor):
    if schema_editor.connection.vendor != 'postgresql':
        return
    # Cosine distance, matching the <=> operator used by search
    schema_editor.execute("""
        CREATE INDEX IF NOT EXISTS passages_embedding_hnsw_idx
        ON passages
        USING hnsw (embedding vector_cosine_ops)
        WITH (m = 16, ef_construction = 64);
    """)


def drop_hnsw_index(apps, schema_editor):
    if schema_editor.connection.vendor != 'postgresql':
        return
    schema_editor.execute("DROP INDEX IF EXISTS passages_embedding_hnsw_idx;")


class Migration(migrations.Migration):

    dependencies = [
        ('knowledge', '0001_initial'),
    ]

    operations = [
        migrations.RunPython(create_hnsw_index, drop_hnsw_index),
    ]
