# Generated migration for the Passage model

from django.db import migrations, models
import django.db.models.deletion
import pgvector.django
import uuid


def create_vector_extension(apps, schema_editor):
    if schema_editor.connection.vendor == 'postgresql':
        schema_editor.execute("CREATE EXTENSION IF NOT EXISTS vector;")


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('chat', '0001_initial'),
    ]

    operations = [
        migrations.RunPython(create_vector_extension, migrations.RunPython.noop),
        migrations.CreateModel(
            name='Passage',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('owner_id', models.CharField(db_index=True, help_text='Keycloak user ID (sub claim)', max_length=255)),
                ('content', models.TextField(help_text='The text that was embedded')),
                ('embedding', pgvector.django.VectorField(blank=True, dimensions=768, help_text='Vector embedding of content', null=True)),
                ('source_type', models.CharField(choices=[('document', 'Document chunk'), ('memory', 'Conversation memory')], default='document', help_text='Kind of source this passage came from', max_length=20)),
                ('source_id', models.CharField(db_index=True, help_text='Provenance identifier', max_length=255)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('conversation', models.ForeignKey(blank=True, help_text='Conversation the passage belongs to, if any', null=True, on_delete=django.db.models.deletion.CASCADE, related_name='passages', to='chat.conversation')),
            ],
            options={
                'db_table': 'passages',
                'ordering': ['created_at', 'id'],
            },
        ),
        migrations.AddIndex(
            model_name='passage',
            index=models.Index(fields=['owner_id', 'created_at'], name='passages_owner_i_3c1f0a_idx'),
        ),
    ]
