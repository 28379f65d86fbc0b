from ..runner import Migration

MIGRATION = Migration(
    version=2,
    name="change_claude_to_anthropic",
    up="""
        UPDATE executions
        SET data = json_set(data, '$.provider', 'anthropic')
        WHERE json_extract(data, '$.provider') = 'claude';
    """,
    # Irreversible: rows that were already 'anthropic' cannot be told apart.
    down="",
)
