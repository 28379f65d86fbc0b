from ..runner import Migration

MIGRATION = Migration(
    version=1,
    name="add_execution_origin",
    up="""
        -- every execution recorded before the API existed came from the app
        UPDATE executions
        SET data = json_set(data, '$.origin', 'app')
        WHERE json_extract(data, '$.origin') IS NULL;
    """,
    down="""
        UPDATE executions
        SET data = json_remove(data, '$.origin');
    """,
)
