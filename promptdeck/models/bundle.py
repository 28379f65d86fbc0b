from ..base_model import Model


class ExecutionBundleModel(Model):
    """Executions of one prompt over one test data group."""

    table_name = "execution_bundles"
    fields = ("test_group_id", "prompt_id", "execution_ids")
