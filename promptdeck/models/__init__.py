from ..registry import ModelRegistry
from .api_key import ApiKeyModel
from .bundle import ExecutionBundleModel
from .comment import CommentModel
from .deployment import DeploymentModel
from .deployment_embedding import DeploymentEmbeddingModel
from .execution import ExecutionModel
from .file import FileModel
from .prompt import PromptModel
from .settings import SettingsModel
from .testdata import TestDataGroupModel, TestDataItemModel
from .user import UserModel

MODEL_CLASSES = (
    PromptModel,
    ExecutionModel,
    FileModel,
    DeploymentModel,
    DeploymentEmbeddingModel,
    SettingsModel,
    UserModel,
    TestDataGroupModel,
    TestDataItemModel,
    ExecutionBundleModel,
    CommentModel,
    ApiKeyModel,
)


def build_models(store, initialize=True):
    """Instantiate every entity model on ``store`` and register it."""
    registry = ModelRegistry()
    for model_cls in MODEL_CLASSES:
        registry.register_model(model_cls(store))
    if initialize:
        registry.initialize_all_tables()
    return registry


__all__ = [
    "ApiKeyModel",
    "CommentModel",
    "DeploymentEmbeddingModel",
    "DeploymentModel",
    "ExecutionBundleModel",
    "ExecutionModel",
    "FileModel",
    "MODEL_CLASSES",
    "PromptModel",
    "SettingsModel",
    "TestDataGroupModel",
    "TestDataItemModel",
    "UserModel",
    "build_models",
]
