from shared.helper.HelperConfig import HelperConfig
from shared.stores.blob.BlobStoreInterface import BlobStoreInterface


class BlobStoreManager:
    """
    Instantiates the blob store selected by BLOB_ENGINE (default "local").
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.store = self._initialize_store()

    def _initialize_store(self) -> BlobStoreInterface:
        """
        Imports shared.stores.blob.<engine>.BlobStore<Engine> and instantiates it.

        Raises:
            ValueError: If the engine module or class does not exist.
        """
        engine = self.helper_config.get_string_val("BLOB_ENGINE", default="local").strip().lower().capitalize()
        class_name = f"BlobStore{engine}"
        try:
            module = __import__(
                f"shared.stores.blob.{engine.lower()}.{class_name}",
                fromlist=[class_name],
            )
            store_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported blob store engine specified: '{engine}'. Error: {e}")
        return store_class(helper_config=self.helper_config)

    def get_store(self) -> BlobStoreInterface:
        return self.store
