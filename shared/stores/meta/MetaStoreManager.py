from shared.helper.HelperConfig import HelperConfig
from shared.stores.meta.MetaStoreInterface import MetaStoreInterface


class MetaStoreManager:
    """
    Instantiates the metadata store selected by META_ENGINE (default "sql").
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.store = self._initialize_store()

    def _get_engine_from_env(self) -> str:
        engine = self.helper_config.get_string_val("META_ENGINE", default="sql")
        return engine.strip().lower().capitalize()

    def _initialize_store(self) -> MetaStoreInterface:
        """
        Imports shared.stores.meta.<engine>.MetaStore<Engine> and instantiates it.

        Raises:
            ValueError: If the engine module or class does not exist.
        """
        engine = self._get_engine_from_env()
        class_name = f"MetaStore{engine}"
        try:
            module = __import__(
                f"shared.stores.meta.{engine.lower()}.{class_name}",
                fromlist=[class_name],
            )
            store_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported metadata store engine specified: '{engine}'. Error: {e}")
        self.logging.debug("Instantiated metadata store for engine: %s", engine)
        return store_class(helper_config=self.helper_config)

    def get_store(self) -> MetaStoreInterface:
        return self.store
